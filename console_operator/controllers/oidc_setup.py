"""
Controller that wires the console up to an external OIDC provider. The client
secret named in the Authentication's OIDC client config is copied into the
console namespace, and the progress of the rollout is reported back on the
Authentication status.
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase, apply_resource
from ..exceptions import ConsoleOperatorError, ReasonedError, assert_cluster
from ..status import (
    AuthStatusHandler,
    StatusHandler,
    handle_degraded,
    handle_progressing_or_degraded,
)
from ..sync import is_managed, resources
from ..utils import nested_get

log = alog.use_channel("OIDCSET")

CONTROLLER_NAME = "OIDCSetupController"


class OIDCSetupController:
    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    def sync(self, _=None) -> Optional[BaseException]:
        try:
            if not is_managed(self.deploy_manager):
                return None
            authn = self._get(
                constants.AUTHENTICATION_KIND,
                constants.AUTHENTICATION_API_VERSION,
                constants.CONFIG_RESOURCE_NAME,
                None,
            )
            assert_cluster(authn is not None, "authentication config not found", reason="FailedGet")
        except ConsoleOperatorError as err:
            return err

        status_handler = StatusHandler(self.deploy_manager)
        auth_status = AuthStatusHandler(
            self.deploy_manager,
            component_name=constants.OPENSHIFT_CONSOLE_NAME,
            component_namespace=constants.TARGET_NAMESPACE,
            field_manager=config.field_manager,
        )

        err = None
        if nested_get(authn, "spec.type") == constants.AUTH_TYPE_OIDC:
            err = self.sync_oidc_client(authn, status_handler, auth_status)
        else:
            auth_status.with_current_oidc_client("")

        apply_err = None
        try:
            auth_status.apply(authn)
        except ConsoleOperatorError as auth_err:
            log.warning("Failed to apply the authentication status: %s", auth_err)
            apply_err = auth_err
        status_handler.add_conditions(
            handle_progressing_or_degraded("AuthStatusHandler", "FailedApply", apply_err)
        )
        return status_handler.flush_and_return(err or apply_err)

    def sync_oidc_client(
        self,
        authn: dict,
        status_handler: StatusHandler,
        auth_status: AuthStatusHandler,
    ) -> Optional[BaseException]:
        """Copy the OIDC client secret and check that the deployment runs with
        it. Conditions for the Authentication status are set on auth_status.
        """
        client_config = resources.oidc_client_config(authn)
        if client_config is None:
            auth_status.with_current_oidc_client("")
            auth_status.unavailable("OIDCClientConfig", "no OIDC client found")
            return None

        client_id = client_config.get("clientID")
        if not client_id:
            err = ReasonedError("MissingID", "no ID set on console's OIDC client")
            status_handler.add_conditions(handle_degraded("OIDCClientConfig", "MissingID", err))
            auth_status.degraded("OIDCClientMissingID", str(err))
            return err
        auth_status.with_current_oidc_client(client_id)
        status_handler.add_conditions(handle_degraded("OIDCClientConfig", "MissingID", None))

        secret_name = nested_get(client_config, "clientSecret.name")
        if not secret_name:
            auth_status.degraded(
                "OIDCClientMissingSecret", "no client secret in the OIDC client config"
            )
            return None

        try:
            source = self._get(
                constants.SECRET_KIND,
                constants.CORE_API_VERSION,
                secret_name,
                constants.OPENSHIFT_CONFIG_NAMESPACE,
            )
            assert_cluster(
                source is not None,
                f"secret {secret_name} not found in {constants.OPENSHIFT_CONFIG_NAMESPACE}",
                reason="FailedGet",
            )
        except ConsoleOperatorError as err:
            auth_status.degraded("OIDCClientSecretGet", str(err))
            return err

        sync_err = None
        client_secret = None
        try:
            client_secret, _ = apply_resource(
                self.deploy_manager,
                resources.oauth_client_secret(
                    resources.decode_secret_value(source, constants.CLIENT_SECRET_KEY)
                ),
            )
        except ConsoleOperatorError as err:
            sync_err = err
        status_handler.add_conditions(
            handle_degraded("OIDCClientSecretSync", "FailedApply", sync_err)
        )
        if sync_err is not None:
            auth_status.degraded("OIDCClientSecretSync", str(sync_err))
            return sync_err

        try:
            self._check_rollout(client_secret)
        except ConsoleOperatorError as err:
            auth_status.progressing("DeploymentOIDCConfig", str(err))
            return None
        auth_status.available("OIDCConfigAvailable", "")
        return None

    ## Implementation Details ##################################################

    def _check_rollout(self, client_secret: dict):
        """The deployment must be rolled out and running with the current
        client secret
        """
        deployment = self._get(
            constants.DEPLOYMENT_KIND,
            constants.DEPLOYMENT_API_VERSION,
            constants.OPENSHIFT_CONSOLE_NAME,
            constants.TARGET_NAMESPACE,
        )
        if deployment is None or not resources.is_available_and_updated(deployment):
            raise ReasonedError(
                "DeploymentNotReady", "waiting for the console deployment to roll out"
            )
        annotations = (
            nested_get(deployment, "spec.template.metadata.annotations") or {}
        )
        if annotations.get(constants.OAUTH_SECRET_VERSION_ANNOTATION) != resources.resource_version(
            client_secret
        ):
            raise ReasonedError(
                "DeploymentNotReady",
                "waiting for the console deployment to pick up the client secret",
            )

    def _get(self, kind: str, api_version: str, name: str, namespace: Optional[str]) -> Optional[dict]:
        success, content = self.deploy_manager.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )
        assert_cluster(success, f"failed to get {kind} {name}", reason="FailedGet")
        return content
