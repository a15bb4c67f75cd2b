"""
Controller that registers the console with the cluster's integrated OAuth
server. It owns the console's client secret and points the console OAuthClient
at the console's callback URL. Nothing is done when authentication is handed
to an external OIDC provider.
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase, apply_resource
from ..exceptions import (
    ConsoleOperatorError,
    ReasonedError,
    SyncProgressingError,
    assert_cluster,
)
from ..status import StatusHandler, handle_degraded, handle_progressing_or_degraded
from ..sync import is_managed, resources
from ..utils import nested_get, random_secret

log = alog.use_channel("OAUTHCL")

CONTROLLER_NAME = "OAuthClientsController"

# Length of a generated client secret
CLIENT_SECRET_BYTES = 32


class OAuthClientsController:
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

        if nested_get(authn, "spec.type") == constants.AUTH_TYPE_OIDC:
            log.debug4("OIDC authentication in use, no OAuthClient to register")
            return None

        status_handler = StatusHandler(self.deploy_manager)
        try:
            console_url = self._console_url()
        except ConsoleOperatorError as err:
            status_handler.add_conditions(
                handle_progressing_or_degraded("OAuthClientSync", "FailedRouteGet", err)
            )
            return status_handler.flush_and_return(err)

        secret_err = None
        client_secret = ""
        try:
            client_secret = self.sync_secret()
        except ConsoleOperatorError as err:
            secret_err = err
        status_handler.add_conditions(
            handle_degraded("OAuthClientSecretSync", "FailedApply", secret_err)
        )
        if secret_err is not None:
            return status_handler.flush_and_return(secret_err)

        register_err = None
        try:
            self.register(console_url, client_secret)
        except ConsoleOperatorError as err:
            register_err = err
        status_handler.add_conditions(
            handle_progressing_or_degraded("OAuthClientSync", "FailedRegister", register_err)
        )
        return status_handler.flush_and_return(register_err)

    def sync_secret(self) -> str:
        """Make sure the client secret exists, generating it once

        Returns:
            client_secret:  str
                The current client secret value
        """
        existing = self._get(
            constants.SECRET_KIND,
            constants.CORE_API_VERSION,
            constants.OAUTH_CLIENT_SECRET_NAME,
            constants.TARGET_NAMESPACE,
        )
        client_secret = resources.decode_secret_value(existing, constants.CLIENT_SECRET_KEY)
        if not client_secret:
            log.debug("Generating a new OAuth client secret")
            client_secret = random_secret(CLIENT_SECRET_BYTES)
        apply_resource(
            self.deploy_manager, resources.oauth_client_secret(client_secret), existing
        )
        return client_secret

    def register(self, console_url: str, client_secret: str):
        """Point the console OAuthClient at the console. The OAuthClient is
        created by the cluster's OAuth operator, never here.
        """
        oauth_client = self._get(
            constants.OAUTH_CLIENT_KIND,
            constants.OAUTH_CLIENT_API_VERSION,
            constants.OPENSHIFT_CONSOLE_NAME,
            None,
        )
        if oauth_client is None:
            raise ReasonedError(
                "FailedGet", "oauth client for console does not exist and cannot be created"
            )
        try:
            apply_resource(
                self.deploy_manager,
                resources.register_oauth_client(oauth_client, console_url, client_secret),
                oauth_client,
            )
        except ConsoleOperatorError as err:
            raise ReasonedError("FailedRegister", str(err)) from err

    ## Implementation Details ##################################################

    def _console_url(self) -> str:
        """The configured console URL, or the admitted URL of the route"""
        operator_config = self._get(
            constants.OPERATOR_CONFIG_KIND,
            constants.OPERATOR_CONFIG_API_VERSION,
            constants.CONFIG_RESOURCE_NAME,
            None,
        )
        custom_url = nested_get(operator_config or {}, "spec.ingress.consoleURL")
        if custom_url:
            return custom_url.rstrip("/")

        route = self._get(
            constants.ROUTE_KIND,
            constants.ROUTE_API_VERSION,
            constants.OPENSHIFT_CONSOLE_NAME,
            constants.TARGET_NAMESPACE,
        )
        console_url = resources.admitted_ingress_url(route) if route else None
        if console_url is None:
            raise SyncProgressingError(
                "waiting on the console route to be admitted", reason="FailedRouteGet"
            )
        return console_url

    def _get(self, kind: str, api_version: str, name: str, namespace: Optional[str]) -> Optional[dict]:
        success, content = self.deploy_manager.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )
        assert_cluster(success, f"failed to get {kind} {name}", reason="FailedGet")
        return content
