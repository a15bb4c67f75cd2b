"""
The ordered steps of a managed console sync pass. Each step reconciles one
piece of the console and hands what it produced to the steps after it.

    route -> auth_context -> session_secret -> configmap -> service_ca
      -> trusted_ca -> custom_logo -> oauth_serving_cert -> client_secret
      -> deployment -> status_publish
"""

# Standard
from typing import List, Optional
from urllib.parse import urlparse
import copy

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase, apply_resource, delete_resource
from ..exceptions import (
    ClusterError,
    ConflictError,
    ConsoleOperatorError,
    CustomLogoError,
    ReasonedError,
    SyncProgressingError,
    assert_cluster,
    get_error_reason,
)
from ..status.handler import (
    handle_available,
    handle_degraded,
    handle_progressing,
    set_deployment_generation,
    set_observed_generation,
    set_ready_replicas,
)
from ..utils import nested_get
from . import resources
from .sequencer import ConfigSnapshot, StepInput, StepResult, SyncStep

log = alog.use_channel("STEPS")

# Auth types served by the cluster's own OAuth server (or no auth at all)
INTEGRATED_AUTH_TYPES = ("", constants.AUTH_TYPE_INTEGRATED_OAUTH, constants.AUTH_TYPE_NONE)
SUPPORTED_AUTH_TYPES = INTEGRATED_AUTH_TYPES + (constants.AUTH_TYPE_OIDC,)


def is_oidc(configs: ConfigSnapshot) -> bool:
    return configs.auth_type == constants.AUTH_TYPE_OIDC


def is_integrated_auth(configs: ConfigSnapshot) -> bool:
    return configs.auth_type in INTEGRATED_AUTH_TYPES


def custom_logo_file(operator_config: dict) -> Optional[dict]:
    """The configured logo reference if both its name and key are set"""
    logo = nested_get(operator_config, "spec.customization.customLogoFile") or {}
    if logo.get("name") and logo.get("key"):
        return logo
    return None


class ConsoleSyncSteps:
    """Builds the ordered step list for a deploy manager"""

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    def ordered_steps(self) -> List[SyncStep]:
        return [
            SyncStep(
                name="route",
                run=self.sync_route,
                prefix="RouteSync",
                provides=("route", "console_url", "console_host"),
            ),
            SyncStep(
                name="auth_context",
                run=self.sync_auth_context,
                prefix="AuthContextSync",
                provides=("auth_server_ca",),
            ),
            SyncStep(
                name="session_secret",
                run=self.sync_session_secret,
                prefix="SessionSecretSync",
                provides=("session_secret",),
                when=is_oidc,
            ),
            SyncStep(
                name="configmap",
                run=self.sync_config_map,
                prefix="ConfigMapSync",
                requires=("console_host",),
                provides=("config_map",),
            ),
            SyncStep(
                name="service_ca",
                run=self.sync_service_ca,
                prefix="ServiceCASync",
                provides=("service_ca_config_map",),
            ),
            SyncStep(
                name="trusted_ca",
                run=self.sync_trusted_ca,
                prefix="TrustedCASync",
                provides=("trusted_ca_config_map",),
            ),
            SyncStep(
                name="custom_logo",
                run=self.sync_custom_logo,
                prefix="CustomLogoSync",
                provides=("custom_logo_config_map",),
            ),
            SyncStep(
                name="oauth_serving_cert",
                run=self.validate_oauth_serving_cert,
                prefix="OAuthServingCertValidation",
                provides=("oauth_serving_cert_config_map",),
                when=is_integrated_auth,
            ),
            SyncStep(
                name="client_secret",
                run=self.get_client_secret,
                prefix="OAuthClientSecretGet",
                provides=("client_secret",),
            ),
            SyncStep(
                name="deployment",
                run=self.sync_deployment,
                prefix="DeploymentSync",
                requires=(
                    "auth_server_ca",
                    "session_secret",
                    "config_map",
                    "service_ca_config_map",
                    "trusted_ca_config_map",
                    "custom_logo_config_map",
                    "oauth_serving_cert_config_map",
                    "client_secret",
                ),
                provides=("deployment",),
            ),
            SyncStep(
                name="status_publish",
                run=self.publish_status,
                requires=("deployment", "console_url"),
            ),
        ]

    ## Steps ###################################################################

    def sync_route(self, step_input: StepInput) -> StepResult:
        """Find the URL the console is served on. A URL set on the operator
        config wins over the route's admitted host.
        """
        custom_url = nested_get(step_input.configs.operator_config, "spec.ingress.consoleURL")
        if custom_url:
            log.debug2("Using the configured console URL %s", custom_url)
            return StepResult(
                outputs={
                    "route": None,
                    "console_url": custom_url.rstrip("/"),
                    "console_host": urlparse(custom_url).netloc,
                }
            )

        route = self._get(
            constants.ROUTE_KIND,
            constants.ROUTE_API_VERSION,
            constants.OPENSHIFT_CONSOLE_NAME,
            constants.TARGET_NAMESPACE,
        )
        if route is None:
            raise ClusterError(
                f"route {constants.OPENSHIFT_CONSOLE_NAME} not found in {constants.TARGET_NAMESPACE}",
                reason="FailedGet",
            )
        console_url = resources.admitted_ingress_url(route)
        if console_url is None:
            raise ReasonedError(
                "FailedIngress",
                f"route {constants.OPENSHIFT_CONSOLE_NAME} is not admitted",
            )
        return StepResult(
            outputs={
                "route": route,
                "console_url": console_url,
                "console_host": nested_get(route, "spec.host"),
            }
        )

    def sync_auth_context(self, step_input: StepInput) -> StepResult:
        """Check the auth type and fetch the CA of an external OIDC issuer"""
        configs = step_input.configs
        if configs.auth_type not in SUPPORTED_AUTH_TYPES:
            raise ReasonedError(
                "UnsupportedType", f"unsupported authentication type: {configs.auth_type}"
            )

        auth_server_ca = None
        providers = nested_get(configs.authentication, "spec.oidcProviders") or []
        if is_oidc(configs) and providers:
            ca_name = nested_get(providers[0], "issuer.certificateAuthority.name")
            if ca_name:
                # A missing CA is tolerated, the issuer may be publicly trusted
                auth_server_ca = self._get(
                    constants.CONFIG_MAP_KIND,
                    constants.CORE_API_VERSION,
                    ca_name,
                    constants.OPENSHIFT_CONFIG_NAMESPACE,
                )
        return StepResult(outputs={"auth_server_ca": auth_server_ca})

    def sync_session_secret(self, _: StepInput) -> StepResult:
        existing = self._get(
            constants.SECRET_KIND,
            constants.CORE_API_VERSION,
            constants.SESSION_SECRET_NAME,
            constants.TARGET_NAMESPACE,
        )
        secret, changed = apply_resource(
            self.deploy_manager, resources.session_secret(existing), existing
        )
        return StepResult(changed=changed, outputs={"session_secret": secret})

    def sync_config_map(self, step_input: StepInput) -> StepResult:
        configs = step_input.configs
        logo = custom_logo_file(configs.operator_config)
        config_map, changed = apply_resource(
            self.deploy_manager,
            resources.console_config_map(
                configs.operator_config,
                configs.authentication,
                step_input["console_host"],
                custom_logo_key=logo["key"] if logo else None,
            ),
        )
        return StepResult(changed=changed, outputs={"config_map": config_map})

    def sync_service_ca(self, _: StepInput) -> StepResult:
        config_map, changed = apply_resource(
            self.deploy_manager, resources.service_ca_config_map()
        )
        return StepResult(changed=changed, outputs={"service_ca_config_map": config_map})

    def sync_trusted_ca(self, _: StepInput) -> StepResult:
        config_map, changed = apply_resource(
            self.deploy_manager, resources.trusted_ca_config_map()
        )
        return StepResult(changed=changed, outputs={"trusted_ca_config_map": config_map})

    def sync_custom_logo(self, step_input: StepInput) -> StepResult:
        """Copy the configured logo into the console namespace, or remove the
        copy when no logo is configured
        """
        logo = nested_get(step_input.configs.operator_config, "spec.customization.customLogoFile") or {}
        name, key = logo.get("name", ""), logo.get("key", "")
        if bool(name) != bool(key):
            raise CustomLogoError(
                "either custom logo filename or key have not been set",
                reason="KeyOrFilenameInvalid",
            )
        if not name:
            copied = self._get(
                constants.CONFIG_MAP_KIND,
                constants.CORE_API_VERSION,
                constants.CUSTOM_LOGO_CONFIG_MAP_NAME,
                constants.TARGET_NAMESPACE,
            )
            changed = copied is not None and delete_resource(self.deploy_manager, copied)
            return StepResult(changed=changed, outputs={"custom_logo_config_map": None})

        source = self._get(
            constants.CONFIG_MAP_KIND,
            constants.CORE_API_VERSION,
            name,
            constants.OPENSHIFT_CONFIG_NAMESPACE,
        )
        if source is None:
            raise CustomLogoError(f"custom logo file {name} not found", reason="FailedGet")
        if key not in (source.get("data") or {}) and key not in (source.get("binaryData") or {}):
            raise CustomLogoError(
                "custom logo file exists but no image provided", reason="NoImageProvided"
            )
        try:
            config_map, changed = apply_resource(
                self.deploy_manager, resources.custom_logo_config_map(source)
            )
        except ConsoleOperatorError as err:
            raise CustomLogoError(str(err), reason="FailedSyncSource") from err
        return StepResult(changed=changed, outputs={"custom_logo_config_map": config_map})

    def validate_oauth_serving_cert(self, _: StepInput) -> StepResult:
        config_map = self._get(
            constants.CONFIG_MAP_KIND,
            constants.CORE_API_VERSION,
            constants.OAUTH_SERVING_CERT_CONFIG_MAP_NAME,
            constants.OPENSHIFT_CONFIG_MANAGED_NAMESPACE,
        )
        if config_map is None:
            raise ReasonedError("FailedGet", "oauth-serving-cert configmap not found")
        if not (config_map.get("data") or {}).get(constants.CA_BUNDLE_KEY):
            raise ReasonedError(
                "MissingOAuthServingCertBundle",
                f"oauth-serving-cert configmap is missing {constants.CA_BUNDLE_KEY} data",
            )
        return StepResult(outputs={"oauth_serving_cert_config_map": config_map})

    def get_client_secret(self, _: StepInput) -> StepResult:
        """The secret is written by the OAuth clients controller, or copied
        from the OIDC client config, so a missing secret is waited on
        """
        secret = self._get(
            constants.SECRET_KIND,
            constants.CORE_API_VERSION,
            constants.OAUTH_CLIENT_SECRET_NAME,
            constants.TARGET_NAMESPACE,
        )
        if secret is None:
            raise SyncProgressingError(
                f"secret {constants.OAUTH_CLIENT_SECRET_NAME} not found in {constants.TARGET_NAMESPACE}",
                reason="FailedGet",
            )
        return StepResult(outputs={"client_secret": secret})

    def sync_deployment(self, step_input: StepInput) -> StepResult:
        configs = step_input.configs
        versions = {
            constants.CONFIG_MAP_VERSION_ANNOTATION: resources.resource_version(
                step_input["config_map"]
            ),
            constants.SERVICE_CA_VERSION_ANNOTATION: resources.resource_version(
                step_input["service_ca_config_map"]
            ),
            constants.TRUSTED_CA_VERSION_ANNOTATION: resources.resource_version(
                step_input["trusted_ca_config_map"]
            ),
            constants.OAUTH_SECRET_VERSION_ANNOTATION: resources.resource_version(
                step_input["client_secret"]
            ),
        }
        optional_versions = [
            (constants.SESSION_SECRET_VERSION_ANNOTATION, "session_secret"),
            (constants.OAUTH_SERVING_CERT_VERSION_ANNOTATION, "oauth_serving_cert_config_map"),
            (constants.CUSTOM_LOGO_VERSION_ANNOTATION, "custom_logo_config_map"),
            (constants.AUTHN_CA_TRUST_VERSION_ANNOTATION, "auth_server_ca"),
        ]
        for annotation, key in optional_versions:
            if step_input[key] is not None:
                versions[annotation] = resources.resource_version(step_input[key])

        deployment, changed = apply_resource(
            self.deploy_manager,
            resources.console_deployment(
                configs.operator_config,
                versions,
                mount_custom_logo=step_input["custom_logo_config_map"] is not None,
            ),
        )
        return StepResult(
            changed=changed,
            outputs={"deployment": deployment},
            status_fns=(
                set_deployment_generation(deployment),
                set_ready_replicas(nested_get(deployment, "status.readyReplicas", 0) or 0),
                set_observed_generation(configs.generation),
            ),
        )

    def publish_status(self, step_input: StepInput) -> StepResult:
        """Report rollout progress and publish the console URL. A failure to
        publish is reported but does not fail the pass.
        """
        deployment = step_input["deployment"]
        console_url = step_input["console_url"]

        refresh_err = None
        if step_input.changed_so_far:
            refresh_err = SyncProgressingError(
                "Changes made during sync updates, additional sync expected."
            )
        elif not resources.is_available_and_updated(deployment):
            refresh_err = SyncProgressingError(
                f"Working toward version {step_input.configs.release_version}, "
                f"{nested_get(deployment, 'status.availableReplicas', 0) or 0} replicas available"
            )

        available_err = None
        if not resources.is_available(deployment):
            available_err = ReasonedError(
                "InsufficientReplicas",
                f"{nested_get(deployment, 'status.readyReplicas', 0) or 0} replicas "
                "available for console deployment",
            )

        conditions = [
            handle_progressing("SyncLoopRefresh", "InProgress", refresh_err),
            handle_available("Deployment", "InsufficientReplicas", available_err),
            handle_degraded(
                "ConsoleConfig",
                "FailedUpdate",
                self._capture(self._publish_console_url, step_input.configs, console_url),
            ),
            handle_degraded(
                "ConsolePublicConfigMap",
                "FailedApply",
                self._capture(self._publish_public_config_map, console_url),
            ),
        ]
        return StepResult(conditions=tuple(conditions))

    ## Implementation Details ##################################################

    def _get(self, kind: str, api_version: str, name: str, namespace: Optional[str]) -> Optional[dict]:
        success, content = self.deploy_manager.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )
        assert_cluster(
            success, f"failed to get {kind} {name} in {namespace}", reason="FailedGet"
        )
        return content

    @staticmethod
    def _capture(func, *args) -> Optional[ConsoleOperatorError]:
        try:
            func(*args)
        except ConsoleOperatorError as err:
            log.warning("%s failed [%s]: %s", func.__name__, get_error_reason(err), err)
            return err
        return None

    def _publish_console_url(self, configs: ConfigSnapshot, console_url: str):
        """Record the URL on the console config status if it moved. A stale
        resourceVersion re-reads the console config and tries again.
        """
        console_config = configs.console_config
        retries = config.status.update_retries
        for attempt in range(retries + 1):
            if attempt:
                console_config = self._get(
                    constants.CONSOLE_CONFIG_KIND,
                    constants.CONSOLE_CONFIG_API_VERSION,
                    constants.CONFIG_RESOURCE_NAME,
                    None,
                )
                assert_cluster(
                    console_config is not None,
                    "console config not found",
                    reason="FailedGet",
                )
            if nested_get(console_config, "status.consoleURL") == console_url:
                return
            status = copy.deepcopy(console_config.get("status") or {})
            status["consoleURL"] = console_url
            log.debug("Publishing console URL %s", console_url)
            try:
                success, _ = self.deploy_manager.set_status(
                    kind=constants.CONSOLE_CONFIG_KIND,
                    name=constants.CONFIG_RESOURCE_NAME,
                    namespace=None,
                    status=status,
                    api_version=constants.CONSOLE_CONFIG_API_VERSION,
                    resource_version=nested_get(console_config, "metadata.resourceVersion"),
                )
            except ConflictError as err:
                log.debug("Console config conflict on attempt %d: %s", attempt, err)
                continue
            assert_cluster(
                success, "failed to update console config status", reason="FailedUpdate"
            )
            return
        raise ConflictError(
            f"Gave up publishing the console URL after {retries + 1} attempts"
        )

    def _publish_public_config_map(self, console_url: str):
        apply_resource(self.deploy_manager, resources.public_config_map(console_url))
