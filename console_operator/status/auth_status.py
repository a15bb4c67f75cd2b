"""
The AuthStatusHandler reports the console's OIDC client status inside the
cluster Authentication resource at .status.oidcClients. Several components
write to that list, so every write is a server-side apply scoped to this
operator's field manager and only touches the entry for this component.
"""

# Standard
from typing import Dict, List, Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase
from ..deploy_manager.managed_fields import extract_owned_status
from ..exceptions import assert_cluster
from ..utils import nested_get, now_rfc3339
from .conditions import (
    AVAILABLE,
    DEGRADED,
    PROGRESSING,
    STATUS_FALSE,
    STATUS_TRUE,
    STATUS_UNKNOWN,
    find_condition,
    make_condition,
)

log = alog.use_channel("AUTHSTAT")

# Order of the conditions written for the component
AUTH_CONDITION_TYPES = [DEGRADED, PROGRESSING, AVAILABLE]


class AuthStatusHandler:
    """Status writer for this component's entry in the Authentication
    resource's oidcClients list
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        component_name: str = constants.OPENSHIFT_CONSOLE_NAME,
        component_namespace: str = constants.TARGET_NAMESPACE,
        field_manager: Optional[str] = None,
    ):
        self.deploy_manager = deploy_manager
        self.component_name = component_name
        self.component_namespace = component_namespace
        self.field_manager = field_manager or config.field_manager
        self._current_client_id: Optional[str] = None
        self._conditions_to_apply: Dict[str, dict] = {}

    ## Setters #################################################################

    @property
    def current_client_id(self) -> Optional[str]:
        return self._current_client_id

    def with_current_oidc_client(self, client_id: str):
        """Set the client currently used by the component. An empty client id
        releases any client previously claimed.
        """
        self._current_client_id = client_id

    def degraded(self, reason: str, message: str):
        self._set_conditions(
            reason,
            message,
            {PROGRESSING: STATUS_FALSE, DEGRADED: STATUS_TRUE},
        )

    def progressing(self, reason: str, message: str):
        self._set_conditions(
            reason,
            message,
            {PROGRESSING: STATUS_TRUE, DEGRADED: STATUS_FALSE},
        )

    def unavailable(self, reason: str, message: str):
        self._set_conditions(
            reason,
            message,
            {AVAILABLE: STATUS_FALSE, PROGRESSING: STATUS_FALSE, DEGRADED: STATUS_FALSE},
        )

    def available(self, reason: str, message: str):
        self._set_conditions(
            reason,
            message,
            {AVAILABLE: STATUS_TRUE, PROGRESSING: STATUS_FALSE, DEGRADED: STATUS_FALSE},
        )

    ## Apply ###################################################################

    def apply(self, authn: Optional[dict] = None) -> bool:
        """Apply the component's oidcClients entry. The pending conditions are
        always cleared, whether or not a write happened.

        Args:
            authn:  Optional[dict]
                The current Authentication resource, fetched if not given

        Returns:
            changed:  bool
                Whether or not a write was made
        """
        try:
            if authn is None:
                success, authn = self.deploy_manager.get_object_current_state(
                    kind=constants.AUTHENTICATION_KIND,
                    name=constants.CONFIG_RESOURCE_NAME,
                    api_version=constants.AUTHENTICATION_API_VERSION,
                )
                assert_cluster(
                    success and authn is not None,
                    "Failed to fetch the cluster Authentication",
                    reason="FailedGet",
                )

            owned_status = extract_owned_status(authn, self.field_manager) or {}
            existing_clients = owned_status.get("oidcClients") or []
            existing_entry = self._find_entry(existing_clients)

            entry = self._build_entry(authn, existing_entry)
            if not DeepDiff(existing_clients, [entry]):
                log.debug2("OIDC client status unchanged, skipping apply")
                return False

            log.debug("Applying OIDC client status for %s", self.component_name)
            success, _ = self.deploy_manager.apply_status(
                kind=constants.AUTHENTICATION_KIND,
                name=constants.CONFIG_RESOURCE_NAME,
                namespace=None,
                status={"oidcClients": [entry]},
                field_manager=self.field_manager,
                api_version=constants.AUTHENTICATION_API_VERSION,
                force=True,
            )
            assert_cluster(
                success,
                "Failed to apply the OIDC client status",
                reason="FailedApply",
            )
            return True
        finally:
            self._conditions_to_apply = {}

    ## Implementation Details ##################################################

    def _set_conditions(self, reason: str, message: str, statuses: Dict[str, str]):
        timestamp = now_rfc3339()
        for condition_type, status in statuses.items():
            self._conditions_to_apply[condition_type] = make_condition(
                condition_type, status, reason, message, timestamp
            )

    def _find_entry(self, clients: List[dict]) -> Optional[dict]:
        for client in clients:
            if (
                client.get("componentName") == self.component_name
                and client.get("componentNamespace") == self.component_namespace
            ):
                return client
        return None

    def _build_entry(self, authn: dict, existing_entry: Optional[dict]) -> dict:
        entry = {
            "componentName": self.component_name,
            "componentNamespace": self.component_namespace,
        }

        providers = nested_get(authn, "spec.oidcProviders") or []
        if self._current_client_id and providers:
            entry["currentOIDCClients"] = [
                {
                    "oidcProviderName": providers[0].get("name"),
                    "issuerURL": nested_get(providers[0], "issuer.issuerURL"),
                    "clientID": self._current_client_id,
                }
            ]
        elif self._current_client_id:
            log.warning(
                "No OIDC providers configured, not reporting client %s",
                self._current_client_id,
            )

        existing_conditions = (existing_entry or {}).get("conditions") or []
        if nested_get(authn, "spec.type") == constants.AUTH_TYPE_OIDC:
            entry["conditions"] = [
                self._resolve_condition(condition_type, existing_conditions)
                for condition_type in AUTH_CONDITION_TYPES
            ]
        elif existing_conditions:
            entry["conditions"] = copy.deepcopy(existing_conditions)
        return entry

    def _resolve_condition(
        self, condition_type: str, existing_conditions: List[dict]
    ) -> dict:
        existing = find_condition(existing_conditions, condition_type)
        pending = self._conditions_to_apply.get(condition_type)
        if pending is None:
            if existing is not None:
                return copy.deepcopy(existing)
            return make_condition(condition_type, STATUS_UNKNOWN, "Unknown", "")

        condition = copy.deepcopy(pending)
        if existing is not None and existing.get("status") == pending["status"]:
            condition["lastTransitionTime"] = existing.get(
                "lastTransitionTime", pending["lastTransitionTime"]
            )
        return condition
