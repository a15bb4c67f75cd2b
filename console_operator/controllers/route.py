"""
Controller for the console route. The host is derived from the cluster ingress
domain.
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase, apply_resource, delete_resource
from ..exceptions import ConsoleOperatorError, ReasonedError, assert_cluster
from ..status import StatusHandler, handle_progressing_or_degraded
from ..sync import ManagementState, read_management_state
from ..sync import resources
from ..utils import nested_get

log = alog.use_channel("ROUTECTL")

CONTROLLER_NAME = "ConsoleRouteController"


class RouteController:
    """Keeps the default console route applied"""

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    def sync(self, _=None) -> Optional[BaseException]:
        try:
            state = read_management_state(self.deploy_manager)
        except ConsoleOperatorError as err:
            return err

        if state is ManagementState.UNMANAGED:
            return None
        if state is ManagementState.REMOVED:
            log.debug("Removing the console route")
            try:
                delete_resource(self.deploy_manager, self._route_stub())
            except ConsoleOperatorError as err:
                return err
            return None

        status_handler = StatusHandler(self.deploy_manager)
        err = None
        try:
            _, changed = apply_resource(
                self.deploy_manager, resources.console_route(self._route_host())
            )
            log.debug2("Console route applied, changed: %s", changed)
        except ConsoleOperatorError as sync_err:
            err = sync_err
        status_handler.add_conditions(
            handle_progressing_or_degraded("DefaultRouteSync", "FailedDefaultRouteApply", err)
        )
        return status_handler.flush_and_return(err)

    ## Implementation Details ##################################################

    def _route_host(self) -> str:
        success, ingress = self.deploy_manager.get_object_current_state(
            kind=constants.INGRESS_KIND,
            name=constants.CONFIG_RESOURCE_NAME,
            api_version=constants.INGRESS_API_VERSION,
        )
        assert_cluster(
            success and ingress is not None,
            "failed to get the cluster ingress config",
            reason="FailedGet",
        )
        domain = nested_get(ingress, "spec.domain")
        if not domain:
            raise ReasonedError("FailedIngressDomain", "cluster ingress domain is not set")
        return resources.default_route_host(domain)

    @staticmethod
    def _route_stub() -> dict:
        return resources.stub(
            constants.ROUTE_KIND,
            constants.ROUTE_API_VERSION,
            constants.OPENSHIFT_CONSOLE_NAME,
            constants.TARGET_NAMESPACE,
        )
