"""
Controller for the console service
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase, apply_resource, delete_resource
from ..exceptions import ConsoleOperatorError
from ..status import StatusHandler, handle_progressing_or_degraded
from ..sync import ManagementState, read_management_state
from ..sync import resources

log = alog.use_channel("SVCCTL")

CONTROLLER_NAME = "ConsoleServiceController"


class ServiceController:
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
            log.debug("Removing the console service")
            try:
                delete_resource(
                    self.deploy_manager,
                    resources.stub(
                        constants.SERVICE_KIND,
                        constants.CORE_API_VERSION,
                        constants.OPENSHIFT_CONSOLE_NAME,
                        constants.TARGET_NAMESPACE,
                    ),
                )
            except ConsoleOperatorError as err:
                return err
            return None

        status_handler = StatusHandler(self.deploy_manager)
        err = None
        try:
            apply_resource(self.deploy_manager, resources.console_service())
        except ConsoleOperatorError as sync_err:
            err = sync_err
        status_handler.add_conditions(
            handle_progressing_or_degraded("ServiceSync", "FailedApply", err)
        )
        return status_handler.flush_and_return(err)
