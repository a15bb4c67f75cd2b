"""
The top level sync of the console operator. Every pass reads the config
snapshot once, then dispatches on the management state.
"""

# Standard
from typing import List, Optional

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase, apply_resource, delete_resource
from ..exceptions import ClusterError, ConsoleOperatorError, assert_cluster
from ..status.handler import StatusHandler, reset_conditions
from ..utils import nested_get
from . import resources
from .management_state import ManagementState
from .sequencer import ConfigSnapshot, SyncSequencer, read_config_snapshot
from .steps import ConsoleSyncSteps

log = alog.use_channel("OPRATR")


class ConsoleOperator:
    """Reconciles the console against the operator config"""

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager
        self.sequencer = SyncSequencer(ConsoleSyncSteps(deploy_manager).ordered_steps())

    def sync(self, _=None) -> Optional[BaseException]:
        """Run one pass. The returned error (if any) tells the controller to
        retry.
        """
        try:
            configs = read_config_snapshot(self.deploy_manager)
            state = configs.management_state
        except ConsoleOperatorError as err:
            log.warning("Unable to start sync: %s", err)
            return err

        if state is ManagementState.UNMANAGED:
            log.debug("console is in an unmanaged state: skipping sync")
            return None
        if state is ManagementState.REMOVED:
            log.info("console has been removed")
            return self.remove_console(configs)

        log.debug2("Starting managed sync")
        status_handler = StatusHandler(self.deploy_manager)
        result = self.sequencer.run(configs, status_handler)
        if result.error is not None:
            log.info("Sync failed at step %s: %s", result.failed_step, result.error)
        else:
            log.debug("Sync complete, changed: %s", result.changed)
        return status_handler.flush_and_return(result.error)

    def remove_console(self, configs: ConfigSnapshot) -> Optional[BaseException]:
        """Delete every owned resource and reset the reported conditions.
        Resources that are already gone count as removed.
        """
        failures: List[str] = []
        for stub in resources.owned_resource_stubs():
            try:
                delete_resource(self.deploy_manager, stub)
            except ConsoleOperatorError as err:
                failures.append(str(err))

        try:
            self._deregister_oauth_client()
        except ConsoleOperatorError as err:
            failures.append(str(err))

        try:
            apply_resource(self.deploy_manager, resources.empty_public_config_map())
        except ConsoleOperatorError as err:
            failures.append(str(err))

        err = None
        if failures:
            err = ClusterError("; ".join(failures), reason="FailedDelete")
            log.warning("Failed to remove console resources: %s", err)

        status_handler = StatusHandler(self.deploy_manager)
        status_handler.add_conditions(reset_conditions(configs.conditions))
        return status_handler.flush_and_return(err)

    ## Implementation Details ##################################################

    def _deregister_oauth_client(self):
        success, oauth_client = self.deploy_manager.get_object_current_state(
            kind=constants.OAUTH_CLIENT_KIND,
            name=constants.OPENSHIFT_CONSOLE_NAME,
            api_version=constants.OAUTH_CLIENT_API_VERSION,
        )
        assert_cluster(success, "failed to get oauth client", reason="FailedGet")
        if oauth_client is None or not nested_get(oauth_client, "redirectURIs"):
            return
        apply_resource(
            self.deploy_manager,
            resources.deregister_oauth_client(oauth_client),
            oauth_client,
        )
