"""
The management state on the operator config selects what a sync pass does
"""

# Standard
from enum import Enum

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase
from ..exceptions import ConfigError, assert_cluster
from ..utils import nested_get

log = alog.use_channel("MGMTSTAT")


class ManagementState(Enum):
    """Whether the operator owns, ignores or tears down its resources"""

    MANAGED = "Managed"
    UNMANAGED = "Unmanaged"
    REMOVED = "Removed"


def get_management_state(operator_config: dict) -> ManagementState:
    """Read the management state off of the operator config

    Raises:
        ConfigError: The value is not one of the known states
    """
    value = nested_get(operator_config, "spec.managementState")
    try:
        return ManagementState(value)
    except ValueError as err:
        log.error("console is in an unknown state: %s", value)
        raise ConfigError(
            f"console is in an unknown state: {value}", reason="UnknownState"
        ) from err


def read_management_state(deploy_manager: DeployManagerBase) -> ManagementState:
    """Read the current management state from the cluster

    Raises:
        ClusterError: The operator config could not be read
        ConfigError: The management state is not a known state
    """
    success, operator_config = deploy_manager.get_object_current_state(
        kind=constants.OPERATOR_CONFIG_KIND,
        name=constants.CONFIG_RESOURCE_NAME,
        api_version=constants.OPERATOR_CONFIG_API_VERSION,
    )
    assert_cluster(
        success and operator_config is not None,
        "failed to retrieve operator config",
        reason="FailedGet",
    )
    return get_management_state(operator_config)


def is_managed(deploy_manager: DeployManagerBase) -> bool:
    """Whether controllers other than the main operator should sync. Only a
    Managed console is synced.
    """
    state = read_management_state(deploy_manager)
    if state is not ManagementState.MANAGED:
        log.debug4("console is in the %s state, skipping sync", state.value)
        return False
    return True
