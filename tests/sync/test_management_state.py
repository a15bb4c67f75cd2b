"""
Tests for reading the management state
"""

# Third Party
import pytest

# Local
from console_operator.exceptions import ClusterError, ConfigError
from console_operator.sync import (
    ManagementState,
    get_management_state,
    is_managed,
    read_management_state,
)
from console_operator.test_helpers.helpers import MockDeployManager, operator_config


@pytest.mark.parametrize(
    ["value", "expected"],
    [
        ("Managed", ManagementState.MANAGED),
        ("Unmanaged", ManagementState.UNMANAGED),
        ("Removed", ManagementState.REMOVED),
    ],
)
def test_get_management_state(value, expected):
    assert get_management_state(operator_config(value)) is expected


@pytest.mark.parametrize("value", ["Force", "", None])
def test_unknown_management_state(value):
    """Anything but the three known states is a config error that is never
    retried
    """
    with pytest.raises(ConfigError) as err:
        get_management_state(operator_config(value))
    assert err.value.reason == "UnknownState"
    assert not err.value.requeue
    assert "unknown state" in str(err.value)


def test_read_management_state():
    dm = MockDeployManager(resources=[operator_config("Removed")])
    assert read_management_state(dm) is ManagementState.REMOVED


def test_read_management_state_missing_config():
    with pytest.raises(ClusterError) as err:
        read_management_state(MockDeployManager())
    assert err.value.reason == "FailedGet"


def test_read_management_state_get_failure():
    dm = MockDeployManager(resources=[operator_config()], get_state_fail=True)
    with pytest.raises(ClusterError):
        read_management_state(dm)


@pytest.mark.parametrize(
    ["value", "expected"],
    [("Managed", True), ("Unmanaged", False), ("Removed", False)],
)
def test_is_managed(value, expected):
    dm = MockDeployManager(resources=[operator_config(value)])
    assert is_managed(dm) is expected
