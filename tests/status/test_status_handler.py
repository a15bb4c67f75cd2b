"""
Tests for the batched StatusHandler
"""

# Third Party
import pytest

# Local
from console_operator.exceptions import ClusterError, ConflictError, ReasonedError
from console_operator.status import (
    ConditionUpdate,
    StatusHandler,
    find_condition,
    handle_progressing_or_degraded,
)
from console_operator.test_helpers.helpers import (
    FailOnce,
    MockDeployManager,
    library_config,
    operator_config,
)

## Helpers #####################################################################


def get_status(dm):
    return dm.get_obj("Console", "cluster", api_version="operator.openshift.io/v1")[
        "status"
    ]


## Tests #######################################################################


def test_flush_single_write():
    """All conditions queued during a pass land in one status write"""
    dm = MockDeployManager(resources=[operator_config()])
    handler = StatusHandler(dm)
    handler.add_conditions(handle_progressing_or_degraded("RouteSync", "Failed", None))
    handler.add_condition(ConditionUpdate("DeploymentAvailable", "True"))
    assert handler.flush_and_return() is None
    assert dm.set_status.call_count == 1

    conditions = get_status(dm)["conditions"]
    assert find_condition(conditions, "RouteSyncDegraded")["status"] == "False"
    assert find_condition(conditions, "RouteSyncProgressing")["status"] == "False"
    assert find_condition(conditions, "DeploymentAvailable")["status"] == "True"


def test_flush_returns_given_error():
    dm = MockDeployManager(resources=[operator_config()])
    handler = StatusHandler(dm)
    err = ReasonedError("FailedThing", "it broke")
    handler.add_conditions(handle_progressing_or_degraded("Thing", "Failed", err))
    assert handler.flush_and_return(err) is err
    condition = find_condition(get_status(dm)["conditions"], "ThingDegraded")
    assert condition["status"] == "True"
    assert condition["reason"] == "FailedThing"
    assert condition["message"] == "it broke"


def test_flush_nothing_queued():
    """Flushing with nothing queued makes no call at all"""
    dm = MockDeployManager(resources=[operator_config()])
    assert StatusHandler(dm).flush_and_return() is None
    dm.set_status.assert_not_called()
    dm.get_object_current_state.assert_not_called()


def test_flush_unchanged_skips_write():
    """Re-flushing the same conditions does not write again"""
    dm = MockDeployManager(resources=[operator_config()])
    for _ in range(2):
        handler = StatusHandler(dm)
        handler.add_condition(ConditionUpdate("FooDegraded", "False"))
        handler.flush_and_return()
    assert dm.set_status.call_count == 1


def test_later_update_for_type_wins():
    dm = MockDeployManager(resources=[operator_config()])
    handler = StatusHandler(dm)
    handler.add_condition(ConditionUpdate("FooDegraded", "True", "A"))
    handler.add_condition(ConditionUpdate("FooDegraded", "False"))
    assert handler.conditions == [ConditionUpdate("FooDegraded", "False")]


def test_flush_clears_pending():
    dm = MockDeployManager(resources=[operator_config()])
    handler = StatusHandler(dm)
    handler.add_condition(ConditionUpdate("FooDegraded", "False"))
    handler.flush_and_return()
    assert handler.conditions == []


def test_flush_retries_conflicts():
    """A conflicting status write is retried with a fresh read"""
    dm = MockDeployManager(
        resources=[operator_config()], set_status_fail=FailOnce(ConflictError)
    )
    handler = StatusHandler(dm)
    handler.add_condition(ConditionUpdate("FooDegraded", "False"))
    assert handler.flush_and_return() is None
    assert dm.set_status.call_count == 2
    assert find_condition(get_status(dm)["conditions"], "FooDegraded")


def test_flush_gives_up_on_conflicts():
    dm = MockDeployManager(resources=[operator_config()], set_status_fail=ConflictError)
    handler = StatusHandler(dm)
    handler.add_condition(ConditionUpdate("FooDegraded", "False"))
    with library_config(status={"update_retries": 1}):
        err = handler.flush_and_return()
    assert isinstance(err, ConflictError)
    assert dm.set_status.call_count == 2


def test_flush_write_failure_replaces_error():
    """A failed status write is returned in place of the pass's error"""
    dm = MockDeployManager(resources=[operator_config()], set_status_fail=True)
    handler = StatusHandler(dm)
    handler.add_condition(ConditionUpdate("FooDegraded", "False"))
    err = handler.flush_and_return(ValueError("original"))
    assert isinstance(err, ClusterError)
    assert err.reason == "FailedUpdate"


def test_flush_missing_config():
    dm = MockDeployManager()
    handler = StatusHandler(dm)
    handler.add_condition(ConditionUpdate("FooDegraded", "False"))
    err = handler.flush_and_return()
    assert isinstance(err, ClusterError)
    assert err.reason == "FailedGet"


def test_status_fields():
    """Status field updates are written along with the conditions"""
    dm = MockDeployManager(resources=[operator_config(generation=4)])
    handler = StatusHandler(dm)
    handler.update_observed_generation(4)
    handler.update_ready_replicas(2)
    handler.update_deployment_generation(
        {"metadata": {"name": "console", "namespace": "openshift-console", "generation": 3}}
    )
    handler.flush_and_return()
    status = get_status(dm)
    assert status["observedGeneration"] == 4
    assert status["readyReplicas"] == 2
    assert status["generations"] == [
        {
            "group": "apps",
            "resource": "deployments",
            "namespace": "openshift-console",
            "name": "console",
            "lastGeneration": 3,
        }
    ]


@pytest.mark.parametrize("generation", [1, 2])
def test_deployment_generation_single_entry(generation):
    dm = MockDeployManager(resources=[operator_config()])
    deployment = {"metadata": {"name": "console", "namespace": "ns", "generation": 1}}
    handler = StatusHandler(dm)
    handler.update_deployment_generation(deployment)
    handler.flush_and_return()
    deployment["metadata"]["generation"] = generation
    handler = StatusHandler(dm)
    handler.update_deployment_generation(deployment)
    handler.flush_and_return()
    generations = get_status(dm)["generations"]
    assert len(generations) == 1
    assert generations[0]["lastGeneration"] == generation
