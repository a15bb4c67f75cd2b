"""
Tests for the ordered step sequencer
"""

# Standard
from unittest import mock

# Third Party
import pytest

# Local
from console_operator.exceptions import ReasonedError, SyncProgressingError
from console_operator.status import ConditionUpdate, StatusHandler
from console_operator.sync import (
    StepResult,
    SyncSequencer,
    SyncStep,
    read_config_snapshot,
)
from console_operator.test_helpers.helpers import (
    MockDeployManager,
    cluster_resources,
    library_config,
)

## Helpers #####################################################################


def make_snapshot():
    return read_config_snapshot(MockDeployManager(resources=cluster_resources()))


def pending(handler):
    return {update.type: update for update in handler.conditions}


## Validation ##################################################################


def test_requires_must_be_provided_earlier():
    """A step cannot depend on an output that no earlier step provides"""
    with pytest.raises(AssertionError):
        SyncSequencer(
            [
                SyncStep(name="b", run=mock.Mock(), requires=("a_out",)),
                SyncStep(name="a", run=mock.Mock(), provides=("a_out",)),
            ]
        )


def test_duplicate_step_names():
    with pytest.raises(AssertionError):
        SyncSequencer([SyncStep(name="a", run=mock.Mock())] * 2)


## Running #####################################################################


def test_outputs_flow_forward():
    """Each step sees the outputs of the steps before it"""
    seen = {}

    def first(_):
        return StepResult(changed=True, outputs={"value": 42})

    def second(step_input):
        seen["value"] = step_input["value"]
        seen["changed_so_far"] = step_input.changed_so_far
        return StepResult()

    sequencer = SyncSequencer(
        [
            SyncStep(name="first", run=first, provides=("value",)),
            SyncStep(name="second", run=second, requires=("value",)),
        ]
    )
    handler = StatusHandler(MockDeployManager())
    result = sequencer.run(make_snapshot(), handler)
    assert seen == {"value": 42, "changed_so_far": True}
    assert result.changed
    assert result.error is None
    assert result.completed_steps == ("first", "second")


def test_first_failure_stops_the_pass():
    """Steps after a failing step do not run"""
    later = mock.Mock(return_value=StepResult())
    err = ReasonedError("FailedThing", "no good")
    sequencer = SyncSequencer(
        [
            SyncStep(name="ok", run=lambda _: StepResult(), prefix="Ok"),
            SyncStep(
                name="bad",
                run=lambda _: StepResult(reason="FailedThing", error=err),
                prefix="Bad",
            ),
            SyncStep(name="later", run=later, prefix="Later"),
        ]
    )
    handler = StatusHandler(MockDeployManager())
    result = sequencer.run(make_snapshot(), handler)
    later.assert_not_called()
    assert result.error is err
    assert result.failed_step == "bad"
    assert result.completed_steps == ("ok",)

    conditions = pending(handler)
    assert conditions["OkDegraded"].status == "False"
    assert conditions["BadDegraded"].status == "True"
    assert conditions["BadDegraded"].reason == "FailedThing"
    assert "LaterDegraded" not in conditions


def test_raised_errors_become_results():
    """A raised error is handled like a returned one"""

    def raises(_):
        raise SyncProgressingError("still waiting", reason="Waiting")

    sequencer = SyncSequencer([SyncStep(name="wait", run=raises, prefix="Wait")])
    handler = StatusHandler(MockDeployManager())
    result = sequencer.run(make_snapshot(), handler)
    assert isinstance(result.error, SyncProgressingError)
    conditions = pending(handler)
    assert conditions["WaitProgressing"].status == "True"
    assert conditions["WaitProgressing"].reason == "Waiting"
    assert conditions["WaitDegraded"].status == "False"


def test_skipped_step_provides_none():
    """A step whose predicate fails is skipped and its outputs are None"""
    skipped = mock.Mock()
    seen = {}

    def consumer(step_input):
        seen["value"] = step_input["value"]
        return StepResult()

    sequencer = SyncSequencer(
        [
            SyncStep(
                name="skipped",
                run=skipped,
                prefix="Skipped",
                provides=("value",),
                when=lambda configs: configs.auth_type == "OIDC",
            ),
            SyncStep(name="consumer", run=consumer, requires=("value",)),
        ]
    )
    handler = StatusHandler(MockDeployManager())
    sequencer.run(make_snapshot(), handler)
    skipped.assert_not_called()
    assert seen == {"value": None}
    assert "SkippedDegraded" not in pending(handler)


def test_undeclared_outputs_rejected():
    sequencer = SyncSequencer(
        [SyncStep(name="sneaky", run=lambda _: StepResult(outputs={"x": 1}))]
    )
    with pytest.raises(AssertionError):
        sequencer.run(make_snapshot(), StatusHandler(MockDeployManager()))


def test_extra_conditions_and_status_fns():
    status_fn = mock.Mock()
    sequencer = SyncSequencer(
        [
            SyncStep(
                name="extra",
                run=lambda _: StepResult(
                    conditions=(ConditionUpdate("ExtraAvailable", "True"),),
                    status_fns=(status_fn,),
                ),
            )
        ]
    )
    handler = StatusHandler(MockDeployManager())
    sequencer.run(make_snapshot(), handler)
    assert pending(handler) == {"ExtraAvailable": ConditionUpdate("ExtraAvailable", "True")}
    assert handler._status_fns == [status_fn]


## Snapshot ####################################################################


def test_snapshot_fields():
    with library_config(release_version="4.99.0"):
        snapshot = make_snapshot()
    assert snapshot.release_version == "4.99.0"
    assert snapshot.auth_type == "IntegratedOAuth"
    assert snapshot.generation == 1
    assert snapshot.conditions == []
    assert snapshot.management_state.value == "Managed"


def test_snapshot_is_frozen():
    snapshot = make_snapshot()
    with pytest.raises(AttributeError):
        snapshot.release_version = "other"
