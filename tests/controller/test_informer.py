"""
Tests for the Informer list/watch cache
"""

# Standard
from unittest import mock

# Third Party
import pytest

# Local
from console_operator.controller import Context, Informer
from console_operator.deploy_manager import DryRunDeployManager, KubeEventType
from console_operator.test_helpers.helpers import (
    MockDeployManager,
    config_map,
    library_config,
    wait_for,
)

NAMESPACE = "openshift-console"


def make_informer(dm, **kwargs):
    return Informer(dm, kind="ConfigMap", api_version="v1", namespace=NAMESPACE, **kwargs)


class EventRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append((event.type, event.resource.name))


@pytest.mark.timeout(5)
def test_informer_lists_then_watches():
    """The informer syncs with existing objects and then sees new ones"""
    dm = DryRunDeployManager(resources=[config_map("existing", NAMESPACE, {"a": "b"})])
    informer = make_informer(dm)
    recorder = EventRecorder()
    informer.add_event_handler(recorder)
    ctx = Context()
    try:
        informer.start(ctx)
        assert wait_for(informer.has_synced)
        assert informer.get("existing", NAMESPACE)["data"] == {"a": "b"}

        dm.deploy([config_map("new", NAMESPACE, {"c": "d"})])
        assert wait_for(lambda: informer.get("new", NAMESPACE) is not None)

        dm.deploy([config_map("new", NAMESPACE, {"c": "e"})])
        assert wait_for(lambda: informer.get("new", NAMESPACE)["data"] == {"c": "e"})

        dm.disable([config_map("new", NAMESPACE)])
        assert wait_for(lambda: informer.get("new", NAMESPACE) is None)
    finally:
        ctx.cancel()

    assert recorder.events == [
        (KubeEventType.ADDED, "existing"),
        (KubeEventType.ADDED, "new"),
        (KubeEventType.MODIFIED, "new"),
        (KubeEventType.DELETED, "new"),
    ]


@pytest.mark.timeout(5)
def test_informer_name_scoped():
    """A named informer ignores other objects of the kind"""
    dm = DryRunDeployManager(
        resources=[
            config_map("console", NAMESPACE, {}),
            config_map("other", NAMESPACE, {}),
        ]
    )
    informer = make_informer(dm, name="console")
    ctx = Context()
    try:
        informer.start(ctx)
        assert wait_for(informer.has_synced)
        assert [obj["metadata"]["name"] for obj in informer.list()] == ["console"]
    finally:
        ctx.cancel()


@pytest.mark.timeout(5)
def test_informer_stops_on_cancel():
    dm = DryRunDeployManager()
    informer = make_informer(dm)
    ctx = Context()
    thread = informer.start(ctx)
    assert wait_for(informer.has_synced)
    ctx.cancel()
    thread.join(2)
    assert not thread.is_alive()


@pytest.mark.timeout(5)
def test_informer_gives_up_after_retries():
    """A list that keeps failing ends the informer once the retries run out"""
    dm = MockDeployManager()
    dm.filter_objects_current_state = mock.Mock(return_value=(False, []))
    informer = make_informer(dm)
    with library_config(controller={"watch_retry_count": 1, "watch_retry_delay": "0.01s"}):
        informer.run(Context())
    assert dm.filter_objects_current_state.call_count == 2
    assert not informer.has_synced()


def test_handler_errors_are_contained():
    """A failing handler does not keep other handlers from seeing the event"""
    dm = DryRunDeployManager(resources=[config_map("existing", NAMESPACE, {})])
    informer = make_informer(dm)
    informer.add_event_handler(mock.Mock(side_effect=RuntimeError("boom")))
    recorder = EventRecorder()
    informer.add_event_handler(recorder)
    ctx = Context()
    ctx.cancel()
    # A cancelled context lists once and returns without watching
    informer._list_and_watch(ctx)
    assert recorder.events == [(KubeEventType.ADDED, "existing")]
