"""
Tests for the Controller and its builder
"""

# Standard
from unittest import mock

# Third Party
import pytest

# Local
from console_operator.controller import (
    Context,
    ControllerBuilder,
    Informer,
    NamesFilter,
    SyncContext,
)
from console_operator.deploy_manager import DryRunDeployManager, KubeEventType, KubeWatchEvent
from console_operator.exceptions import ClusterError, ConfigError
from console_operator.managed_object import ManagedObject
from console_operator.test_helpers.helpers import config_map, wait_for

NAMESPACE = "openshift-console"

## Helpers #####################################################################


class FakeInformer:
    """Informer stand-in that lets tests push events by hand"""

    def __init__(self, synced=True):
        self.handlers = []
        self.synced = synced

    def add_event_handler(self, handler):
        self.handlers.append(handler)

    def has_synced(self):
        return self.synced

    def push(self, name, event_type=KubeEventType.MODIFIED):
        event = KubeWatchEvent(
            type=event_type,
            resource=ManagedObject(config_map(name, NAMESPACE)),
        )
        for handler in self.handlers:
            handler(event)


def make_controller(sync, *informers, event_filter=None):
    builder = ControllerBuilder().with_sync(sync)
    if event_filter is not None:
        builder = builder.with_filtered_event_informers(event_filter, *informers)
    else:
        builder = builder.with_informers(*informers)
    return builder.to_controller("test-controller")


## Builder #####################################################################


def test_builder_requires_sync():
    with pytest.raises(ConfigError):
        ControllerBuilder().to_controller("nope")


@pytest.mark.parametrize(
    ["period", "expected"], [("1m", 60), (2.5, 2.5), ("1m30s", 90)]
)
def test_builder_resync_period(period, expected):
    controller = (
        ControllerBuilder()
        .with_sync(mock.Mock())
        .resync_every(period)
        .to_controller("c")
    )
    assert controller.resync_period == expected


def test_builder_bad_resync_period():
    with pytest.raises(ConfigError):
        ControllerBuilder().resync_every("often")


## Queueing ####################################################################


def test_events_coalesce_to_one_key():
    """Any number of events enqueue the single key once"""
    informer = FakeInformer()
    controller = make_controller(mock.Mock(return_value=None), informer)
    informer.push("a")
    informer.push("b")
    assert len(controller.queue) == 1


def test_filtered_events():
    informer = FakeInformer()
    controller = make_controller(
        mock.Mock(return_value=None), informer, event_filter=NamesFilter(["console"])
    )
    informer.push("other")
    assert len(controller.queue) == 0
    informer.push("console")
    assert len(controller.queue) == 1


## Processing ##################################################################


def test_process_success_forgets():
    sync = mock.Mock(return_value=None)
    controller = make_controller(sync)
    controller.queue.add("key")
    controller.queue.when("key")
    assert controller.process_next(timeout=0)
    sync.assert_called_once_with(SyncContext(queue_key="key", controller_name="test-controller"))
    assert controller.queue.num_requeues("key") == 0


def test_process_empty_queue():
    controller = make_controller(mock.Mock())
    assert not controller.process_next(timeout=0)


@pytest.mark.parametrize(
    "outcome",
    [
        mock.Mock(return_value=ClusterError("failed")),
        mock.Mock(side_effect=RuntimeError("raised")),
    ],
)
def test_process_failure_rate_limited(outcome):
    """Returned and raised errors both requeue the key with backoff"""
    controller = make_controller(outcome)
    controller.queue.add("key")
    controller.process_next(timeout=0)
    assert controller.queue.num_requeues("key") == 1


def test_process_config_error_not_retried():
    """Errors that retrying cannot fix are dropped"""
    controller = make_controller(mock.Mock(return_value=ConfigError("bad config")))
    controller.queue.add("key")
    controller.process_next(timeout=0)
    assert controller.queue.num_requeues("key") == 0
    assert len(controller.queue) == 0


## Running #####################################################################


@pytest.mark.timeout(5)
def test_controller_waits_for_caches():
    """No sync happens until every informer has synced"""
    informer = FakeInformer(synced=False)
    sync = mock.Mock(return_value=None)
    controller = make_controller(sync, informer)
    ctx = Context()
    try:
        controller.start(ctx)
        assert not wait_for(lambda: sync.called, timeout=0.3)
        informer.synced = True
        assert wait_for(lambda: sync.called)
    finally:
        ctx.cancel()


@pytest.mark.timeout(5)
def test_controller_syncs_on_events():
    """A running controller syncs once at start and again on each change"""
    dm = DryRunDeployManager()
    informer = Informer(dm, kind="ConfigMap", api_version="v1", namespace=NAMESPACE)
    sync = mock.Mock(return_value=None)
    controller = make_controller(sync, informer)
    ctx = Context()
    try:
        informer.start(ctx)
        controller.start(ctx)
        assert wait_for(lambda: sync.call_count >= 1)
        calls = sync.call_count
        dm.deploy([config_map("new", NAMESPACE, {"a": "b"})])
        assert wait_for(lambda: sync.call_count > calls)
    finally:
        ctx.cancel()


@pytest.mark.timeout(5)
def test_controller_periodic_resync():
    sync = mock.Mock(return_value=None)
    controller = (
        ControllerBuilder().with_sync(sync).resync_every(0.05).to_controller("resync")
    )
    ctx = Context()
    try:
        controller.start(ctx)
        assert wait_for(lambda: sync.call_count >= 3)
    finally:
        ctx.cancel()


@pytest.mark.timeout(5)
def test_controller_retries_failures():
    """A failing sync is retried until it succeeds"""
    sync = mock.Mock(side_effect=[ClusterError("one"), ClusterError("two"), None])
    controller = make_controller(sync)
    ctx = Context()
    try:
        controller.start(ctx)
        assert wait_for(lambda: sync.call_count == 3)
        assert wait_for(lambda: controller.queue.num_requeues("key") == 0)
    finally:
        ctx.cancel()
