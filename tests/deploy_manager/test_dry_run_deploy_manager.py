"""Tests for the DryRunDeployManager

NOTE: The majority of the functionality is thoroughly exercised by all of the
    other unit tests, so the tests here only test elements that are particularly
    delicate and/or not covered elsewhere.
"""
# Standard
from threading import Event, Timer
from unittest.mock import Mock

# Third Party
import pytest

# Local
from console_operator.deploy_manager import DryRunDeployManager, KubeEventType
from console_operator.exceptions import ConflictError

## Helpers #####################################################################

NAMESPACE = "somewhere"


def make_obj(kind="Foo", name="foobar", namespace=NAMESPACE, spec=None, labels=None):
    return {
        "apiVersion": "foo.bar/v1",
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": labels or {"app": "foobar", "run": "frontend"},
        },
        "spec": spec or {"a": 1},
    }


def get_obj(dm, obj):
    return dm.get_object_current_state(
        kind=obj["kind"],
        name=obj["metadata"]["name"],
        namespace=obj["metadata"]["namespace"],
        api_version=obj["apiVersion"],
    )[1]


## Tests #######################################################################


def test_deploy_sets_server_metadata():
    """Deployed objects get a resourceVersion, generation and uid"""
    dm = DryRunDeployManager()
    obj = make_obj()
    assert dm.deploy([obj]) == (True, True)
    current = get_obj(dm, obj)
    assert current["metadata"]["resourceVersion"]
    assert current["metadata"]["generation"] == 1
    assert current["metadata"]["uid"]
    assert dm.write_count == 1


def test_deploy_same_content_is_unchanged():
    """Redeploying identical content changes nothing, not even the version"""
    dm = DryRunDeployManager(resources=[make_obj()])
    before = get_obj(dm, make_obj())
    assert dm.deploy([make_obj()]) == (True, False)
    after = get_obj(dm, make_obj())
    assert after["metadata"]["resourceVersion"] == before["metadata"]["resourceVersion"]
    assert after["metadata"]["generation"] == before["metadata"]["generation"]


def test_spec_change_bumps_generation():
    dm = DryRunDeployManager(resources=[make_obj()])
    before = get_obj(dm, make_obj())
    dm.deploy([make_obj(spec={"a": 2})])
    after = get_obj(dm, make_obj())
    assert after["metadata"]["generation"] == before["metadata"]["generation"] + 1
    assert after["metadata"]["resourceVersion"] != before["metadata"]["resourceVersion"]


def test_label_change_keeps_generation():
    """Only content outside of metadata moves the generation"""
    dm = DryRunDeployManager(resources=[make_obj()])
    before = get_obj(dm, make_obj())
    dm.deploy([make_obj(labels={"app": "other"})])
    after = get_obj(dm, make_obj())
    assert after["metadata"]["generation"] == before["metadata"]["generation"]


def test_deploy_keeps_status():
    """A deploy never overwrites the status subresource"""
    dm = DryRunDeployManager(resources=[make_obj()])
    dm.set_status("Foo", "foobar", NAMESPACE, {"ready": True}, api_version="foo.bar/v1")
    dm.deploy([make_obj(spec={"a": 3})])
    assert get_obj(dm, make_obj())["status"] == {"ready": True}


def test_set_status_conflict():
    """A status write based on a stale resourceVersion is rejected"""
    dm = DryRunDeployManager(resources=[make_obj()])
    stale = get_obj(dm, make_obj())["metadata"]["resourceVersion"]
    dm.deploy([make_obj(spec={"a": 2})])
    with pytest.raises(ConflictError):
        dm.set_status(
            "Foo",
            "foobar",
            NAMESPACE,
            {"ready": True},
            api_version="foo.bar/v1",
            resource_version=stale,
        )


def test_set_status_missing_object():
    dm = DryRunDeployManager()
    assert dm.set_status("Foo", "foobar", NAMESPACE, {}, api_version="foo.bar/v1") == (
        False,
        False,
    )


def test_strict_resource_version():
    dm = DryRunDeployManager(resources=[make_obj()], strict_resource_version=True)
    stale = make_obj(spec={"a": 2})
    stale["metadata"]["resourceVersion"] = "nope"
    assert dm.deploy([stale]) == (False, False)


def test_disable():
    """Disabling removes the object and a second disable is a no-op"""
    dm = DryRunDeployManager(resources=[make_obj()])
    assert dm.disable([make_obj()]) == (True, True)
    assert get_obj(dm, make_obj()) is None
    assert dm.disable([make_obj()]) == (True, False)


def test_filter_objects_by_label():
    dm = DryRunDeployManager(
        resources=[
            make_obj(name="one", labels={"app": "a"}),
            make_obj(name="two", labels={"app": "b"}),
        ]
    )
    success, objs = dm.filter_objects_current_state(
        kind="Foo", namespace=NAMESPACE, label_selector="app=a"
    )
    assert success
    assert [obj["metadata"]["name"] for obj in objs] == ["one"]


def test_filter_objects_by_field():
    dm = DryRunDeployManager(resources=[make_obj(name="one"), make_obj(name="two")])
    _, objs = dm.filter_objects_current_state(
        kind="Foo", field_selector="metadata.name=two"
    )
    assert [obj["metadata"]["name"] for obj in objs] == ["two"]


def test_watches_triggered():
    """Registered watches are triggered when a resource of the right kind is
    deployed
    """
    dm = DryRunDeployManager()
    callback = Mock()
    dm.register_watch("foo.bar/v1", "Foo", callback)
    dm.deploy([make_obj()])
    callback.assert_called_once()
    dm.deploy([make_obj(kind="Bar")])
    callback.assert_called_once()


def test_status_writes_do_not_trigger_watches():
    dm = DryRunDeployManager(resources=[make_obj()])
    callback = Mock()
    dm.register_watch("foo.bar/v1", "Foo", callback)
    dm.set_status("Foo", "foobar", NAMESPACE, {"x": 1}, api_version="foo.bar/v1")
    callback.assert_not_called()


@pytest.mark.timeout(5)
def test_watch_objects_stream():
    """The watch stream yields the initial objects, then changes, and ends once
    the stop event is set
    """
    dm = DryRunDeployManager(resources=[make_obj(name="initial")])
    stop_event = Event()
    Timer(0.1, lambda: dm.deploy([make_obj(name="added")])).start()
    Timer(0.2, lambda: dm.disable([make_obj(name="added")])).start()
    Timer(0.4, stop_event.set).start()

    events = [
        (event.type, event.resource.name)
        for event in dm.watch_objects(
            kind="Foo", api_version="foo.bar/v1", stop_event=stop_event
        )
    ]
    assert events == [
        (KubeEventType.ADDED, "initial"),
        (KubeEventType.ADDED, "added"),
        (KubeEventType.DELETED, "added"),
    ]


def test_apply_status_keeps_other_managers_fields():
    """A status apply only touches the fields the manager owns"""
    dm = DryRunDeployManager(resources=[make_obj()])
    dm.set_status(
        "Foo", "foobar", NAMESPACE, {"other": "value"}, api_version="foo.bar/v1"
    )
    success, changed = dm.apply_status(
        "Foo",
        "foobar",
        NAMESPACE,
        {"mine": "one"},
        field_manager="me",
        api_version="foo.bar/v1",
    )
    assert success and changed
    assert get_obj(dm, make_obj())["status"] == {"other": "value", "mine": "one"}

    # Dropping an owned field removes it
    dm.apply_status(
        "Foo", "foobar", NAMESPACE, {}, field_manager="me", api_version="foo.bar/v1"
    )
    assert get_obj(dm, make_obj())["status"] == {"other": "value"}
