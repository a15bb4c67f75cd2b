"""
Tests for the event filters
"""

# Third Party
import pytest

# Local
from console_operator.controller import (
    AndFilter,
    EnableFilter,
    LabelFilter,
    NamesFilter,
    NamespacesFilter,
)
from console_operator.deploy_manager import KubeEventType
from console_operator.managed_object import ManagedObject


def make_resource(name="console", namespace="openshift-console", labels=None):
    return ManagedObject(
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "labels": labels or {},
            },
        }
    )


@pytest.mark.parametrize(
    ["name", "namespace", "expected"],
    [
        ("console", "openshift-console", True),
        ("other", "openshift-console", False),
        ("console", "elsewhere", False),
    ],
)
def test_names_filter_with_namespaces(name, namespace, expected):
    filt = NamesFilter(["console"], namespaces=["openshift-console"])
    assert filt(make_resource(name, namespace), KubeEventType.ADDED) is expected


def test_names_filter_any_namespace():
    filt = NamesFilter(["console", "console-config"])
    assert filt(make_resource("console-config", "anywhere"), KubeEventType.MODIFIED)


def test_namespaces_filter():
    filt = NamespacesFilter(["a", "b"])
    assert filt(make_resource(namespace="b"), KubeEventType.ADDED)
    assert not filt(make_resource(namespace="c"), KubeEventType.ADDED)


def test_label_filter():
    filt = LabelFilter({"app": "console"})
    assert filt(make_resource(labels={"app": "console", "x": "y"}), KubeEventType.ADDED)
    assert not filt(make_resource(labels={"app": "other"}), KubeEventType.ADDED)


def test_and_filter():
    """All member filters must pass"""
    filt = AndFilter(NamesFilter(["console"]), LabelFilter({"app": "console"}))
    assert filt(make_resource(labels={"app": "console"}), KubeEventType.ADDED)
    assert not filt(make_resource(labels={"app": "nope"}), KubeEventType.ADDED)
    assert not filt(
        make_resource("other", labels={"app": "console"}), KubeEventType.ADDED
    )


def test_enable_filter():
    assert EnableFilter()(make_resource(), KubeEventType.DELETED)
