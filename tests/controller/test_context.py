"""
Tests for the cancellable Context
"""

# Standard
import threading

# Third Party
import pytest

# Local
from console_operator.controller import Context


def test_cancel_propagates_to_children():
    """Cancelling a parent cancels every descendant"""
    root = Context("root")
    child = root.child("child")
    grandchild = child.child()
    root.cancel()
    assert root.done()
    assert child.done()
    assert grandchild.done()


def test_cancel_child_leaves_parent():
    root = Context()
    child = root.child()
    child.cancel()
    assert child.done()
    assert not root.done()


def test_child_of_cancelled_context():
    """A child derived from a cancelled context starts cancelled"""
    root = Context()
    root.cancel()
    assert root.child().done()


def test_cancel_twice():
    root = Context()
    root.cancel()
    root.cancel()
    assert root.done()


def test_wait_timeout():
    assert not Context().wait(0.01)


@pytest.mark.timeout(5)
def test_wait_unblocks_on_cancel():
    """Waiting on a context returns once another thread cancels it"""
    root = Context()
    child = root.child()
    threading.Timer(0.05, root.cancel).start()
    assert child.wait(2)
