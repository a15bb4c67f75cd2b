"""
Tests for the context aware ThreadBase
"""

# Third Party
import pytest

# Local
from console_operator.controller.base import ThreadBase
from console_operator.controller.context import Context


class LoopThread(ThreadBase):
    def run(self):
        while not self.should_stop():
            self.shutdown.wait(0.01)


@pytest.mark.timeout(5)
def test_cancelled_context_stops_thread():
    ctx = Context("parent").child("loop")
    thread = LoopThread(name="loop", daemon=True, ctx=ctx)
    thread.start_thread()
    assert not thread.should_stop()
    ctx.cancel()
    thread.join()
    assert thread.should_stop()


def test_stop_thread_cancels_context():
    """Stopping a bound thread cancels its context but not the parent"""
    parent = Context("parent")
    ctx = parent.child("loop")
    thread = LoopThread(name="loop", ctx=ctx)
    thread.stop_thread()
    assert ctx.done()
    assert not parent.done()


def test_unbound_thread():
    thread = LoopThread(name="loop")
    assert not thread.should_stop()
    thread.stop_thread()
    assert thread.should_stop()
