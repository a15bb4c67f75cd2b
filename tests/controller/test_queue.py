"""
Tests for the deduplicating RateLimitingQueue
"""

# Standard
import threading

# Third Party
import pytest

# Local
from console_operator.controller import RateLimitingQueue, TimerThread
from console_operator.test_helpers.helpers import wait_for


def make_queue(**kwargs):
    return RateLimitingQueue("test", TimerThread(), **kwargs)


def test_add_deduplicates():
    """A key is held at most once"""
    queue = make_queue()
    queue.add("a")
    queue.add("a")
    queue.add("b")
    assert len(queue) == 2
    assert queue.get(0) == "a"
    assert queue.get(0) == "b"
    assert queue.get(0) is None


def test_add_while_processing_is_deferred():
    """A key added while processing is requeued once processing is done"""
    queue = make_queue()
    queue.add("a")
    key = queue.get(0)
    queue.add("a")
    assert len(queue) == 0
    queue.done(key)
    assert len(queue) == 1
    assert queue.get(0) == "a"


def test_done_without_readd():
    queue = make_queue()
    queue.add("a")
    queue.done(queue.get(0))
    assert len(queue) == 0


def test_backoff_grows_and_caps():
    """The delay doubles with each failure up to the max"""
    queue = make_queue(base_delay=1, max_delay=5)
    assert [queue.when("a") for _ in range(5)] == [1, 2, 4, 5, 5]
    assert queue.num_requeues("a") == 5
    queue.forget("a")
    assert queue.num_requeues("a") == 0
    assert queue.when("a") == 1


def test_backoff_after_many_failures():
    """A key that keeps failing stays at the max delay"""
    queue = make_queue(base_delay=0.005, max_delay=60)
    for _ in range(2000):
        delay = queue.when("a")
    assert delay == 60
    assert queue.num_requeues("a") == 2000


def test_shut_down_drops_adds():
    queue = make_queue()
    queue.shut_down()
    queue.add("a")
    assert queue.shutting_down
    assert queue.get(0) is None


@pytest.mark.timeout(5)
def test_get_unblocks_on_shutdown():
    queue = make_queue()
    threading.Timer(0.05, queue.shut_down).start()
    assert queue.get(2) is None


@pytest.mark.timeout(5)
def test_add_rate_limited():
    """A rate limited key shows up after its backoff delay"""
    timer = TimerThread()
    timer.start_thread()
    try:
        queue = RateLimitingQueue("test", timer, base_delay=0.05)
        queue.add_rate_limited("a")
        assert len(queue) == 0
        assert wait_for(lambda: len(queue) == 1)
    finally:
        timer.stop_thread()


def test_add_after_no_delay():
    queue = make_queue()
    queue.add_after("a", 0)
    assert len(queue) == 1
