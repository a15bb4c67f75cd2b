"""
Tests for the TimerThread
"""

# Standard
from datetime import datetime, timedelta
import threading

# Third Party
import pytest

# Local
from console_operator.controller import TimerThread


@pytest.mark.timeout(5)
def test_events_run_in_time_order():
    """Events run in the order of their scheduled times"""
    timer = TimerThread()
    timer.start_thread()
    try:
        results = []
        done = threading.Event()
        now = datetime.now()
        timer.put_event(now + timedelta(seconds=0.1), lambda: (results.append(2), done.set()))
        timer.put_event(now + timedelta(seconds=0.05), results.append, 1)
        assert done.wait(2)
        assert results == [1, 2]
    finally:
        timer.stop_thread()


@pytest.mark.timeout(5)
def test_cancelled_event_skipped():
    timer = TimerThread()
    timer.start_thread()
    try:
        results = []
        done = threading.Event()
        now = datetime.now()
        event = timer.put_event(now + timedelta(seconds=0.02), results.append, "cancelled")
        event.cancel()
        timer.put_event(now + timedelta(seconds=0.05), done.set)
        assert done.wait(2)
        assert results == []
    finally:
        timer.stop_thread()


@pytest.mark.timeout(5)
def test_failing_action_does_not_stop_timer():
    """An action that raises is logged and later events still run"""
    timer = TimerThread()
    timer.start_thread()
    try:
        done = threading.Event()

        def fail():
            raise RuntimeError("boom")

        now = datetime.now()
        timer.put_event(now, fail)
        timer.put_event(now + timedelta(seconds=0.02), done.set)
        assert done.wait(2)
    finally:
        timer.stop_thread()


@pytest.mark.timeout(5)
def test_stopped_timer_rejects_events():
    timer = TimerThread()
    timer.start_thread()
    timer.stop_thread()
    timer.join(2)
    assert not timer.is_alive()
    assert timer.put_event(datetime.now(), print) is None
