"""
The TimerThread is a helper class used to run scheduled events
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from heapq import heappop, heappush
from typing import Any, Callable, Dict, List, Optional
import threading

# First Party
import alog

# Local
from .. import config
from .base import ThreadBase

log = alog.use_channel("TMRTHRD")


@dataclass(order=True)
class TimerEvent:
    """An item in the timer queue. Time is the only comparable field"""

    time: datetime
    action: Callable = field(compare=False)
    args: tuple = field(default_factory=tuple, compare=False)
    kwargs: dict = field(default_factory=dict, compare=False)
    stale: bool = field(default=False, compare=False)

    def cancel(self):
        """Cancel this event. It will not be executed when read from the
        queue"""
        self.stale = True


class TimerThread(ThreadBase):
    """Runs scheduled actions. This is very similar to the threading.Timer stdlib
    class except that it uses one thread for all events instead of a thread per
    event."""

    def __init__(self, name: Optional[str] = None):
        super().__init__(name=name or "timer_thread", daemon=True)
        # A heap is used instead of a queue.PriorityQueue since synchronization
        # is handled by the notify condition
        self.timer_heap = []
        self.notify_condition = threading.Condition()

    def run(self):
        """Sleep until the next scheduled event and execute all pending
        actions"""
        while not self.should_stop():
            with self.notify_condition:
                time_to_sleep = self._get_time_to_sleep()
                if time_to_sleep:
                    log.debug4(
                        "Timer waiting %ss until next scheduled event", time_to_sleep
                    )
                self.notify_condition.wait(timeout=time_to_sleep)

            if self.should_stop():
                return

            for event in self._get_all_current_events():
                log.debug3("Timer executing action for event: %s", event)
                try:
                    event.action(*event.args, **event.kwargs)
                except Exception as err:  # pylint: disable=broad-except
                    log.warning("Timer action %s failed: %s", event.action, err, exc_info=True)

    def stop_thread(self):
        """Override stop_thread to wake the control loop"""
        super().stop_thread()
        with self.notify_condition:
            self.notify_condition.notify_all()

    ## Public Interface ###################################################

    def put_event(
        self, time: datetime, action: Callable, *args: Any, **kwargs: Dict
    ) -> Optional[TimerEvent]:
        """Push an event to the timer

        Args:
            time: datetime
                The datetime to execute the event at
            action: Callable
                The action to execute
            *args: Any
                Args to pass to the action
            **kwargs: Dict
                Kwargs to pass to the action

        Returns:
            event: Optional[TimerEvent]
                TimerEvent describing the event which can be cancelled, or
                None if the timer is stopped
        """
        if self.should_stop():
            return None

        event = TimerEvent(time=time, action=action, args=args, kwargs=kwargs)
        with self.notify_condition:
            heappush(self.timer_heap, event)
            self.notify_condition.notify_all()
        return event

    ## Implementation Details ##################################################

    def _get_time_to_sleep(self) -> Optional[float]:
        with self.notify_condition:
            if not self.timer_heap:
                return None
            time_to_sleep = (self.timer_heap[0].time - datetime.now()).total_seconds()
            return max(time_to_sleep, config.controller.timer_min_sleep_seconds)

    def _get_all_current_events(self) -> List[TimerEvent]:
        event_list = []
        with self.notify_condition:
            while self.timer_heap and self.timer_heap[0].time <= datetime.now():
                event = heappop(self.timer_heap)
                if event.stale:
                    log.debug2("Skipping timer event %s", event)
                    continue
                event_list.append(event)
        return event_list
