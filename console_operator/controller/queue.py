"""
A deduplicating, rate limited work queue of reconcile keys.

A key is held at most once in the queue. A key that is added while it is being
processed is queued again once processing is done, so a single key is never
processed by two workers at once.
"""

# Standard
from collections import deque
from datetime import datetime, timedelta
from typing import Dict, Hashable, Optional
import threading

# First Party
import alog

# Local
from .. import config
from .timer import TimerThread

log = alog.use_channel("WRKQUEUE")

MAX_BACKOFF_EXPONENT = 32


class RateLimitingQueue:
    """Work queue with per-key exponential backoff"""

    def __init__(
        self,
        name: str,
        timer: TimerThread,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ):
        """
        Args:
            name:  str
                Name used in logs
            timer:  TimerThread
                The timer used to run delayed adds
            base_delay:  Optional[float]
                Seconds to wait before the first retry of a failed key
            max_delay:  Optional[float]
                Upper bound on the delay between retries
        """
        self.name = name
        self.timer = timer
        self.base_delay = (
            base_delay
            if base_delay is not None
            else config.controller.backoff_base_seconds
        )
        self.max_delay = (
            max_delay if max_delay is not None else config.controller.backoff_max_seconds
        )
        self._queue = deque()
        self._dirty = set()
        self._processing = set()
        self._failures: Dict[Hashable, int] = {}
        self._condition = threading.Condition()
        self._shutting_down = False

    def __len__(self):
        with self._condition:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    ## Queue ###################################################################

    def add(self, key: Hashable):
        """Mark the key as needing processing"""
        with self._condition:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                log.debug3("[%s] %s is processing, deferring", self.name, key)
                return
            self._queue.append(key)
            self._condition.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Block until a key is available and mark it as processing. Returns
        None on timeout or once the queue is shut down.
        """
        with self._condition:
            if not self._queue and not self._shutting_down:
                self._condition.wait(timeout)
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: Hashable):
        """Mark processing of the key as finished. If the key was added again
        in the meantime it goes back on the queue.
        """
        with self._condition:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._condition.notify()

    def shut_down(self):
        with self._condition:
            self._shutting_down = True
            self._condition.notify_all()

    ## Rate limiting ###########################################################

    def add_after(self, key: Hashable, delay: float):
        """Add the key once the delay in seconds has passed"""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        log.debug3("[%s] Adding %s in %ss", self.name, key, delay)
        self.timer.put_event(datetime.now() + timedelta(seconds=delay), self.add, key)

    def add_rate_limited(self, key: Hashable):
        """Add the key after its backoff delay"""
        self.add_after(key, self.when(key))

    def when(self, key: Hashable) -> float:
        """Get the backoff delay for the key and count another failure"""
        with self._condition:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        # Bounded so the float math cannot overflow
        return min(self.base_delay * (2 ** min(failures, MAX_BACKOFF_EXPONENT)), self.max_delay)

    def forget(self, key: Hashable):
        """Clear the failure history of the key"""
        with self._condition:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._condition:
            return self._failures.get(key, 0)
