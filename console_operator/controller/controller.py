"""
The Controller binds a set of informers to one idempotent sync function. Events
from the informers that pass the configured filters coalesce into a single
queue key, which one worker thread hands to the sync function.
"""

# Standard
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple, Union

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import KubeWatchEvent
from ..exceptions import ConfigError
from ..utils import parse_time_delta
from .base import ThreadBase
from .context import Context
from .filters import Filter
from .queue import RateLimitingQueue
from .timer import TimerThread

log = alog.use_channel("CTRLR")


@dataclass(frozen=True)
class SyncContext:
    """Information about the trigger of one sync call"""

    queue_key: str
    controller_name: str


SyncFunction = Callable[[SyncContext], Optional[BaseException]]


class ControllerBuilder:
    """Fluent builder for a Controller"""

    def __init__(self):
        self._informers: List[Tuple[object, Optional[Filter]]] = []
        self._resync_period: Optional[float] = None
        self._sync: Optional[SyncFunction] = None

    def with_informers(self, *informers) -> "ControllerBuilder":
        """Trigger a sync on every event of the given informers"""
        self._informers.extend((informer, None) for informer in informers)
        return self

    def with_filtered_event_informers(
        self, event_filter: Filter, *informers
    ) -> "ControllerBuilder":
        """Trigger a sync on the events of the given informers that pass the
        filter
        """
        self._informers.extend((informer, event_filter) for informer in informers)
        return self

    def resync_every(self, period: Union[str, float, timedelta]) -> "ControllerBuilder":
        """Enqueue a sync on a fixed interval regardless of events"""
        if isinstance(period, str):
            delta = parse_time_delta(period)
            if delta is None:
                raise ConfigError(f"Invalid resync period: {period}")
            period = delta
        if isinstance(period, timedelta):
            period = period.total_seconds()
        self._resync_period = period
        return self

    def with_sync(self, sync: SyncFunction) -> "ControllerBuilder":
        self._sync = sync
        return self

    def to_controller(self, name: str) -> "Controller":
        if self._sync is None:
            raise ConfigError(f"No sync function given for controller {name}")
        return Controller(
            name=name,
            sync=self._sync,
            informers=self._informers,
            resync_period=self._resync_period,
        )


class Controller:
    """Single worker reconcile loop over one queue key per logical object"""

    def __init__(
        self,
        name: str,
        sync: SyncFunction,
        informers: List[Tuple[object, Optional[Filter]]],
        resync_period: Optional[float] = None,
    ):
        self.name = name
        self.sync = sync
        self.informers = [informer for informer, _ in informers]
        self.resync_period = resync_period
        self.timer = TimerThread(name=f"{name}_timer")
        self.queue = RateLimitingQueue(name, self.timer)
        self._worker: Optional[ControllerWorker] = None

        for informer, event_filter in informers:
            informer.add_event_handler(self._make_handler(event_filter))

    ## Public Interface ########################################################

    def run(self, ctx: Context):
        """Run until the context is cancelled. No work is admitted until every
        informer has synced.
        """
        log.info("Starting controller %s", self.name)
        if not self._wait_for_caches(ctx):
            log.info("Controller %s cancelled before caches synced", self.name)
            return
        log.debug("Caches synced for controller %s", self.name)

        self.timer.start_thread()
        self._worker = ControllerWorker(self)
        self._worker.start_thread()

        self.queue.add(constants.DEFAULT_QUEUE_KEY)
        if self.resync_period:
            self._schedule_resync(ctx)

        ctx.wait()
        log.info("Shutting down controller %s", self.name)
        self.queue.shut_down()
        self.timer.stop_thread()
        self._worker.stop_thread()

    def start(self, ctx: Context) -> "ControllerThread":
        """Run the controller in a background thread"""
        thread = ControllerThread(self, ctx.child(self.name))
        thread.start_thread()
        return thread

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Process a single key from the queue. Returns False if no key was
        available.
        """
        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            self._process(key)
        finally:
            self.queue.done(key)
        return True

    ## Implementation Details ##################################################

    def _wait_for_caches(self, ctx: Context) -> bool:
        while not all(informer.has_synced() for informer in self.informers):
            if ctx.wait(config.controller.cache_sync_poll_seconds):
                return False
        return True

    def _make_handler(self, event_filter: Optional[Filter]):
        def _handler(event: KubeWatchEvent):
            if event_filter is not None and not event_filter(
                event.resource, event.type
            ):
                return
            log.debug3(
                "[%s] %s event for %s", self.name, event.type.value, event.resource
            )
            self.queue.add(constants.DEFAULT_QUEUE_KEY)

        return _handler

    def _schedule_resync(self, ctx: Context):
        def _resync():
            if ctx.done():
                return
            log.debug2("[%s] Periodic resync", self.name)
            self.queue.add(constants.DEFAULT_QUEUE_KEY)
            self._schedule_resync(ctx)

        self.timer.put_event(
            datetime.now() + timedelta(seconds=self.resync_period), _resync
        )

    def _process(self, key: str):
        sync_ctx = SyncContext(queue_key=key, controller_name=self.name)
        log_extra = {"controller": self.name, "queue_key": key}
        log.debug2("[%s] Syncing %s", self.name, key, extra=log_extra)
        try:
            err = self.sync(sync_ctx)
        except Exception as exc:  # pylint: disable=broad-except
            log.debug("[%s] Sync raised", self.name, exc_info=True, extra=log_extra)
            err = exc

        if err is None:
            self.queue.forget(key)
            return
        if getattr(err, "requeue", True):
            log.warning(
                "[%s] %s failed with: %s", self.name, key, err, extra=log_extra
            )
            self.queue.add_rate_limited(key)
        else:
            log.error(
                "[%s] %s failed and will not be retried: %s",
                self.name,
                key,
                err,
                extra=log_extra,
            )
            self.queue.forget(key)


class ControllerWorker(ThreadBase):
    """The single worker draining a controller's queue"""

    # Seconds to block on the queue before checking for shutdown
    POLL_SECONDS = 0.1

    def __init__(self, controller: Controller):
        super().__init__(name=f"{controller.name}_worker", daemon=True)
        self.controller = controller

    def run(self):
        while not self.should_stop():
            processed = self.controller.process_next(timeout=self.POLL_SECONDS)
            if not processed and self.controller.queue.shutting_down:
                return


class ControllerThread(ThreadBase):
    """Thread that runs a controller for the lifetime of a context"""

    def __init__(self, controller: Controller, ctx: Context):
        super().__init__(name=controller.name, daemon=True, ctx=ctx)
        self.controller = controller

    def run(self):
        self.controller.run(self.ctx)
