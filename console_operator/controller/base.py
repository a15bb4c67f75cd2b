"""
Module for the ThreadBase Class
"""

# Standard
from typing import Optional
import threading

# First Party
import alog

# Local
from .context import Context

log = alog.use_channel("TRDUTLS")


class ThreadBase(threading.Thread):
    """Base class for the operator's threads. A thread may be bound to a
    Context, in which case stopping the thread cancels the context and a
    cancelled context stops the thread.
    """

    def __init__(
        self,
        name: Optional[str] = None,
        daemon: Optional[bool] = None,
        ctx: Optional[Context] = None,
    ):
        """
        Args:
            name:  Optional[str]
                The name of the thread
            daemon:  Optional[bool]
                Whether python should wait for this thread to stop before
                exiting
            ctx:  Optional[Context]
                The context bounding the lifetime of the thread
        """
        self.shutdown = threading.Event()
        self.ctx = ctx
        super().__init__(name=name, daemon=daemon)

    def run(self):
        raise NotImplementedError()

    def start_thread(self):
        """If the thread is not already alive start it"""
        if not self.is_alive():
            log.info("Starting %s: %s", self.__class__.__name__, self.name)
            self.start()

    def stop_thread(self):
        log.info("Stopping %s: %s", self.__class__.__name__, self.name)
        self.shutdown.set()
        if self.ctx is not None:
            self.ctx.cancel()

    def should_stop(self) -> bool:
        return self.shutdown.is_set() or (self.ctx is not None and self.ctx.done())
