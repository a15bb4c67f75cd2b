"""
A cancellable context used to bound the lifetime of controllers and watches.
Cancelling a context cancels every context derived from it.
"""

# Standard
from typing import List, Optional
import threading

# First Party
import alog

log = alog.use_channel("CONTEXT")


class Context:
    """Cancellable context with parent to child propagation"""

    def __init__(self, name: str = "root", parent: Optional["Context"] = None):
        self.name = name
        self._event = threading.Event()
        self._lock = threading.RLock()
        self._children: List["Context"] = []
        self._parent = parent

    def child(self, name: Optional[str] = None) -> "Context":
        """Derive a child context which is cancelled when this one is"""
        child_ctx = Context(name=name or f"{self.name}.child", parent=self)
        with self._lock:
            if self._event.is_set():
                child_ctx.cancel()
            else:
                self._children.append(child_ctx)
        return child_ctx

    def cancel(self):
        """Cancel this context and all of its children"""
        with self._lock:
            if self._event.is_set():
                return
            log.debug2("Cancelling context %s", self.name)
            self._event.set()
            children, self._children = self._children, []
        for child_ctx in children:
            child_ctx.cancel()
        if self._parent is not None:
            self._parent._remove_child(self)  # pylint: disable=protected-access

    def done(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or the timeout passes. Returns True if the
        context was cancelled.
        """
        return self._event.wait(timeout)

    @property
    def event(self) -> threading.Event:
        """The event that is set when this context is cancelled"""
        return self._event

    def _remove_child(self, child_ctx: "Context"):
        with self._lock:
            if child_ctx in self._children:
                self._children.remove(child_ctx)
