"""
An Informer keeps a local cache of one kind of object in sync with the cluster
by listing, then watching, and notifies handlers about every change it sees.
"""

# Standard
from typing import Callable, Dict, List, Optional
import copy
import threading

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import DeployManagerBase, KubeEventType, KubeWatchEvent
from ..exceptions import assert_cluster
from ..managed_object import ManagedObject
from ..utils import parse_time_delta
from .base import ThreadBase
from .context import Context

log = alog.use_channel("INFRMR")

EventHandler = Callable[[KubeWatchEvent], None]


class Informer:  # pylint: disable=too-many-instance-attributes
    """Cached, push based subscription to changes of one kind. An informer can
    be run again with a new context after a previous run was cancelled.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        deploy_manager: DeployManagerBase,
        kind: str,
        api_version: str,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ):
        self.deploy_manager = deploy_manager
        self.kind = kind
        self.api_version = api_version
        self.namespace = namespace
        self.name = name
        self.label_selector = label_selector
        self.field_selector = field_selector

        self._cache: Dict[str, ManagedObject] = {}
        self._cache_lock = threading.RLock()
        self._handlers: List[EventHandler] = []
        self._synced = threading.Event()

    def __str__(self):
        scope = self.namespace or "*"
        return f"Informer({self.api_version}/{self.kind} in {scope})"

    ## Public Interface ########################################################

    def add_event_handler(self, handler: EventHandler):
        self._handlers.append(handler)

    def has_synced(self) -> bool:
        """Whether the initial list has completed"""
        return self._synced.is_set()

    def get(self, name: str, namespace: Optional[str] = None) -> Optional[dict]:
        """Get a copy of the cached object"""
        key = f"{namespace}/{name}" if namespace else name
        with self._cache_lock:
            obj = self._cache.get(key)
        return copy.deepcopy(obj.definition) if obj is not None else None

    def list(self) -> List[dict]:
        with self._cache_lock:
            return [copy.deepcopy(obj.definition) for obj in self._cache.values()]

    def start(self, ctx: Context) -> "InformerThread":
        """Run the informer in a background thread until the context is
        cancelled
        """
        thread = InformerThread(self, ctx.child(f"informer_{self.kind.lower()}"))
        thread.start_thread()
        return thread

    def run(self, ctx: Context):
        """List and watch until the context is cancelled, restarting the watch
        on failures
        """
        self._synced.clear()
        retry_delay = parse_time_delta(config.controller.watch_retry_delay)
        retry_seconds = retry_delay.total_seconds() if retry_delay else 1
        failures = 0
        while not ctx.done():
            try:
                self._list_and_watch(ctx)
                failures = 0
            except Exception as err:  # pylint: disable=broad-except
                failures += 1
                log.warning(
                    "%s watch failed (%d/%d): %s",
                    self,
                    failures,
                    config.controller.watch_retry_count,
                    err,
                    exc_info=True,
                )
                if failures > config.controller.watch_retry_count:
                    log.error("%s giving up after %d failures", self, failures)
                    return
                ctx.wait(retry_seconds)
        log.debug("%s stopped", self)

    ## Implementation Details ##################################################

    def _list_and_watch(self, ctx: Context):
        success, items = self.deploy_manager.filter_objects_current_state(
            kind=self.kind,
            namespace=self.namespace,
            api_version=self.api_version,
            label_selector=self.label_selector,
            field_selector=self.field_selector,
        )
        assert_cluster(success, f"Failed to list {self.api_version}/{self.kind}")
        self._replace([ManagedObject(item) for item in items if self._matches(item)])
        self._synced.set()
        log.debug2("%s synced with %d objects", self, len(self._cache))

        for event in self.deploy_manager.watch_objects(
            kind=self.kind,
            api_version=self.api_version,
            namespace=self.namespace,
            name=self.name,
            label_selector=self.label_selector,
            field_selector=self.field_selector,
            stop_event=ctx.event,
        ):
            if ctx.done():
                return
            if self._matches(event.resource.definition):
                self._handle(event)

    def _matches(self, definition: dict) -> bool:
        return self.name is None or definition.get("metadata", {}).get("name") == self.name

    def _replace(self, objects: List[ManagedObject]):
        """Replace the cache content with a fresh list, notifying handlers of
        every difference
        """
        new_keys = {obj.key for obj in objects}
        with self._cache_lock:
            removed = [obj for key, obj in self._cache.items() if key not in new_keys]
        for obj in removed:
            self._handle(KubeWatchEvent(type=KubeEventType.DELETED, resource=obj))
        for obj in objects:
            self._handle(KubeWatchEvent(type=KubeEventType.ADDED, resource=obj))

    def _handle(self, event: KubeWatchEvent):
        resource = event.resource
        with self._cache_lock:
            cached = self._cache.get(resource.key)
            if event.type == KubeEventType.DELETED:
                self._cache.pop(resource.key, None)
            else:
                if (
                    cached is not None
                    and resource.resource_version is not None
                    and cached.resource_version == resource.resource_version
                ):
                    log.debug4("Skipping already seen %s", resource)
                    return
                self._cache[resource.key] = resource
                if cached is not None:
                    event = KubeWatchEvent(
                        type=KubeEventType.MODIFIED,
                        resource=resource,
                        timestamp=event.timestamp,
                    )

        log.debug3("%s handling %s event for %s", self, event.type.value, resource)
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as err:  # pylint: disable=broad-except
                log.warning("Event handler failed: %s", err, exc_info=True)


class InformerThread(ThreadBase):
    """Thread that runs an Informer for the lifetime of a context"""

    def __init__(self, informer: Informer, ctx: Context):
        super().__init__(
            name=f"informer_{informer.kind.lower()}", daemon=True, ctx=ctx
        )
        self.informer = informer

    def run(self):
        self.informer.run(self.ctx)
