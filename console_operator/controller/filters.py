"""
Filters limit which watch events enqueue a sync. A filter returns True to let
an event through, False to drop it, or None to abstain.
"""

# Standard
from abc import ABC, abstractmethod
from typing import Iterable, Optional

# First Party
import alog

# Local
from ..deploy_manager import KubeEventType
from ..managed_object import ManagedObject

log = alog.use_channel("FILTERS")


class Filter(ABC):
    """Generic Filter Interface for subclassing. Every subclass implements a
    `test` function which returns true when an event should be let through.
    """

    @abstractmethod
    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        """Test whether the resource and event pass the filter

        Args:
            resource: ManagedObject
                The resource the event is about
            event: KubeEventType
                The event type

        Returns:
            result: Optional[bool]
                The result of the test, or None to abstain
        """

    def __call__(self, resource: ManagedObject, event: KubeEventType) -> bool:
        result = self.test(resource, event)
        if result is not None and not result:
            log.debug3("Failed filter: %s", self, extra={"resource": resource})
        return result is None or result


class NamesFilter(Filter):
    """Let through objects with one of the given names, optionally limited to
    the given namespaces
    """

    def __init__(self, names: Iterable[str], namespaces: Optional[Iterable[str]] = None):
        self.names = set(names)
        self.namespaces = set(namespaces) if namespaces is not None else None

    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        if self.namespaces is not None and resource.namespace not in self.namespaces:
            return False
        return resource.name in self.names

    def __str__(self):
        return f"NamesFilter({sorted(self.names)}, {self.namespaces})"


class NamespacesFilter(Filter):
    """Let through objects in one of the given namespaces"""

    def __init__(self, namespaces: Iterable[str]):
        self.namespaces = set(namespaces)

    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        return resource.namespace in self.namespaces


class LabelFilter(Filter):
    """Let through objects that carry every one of the given labels"""

    def __init__(self, labels: dict):
        self.labels = labels

    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        return all(
            resource.labels.get(label) == value for label, value in self.labels.items()
        )


class AndFilter(Filter):
    """Let through events which pass all of the given filters"""

    def __init__(self, *filters: Filter):
        self.filters = filters

    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        return all(filt(resource, event) for filt in self.filters)


class EnableFilter(Filter):
    """Filter to let every event through"""

    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        return True
