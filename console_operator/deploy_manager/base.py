"""
This defines the base class for all DeployManager types. A DeployManager is
the operator's only path to the cluster.
"""

# Standard
from typing import Iterator, List, Optional, Tuple
import abc
import threading

# Local
from .kube_event import KubeWatchEvent


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which are responsible for carrying out
    every read and write against the cluster
    """

    @abc.abstractmethod
    def deploy(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """The deploy function ensures that the resources defined in the list of
        definitions are deployed in the cluster.

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster

        Returns:
            success:  bool
                Whether or not the deploy succeeded
            changed:  bool
                Whether or not the deployment resulted in changes
        """

    @abc.abstractmethod
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """The disable function ensures that the resources defined in the list of
        definitions are deleted from the cluster. Resources that are already
        absent count as success.

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to remove from the cluster

        Returns:
            success:  bool
                Whether or not the delete succeeded
            changed:  bool
                Whether or not the delete resulted in changes
        """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Get the current state of the given object in the cluster

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object or None for cluster
                scoped objects
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  Optional[dict]
                The dict representation of the current object's configuration,
                or None if not present
        """

    @abc.abstractmethod
    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """List the objects of a kind that match the label and field selectors

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  List[dict]
                The matching objects, or an empty list if none match
        """

    @abc.abstractmethod
    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Get a stream of events for the matching objects. The stream ends
        once stop_event is set.
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Replace the status of an object

        Args:
            kind:  str
                The kind of the object
            name:  str
                The name of the object
            namespace:  Optional[str]
                The namespace of the object, None for cluster scoped objects
            status:  dict
                The full status to write
            api_version:  Optional[str]
                The api_version of the object
            resource_version:  Optional[str]
                If given, the write is rejected with a ConflictError when the
                object has changed since this version was read

        Returns:
            success:  bool
                Whether or not the status update operation succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """

    @abc.abstractmethod
    def apply_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        field_manager: str,
        api_version: Optional[str] = None,
        force: bool = True,
    ) -> Tuple[bool, bool]:
        """Server-side apply a partial status owned by the given field manager.
        Fields owned by other managers are left untouched.

        Returns:
            success:  bool
                Whether or not the apply succeeded
            changed:  bool
                Whether or not the apply resulted in a change
        """
