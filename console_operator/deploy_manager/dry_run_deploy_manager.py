"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime
from functools import partial
from queue import Empty, Queue
from threading import Event, RLock
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import itertools
import operator
import uuid

# First Party
import alog

# Local
from ..exceptions import ConflictError
from ..managed_object import ManagedObject
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent
from .managed_fields import (
    apply_owned,
    fields_v1_for,
    get_manager_fields,
    set_manager_fields,
)

log = alog.use_channel("DRY-RUN")

# Lock to ensure disable/deploys are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()

# Metadata fields owned by the (emulated) api server
_SERVER_METADATA_FIELDS = [
    "resourceVersion",
    "generation",
    "managedFields",
    "uid",
    "creationTimestamp",
]

# Poll interval for watch streams so that a stop request is noticed
_WATCH_POLL_SECONDS = 0.05


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(self, resources=None, strict_resource_version=False):
        """Construct with the initial content of the cluster

        Args:
            resources:  Optional[List[dict]]
                Objects that exist in the cluster from the start
            strict_resource_version:  bool
                If true, deploying an object with a stale resourceVersion
                fails
        """
        self._cluster_content = {}
        self.strict_resource_version = strict_resource_version
        self._resource_versions = itertools.count(1)

        # Number of mutating calls made through the public interface
        self.write_count = 0

        # Dicts of registered watches and watchers
        self._watches = {}
        self._finalizers = {}

        # Deploy provided resources
        self._deploy(copy.deepcopy(resources or []), call_watches=False)

    ## Interface ###############################################################

    def deploy(self, resource_definitions, **_):
        log.info("DRY RUN deploy")
        self.write_count += 1
        return self._deploy(copy.deepcopy(resource_definitions))

    def disable(self, resource_definitions):
        log.info("DRY RUN disable")
        self.write_count += 1
        changed = False
        for resource in resource_definitions:
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            name = resource.get("metadata", {}).get("name")
            namespace = resource.get("metadata", {}).get("namespace")
            _, content = self.get_object_current_state(
                kind=kind, api_version=api_version, namespace=namespace, name=name
            )
            if content is None:
                log.debug2("[%s/%s] already absent in %s", kind, name, namespace)
                continue
            changed = True

            with DRY_RUN_CLUSTER_LOCK:
                current = self._cluster_content[namespace][kind][api_version][name]
                current["metadata"]["deletionTimestamp"] = datetime.now().strftime(
                    "%Y-%m-%dT%H:%M:%SZ"
                )
                current["metadata"]["deletionGracePeriodSeconds"] = 0

            # Call any registered finalizers
            for key, callback in self._get_registered_watches(
                api_version, kind, namespace, name, finalizer=True
            ):
                log.debug2("Calling registered finalizer [%s] for [%s]", callback, key)
                callback(copy.deepcopy(current))

            # Remove the object once nothing holds it back
            with DRY_RUN_CLUSTER_LOCK:
                if not current.get("metadata", {}).get("finalizers"):
                    self._delete_key(namespace, kind, api_version, name)

        return True, changed

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
            for api_ver, entries in kind_entries.items():
                if name in entries and (api_ver == api_version or api_version is None):
                    matches.append(copy.deepcopy(entries[name]))
        log.debug2(
            "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
        )
        if len(matches) == 1:
            return True, matches[0]
        return True, None

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            namespaces = (
                [namespace] if namespace is not None else list(self._cluster_content)
            )
            for nspace in namespaces:
                kind_entries = self._cluster_content.get(nspace, {}).get(kind, {})
                for api_ver, entries in kind_entries.items():
                    if api_ver != api_version and api_version is not None:
                        continue
                    for resource in entries.values():
                        if _matches_selectors(resource, label_selector, field_selector):
                            matches.append(copy.deepcopy(resource))
        return True, matches

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
        resource_version=None,
    ):  # pylint: disable=too-many-arguments
        log.info(
            "DRY RUN set_status of [%s.%s/%s] in %s", api_version, kind, name, namespace
        )
        self.write_count += 1
        with DRY_RUN_CLUSTER_LOCK:
            object_content = self.get_object_current_state(
                kind, name, namespace, api_version
            )[1]
            if object_content is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            current_version = object_content["metadata"].get("resourceVersion")
            if resource_version is not None and resource_version != current_version:
                raise ConflictError(
                    f"Operation cannot be fulfilled on {kind} {name}: the object "
                    "has been modified"
                )
            prev_status = object_content.get("status")
            object_content["status"] = copy.deepcopy(status)
            self._deploy([object_content], call_watches=False, status_write=True)
        return True, prev_status != status

    def apply_status(
        self,
        kind,
        name,
        namespace,
        status,
        field_manager,
        api_version=None,
        force=True,
    ):  # pylint: disable=too-many-arguments
        """Emulate a server-side apply of the status subresource. Conflicts with
        other managers are always resolved in favor of the caller.
        """
        log.info(
            "DRY RUN apply_status of [%s.%s/%s] in %s as [%s] (force=%s)",
            api_version,
            kind,
            name,
            namespace,
            field_manager,
            force,
        )
        self.write_count += 1
        with DRY_RUN_CLUSTER_LOCK:
            object_content = self.get_object_current_state(
                kind, name, namespace, api_version
            )[1]
            if object_content is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False

            previous_fields = get_manager_fields(
                object_content, field_manager, subresource="status"
            )
            previous_fields = (previous_fields or {}).get("f:status", {})
            prev_status = object_content.get("status") or {}
            new_status = apply_owned(prev_status, status, previous_fields)
            object_content["status"] = new_status
            set_manager_fields(
                object_content,
                field_manager,
                fields_v1_for({"status": status}),
                api_version=object_content.get("apiVersion"),
                subresource="status",
            )
            self._deploy([object_content], call_watches=False, status_write=True)
        return True, prev_status != new_status

    def watch_objects(  # pylint: disable=too-many-arguments,too-many-locals
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        stop_event: Optional[Event] = None,
        **_,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunDeployManager for resource changes by registering
        callbacks. The stream ends when the stop_event is set.
        """
        stop_event = stop_event or Event()
        event_queue = Queue()
        resource_map = {}

        def add_event(resource_map: dict, manifest: dict):
            """Callback triggered when resources are deployed"""
            if not _matches_selectors(manifest, label_selector, field_selector):
                return
            resource = ManagedObject(copy.deepcopy(manifest))
            event_type = KubeEventType.ADDED
            if resource.key in resource_map:
                log.debug4("Watch key detected, setting Modified event type")
                event_type = KubeEventType.MODIFIED
            resource_map[resource.key] = resource
            event_queue.put(KubeWatchEvent(type=event_type, resource=resource))

        def delete_event(resource_map: dict, manifest: dict):
            """Callback triggered when resources are disabled"""
            if not _matches_selectors(manifest, label_selector, field_selector):
                return
            resource = ManagedObject(copy.deepcopy(manifest))
            resource_map.pop(resource.key, None)
            event_queue.put(KubeWatchEvent(type=KubeEventType.DELETED, resource=resource))

        # Register callbacks before listing so that nothing is missed
        watch_callback = partial(add_event, resource_map)
        finalizer_callback = partial(delete_event, resource_map)
        self.register_watch(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=watch_callback,
        )
        self.register_finalizer(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=finalizer_callback,
        )

        try:
            # Get initial resources
            _, manifests = self.filter_objects_current_state(
                kind=kind,
                api_version=api_version,
                namespace=namespace,
                label_selector=label_selector,
                field_selector=field_selector,
            )
            for manifest in manifests:
                resource = ManagedObject(manifest)
                if name and resource.name != name:
                    continue
                resource_map[resource.key] = resource
                event = KubeWatchEvent(type=KubeEventType.ADDED, resource=resource)
                log.debug2("Yielding initial event %s", event)
                yield event

            # Yield any events from the callback queue
            while not stop_event.is_set():
                try:
                    event = event_queue.get(timeout=_WATCH_POLL_SECONDS)
                except Empty:
                    continue
                log.debug2("Yielding event %s", event)
                yield event
        finally:
            self._unregister(self._watches, watch_callback)
            self._unregister(self._finalizers, finalizer_callback)

    ## Dry Run Methods #########################################################

    def register_watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to watch for deploy events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering watch for %s", watch_key)
        with DRY_RUN_CLUSTER_LOCK:
            self._watches.setdefault(watch_key, []).append(callback)

    def register_finalizer(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to call on deletion events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering finalizer for %s", watch_key)
        with DRY_RUN_CLUSTER_LOCK:
            self._finalizers.setdefault(watch_key, []).append(callback)

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version="", kind="", namespace="", name=""):
        return ":".join([api_version or "", kind or "", namespace or "", name or ""])

    @staticmethod
    def _unregister(callback_map: dict, callback: Callable):
        with DRY_RUN_CLUSTER_LOCK:
            for key, callbacks in list(callback_map.items()):
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    del callback_map[key]

    def _get_registered_watches(  # pylint: disable=too-many-arguments
        self,
        api_version: str = "",
        kind: str = "",
        namespace: str = "",
        name: str = "",
        finalizer: bool = False,
    ) -> List[Tuple[str, Callable]]:
        candidate_keys = [
            self._watch_key(
                api_version=api_version, kind=kind, namespace=namespace, name=name
            ),
            self._watch_key(api_version=api_version, kind=kind, namespace=namespace),
            self._watch_key(api_version=api_version, kind=kind, name=name),
            self._watch_key(api_version=api_version, kind=kind),
        ]
        callback_map = self._finalizers if finalizer else self._watches
        output_list = []
        with DRY_RUN_CLUSTER_LOCK:
            for key, callback_list in callback_map.items():
                if key in candidate_keys:
                    output_list.extend((key, callback) for callback in callback_list)
        return output_list

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]

    def _deploy(self, resource_definitions, call_watches=True, status_write=False):
        changes = False
        for resource in resource_definitions:
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            name = resource.get("metadata", {}).get("name")
            namespace = resource.get("metadata", {}).get("namespace")
            log.debug(
                "DRY RUN deploy [%s/%s/%s/%s]", namespace, kind, api_version, name
            )
            log.debug4(resource)
            resource.setdefault("metadata", {})

            with DRY_RUN_CLUSTER_LOCK:
                entries = (
                    self._cluster_content.setdefault(namespace, {})
                    .setdefault(kind, {})
                    .setdefault(api_version, {})
                )
                current = copy.deepcopy(entries.get(name, {}))
                current_metadata = current.get("metadata", {})
                old_resource_version = current_metadata.get("resourceVersion")
                if (
                    self.strict_resource_version
                    and resource["metadata"].get("resourceVersion")
                    and old_resource_version
                    and resource["metadata"]["resourceVersion"] != old_resource_version
                ):
                    log.warning(
                        "Unable to deploy resource. resourceVersion is out of date"
                    )
                    return False, False

                # The status subresource is only written through status calls
                if not status_write and "status" in current:
                    resource["status"] = current["status"]

                resource_changed = _strip_server_fields(current) != _strip_server_fields(
                    resource
                )
                changes = changes or resource_changed

                # Server owned metadata
                generation = current_metadata.get("generation", 0)
                if not status_write and _spec_changed(current, resource):
                    generation += 1
                resource["metadata"]["generation"] = generation or 1
                resource["metadata"]["creationTimestamp"] = current_metadata.get(
                    "creationTimestamp", datetime.now().isoformat()
                )
                resource["metadata"]["uid"] = current_metadata.get(
                    "uid", str(uuid.uuid4())
                )
                if "managedFields" in current_metadata and not status_write:
                    resource["metadata"]["managedFields"] = current_metadata[
                        "managedFields"
                    ]
                resource["metadata"]["resourceVersion"] = (
                    str(next(self._resource_versions))
                    if resource_changed or not old_resource_version
                    else old_resource_version
                )
                entries[name] = resource

            # Call any registered watches
            if call_watches and resource_changed:
                for key, callback in self._get_registered_watches(
                    api_version, kind, namespace, name
                ):
                    log.debug2("Calling registered watch [%s] for [%s]", callback, key)
                    callback(copy.deepcopy(resource))

        return True, changes


## Selectors ###################################################################


def _matches_selectors(resource: dict, label_selector=None, field_selector=None) -> bool:
    labels = resource.get("metadata", {}).get("labels") or {}
    if label_selector and not _match_selector(labels, label_selector):
        return False
    if field_selector and not _match_selector(
        _convert_dict_to_dot(resource), field_selector
    ):
        return False
    return True


def _match_selector(values, value_selector) -> bool:  # pylint: disable=too-many-locals
    """This function implements the kubernetes selector to determine if
    a set of values matches the selector. For the complete documentation
    see:
    https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/#syntax-and-character-set
    """
    equality_ops = ["=", "==", "!="]
    # The spaces are required to distinguish operators from values
    set_ops = [" in ", " notin "]
    existence_ops = ["!", ""]

    operator_actions = {
        "=": operator.eq,
        "==": operator.eq,
        "!=": operator.ne,
        " in ": lambda a, b: a in b,
        " notin ": lambda a, b: a not in b,
        "!": lambda a, _: a is None,
        "": lambda a, _: a is not None,
    }

    # Longest operators first so that != is not split by =
    operator_list = sorted(operator_actions.keys(), key=len, reverse=True)

    for selector in _split_selectors(value_selector):
        action = None
        expected_key = None
        expected_value = None
        for op in operator_list:  # pylint: disable=invalid-name
            if op in existence_ops:
                split_selector = [selector.replace(op, "")]
            else:
                split_selector = selector.split(op)
            if (op in equality_ops or op in set_ops) and len(split_selector) != 2:
                continue
            if op == "!" and "!" not in selector:
                continue

            action = operator_actions[op]
            expected_key = split_selector[0].strip()
            if op in equality_ops:
                expected_value = split_selector[1].strip()
            elif op in set_ops:
                expected_value = [
                    val.strip()
                    for val in split_selector[1].replace("(", "").replace(")", "").split(",")
                ]
            break

        value = values.get(expected_key)
        value = str(value).strip() if value is not None else value
        if not action(value, expected_value):
            log.debug3(
                "Value %s at key %s does not match selector %s",
                value,
                expected_key,
                selector,
            )
            return False
    return True


def _split_selectors(selector=""):
    """Split up selectors by , but ignoring those surrounded by () e.g.
    'app,app in (frontend, backend)' becomes ['app','app in (frontend, backend)']
    """
    output_list = []
    current_selector = ""
    in_paren = False
    for char in selector:
        if char == "," and not in_paren:
            output_list.append(current_selector)
            current_selector = ""
            continue
        if char == "(":
            in_paren = True
        elif char == ")":
            in_paren = False
        current_selector += char
    if current_selector:
        output_list.append(current_selector)
    return output_list


def _convert_dict_to_dot(dictionary, prefix=""):
    """Flatten a dict into dotted keys. For example {a:{b:1},c:2}
    becomes {a.b:1,c:2}
    """
    if not isinstance(dictionary, dict):
        return {prefix: dictionary}
    output_dict = {}
    for key, val in dictionary.items():
        new_key = key if prefix == "" else f"{prefix}.{key}"
        output_dict.update(_convert_dict_to_dot(val, new_key))
    return output_dict


## Diffing #####################################################################


def _strip_server_fields(resource: dict) -> dict:
    resource = copy.deepcopy(resource)
    for metadata_field in _SERVER_METADATA_FIELDS:
        resource.get("metadata", {}).pop(metadata_field, None)
    return resource


def _spec_changed(current: dict, resource: dict) -> bool:
    """Whether anything outside of metadata and status differs"""

    def _content(obj):
        return {
            key: val for key, val in obj.items() if key not in ("metadata", "status")
        }

    return not current or _content(current) != _content(resource)
