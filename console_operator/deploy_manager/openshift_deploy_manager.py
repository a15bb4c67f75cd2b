"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from collections import namedtuple
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import threading
import time

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.apply import recursive_diff
from openshift.dynamic.exceptions import ConflictError as KubeConflictError
from openshift.dynamic.exceptions import (
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config
from ..exceptions import ConflictError, assert_cluster
from ..managed_object import ManagedObject
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("OSFTD")

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, field_manager: Optional[str] = None):
        """
        Args:
            field_manager:  Optional[str]
                The field manager used for server-side apply. Defaults to the
                configured field_manager.
        """
        self.field_manager = field_manager or config.field_manager
        log.debug("Initializing openshift client")
        self._client = None

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug)
    def deploy(self, resource_definitions: List[dict], **_) -> Tuple[bool, bool]:
        """Server-side apply each of the given resources

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster

        Returns:
            success:  bool
                True if deploy succeeded, False otherwise
            changed:  bool
                Whether or not the deployment resulted in changes
        """
        return self._retried_operation(
            resource_definitions, self._apply, max_retries=config.deploy_retries
        )

    @alog.logged_function(log.debug)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete each of the given resources if it exists

        Returns:
            success:  bool
                True if the delete succeeded, False otherwise
            changed:  bool
                Whether or not the delete resulted in changes
        """
        return self._retried_operation(
            resource_definitions, self._disable, max_retries=config.deploy_retries
        )

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        if not namespace:
            resources.namespaced = False

        try:
            resource = resources.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None

        return True, resource.to_dict()

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Listing objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []

        return True, list_obj.to_dict().get("items", [])

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
        stop_event = stop_event or threading.Event()
        watch_manager = Watch()
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
        )

        resource_version = resource_version if resource_version else 0

        while not stop_event.is_set():
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace,
                    name=name,
                    label_selector=label_selector,
                    field_selector=field_selector,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    event_resource = ManagedObject(event_obj["object"])
                    resource_version = event_resource.resource_version
                    yield KubeWatchEvent(
                        KubeEventType(event_obj["type"]), event_resource
                    )
                    if stop_event.is_set():
                        watch_manager.stop()
                        break
            except client.exceptions.ApiException as exception:
                if exception.status == 410:
                    log.debug2(
                        "Resource age expired, restarting watch %s/%s",
                        kind,
                        api_version,
                    )
                    resource_version = None
                else:
                    log.info("Unknown ApiException received, re-raising")
                    raise exception
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4("Watch Socket closed, restarting watch %s/%s", kind, api_version)
            except urllib3.exceptions.ProtocolError:
                log.debug2(
                    "Invalid Chunk from server, restarting watch %s/%s",
                    kind,
                    api_version,
                )

        log.debug("Stopped watch for %s/%s", kind, api_version)

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return False, False
        if not namespace:
            resource_handle.namespaced = False

        try:
            resource = resource_handle.get(name=name, namespace=namespace).to_dict()
        except NotFoundError:
            log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
            return False, False

        current_version = resource.get("metadata", {}).get("resourceVersion")
        if resource_version is not None and resource_version != current_version:
            raise ConflictError(
                f"{kind}/{name} changed since resourceVersion {resource_version}"
            )
        if resource.get("status") == status:
            log.debug("Status has not changed. No update")
            return True, False

        resource["status"] = status
        try:
            resource_handle.status.replace(body=resource)
        except KubeConflictError as err:
            raise ConflictError(str(err)) from err
        log.debug2(
            "Successfully set the status for [%s/%s] in %s", kind, name, namespace
        )
        return True, True

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
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return False, False
        if not namespace:
            resource_handle.namespaced = False

        success, current = self.get_object_current_state(
            kind, name, namespace, api_version
        )
        if not success or current is None:
            return False, False

        body = {
            "apiVersion": api_version,
            "kind": kind,
            "metadata": {"name": name},
            "status": status,
        }
        if namespace:
            body["metadata"]["namespace"] = namespace

        log.debug2(
            "Applying status of [%s/%s] in %s as [%s]", kind, name, namespace, field_manager
        )
        try:
            result = resource_handle.status.server_side_apply(
                body=body,
                name=name,
                namespace=namespace,
                field_manager=field_manager,
                force_conflicts=force,
            ).to_dict()
        except KubeConflictError as err:
            raise ConflictError(str(err)) from err
        return True, bool(recursive_diff(current.get("status") or {}, result.get("status") or {}))

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(self, kind: str, api_version: str) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        try:
            return self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return None

    def _retried_operation(
        self,
        resource_definitions: List[dict],
        operation: Callable,
        max_retries: int,
    ) -> Tuple[bool, bool]:
        """Shared wrapper for executing a client operation with conflict retries"""
        assert isinstance(
            resource_definitions, list
        ), "Programming Error: resource_definitions is not a list"

        success = True
        changed = False
        for resource_definition in resource_definitions:
            try:
                changed = (
                    self._run_with_retries(
                        operation, max_retries, copy.deepcopy(resource_definition)
                    )
                    or changed
                )

            # Later resources may depend on earlier ones, so stop at the first
            # failure
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Operation [%s] failed to execute: %s",
                    operation,
                    err,
                    exc_info=True,
                )
                success = False
                break

        return success, changed

    def _run_with_retries(
        self,
        operation: Callable,
        remaining_retries: int,
        resource_definition: dict,
    ) -> bool:
        try:
            return operation(resource_definition)
        except KubeConflictError as err:
            log.debug2("Handling ConflictError: %s", err)
            if not remaining_retries:
                raise
            backoff_duration = config.retry_backoff_base_seconds * (
                config.deploy_retries - remaining_retries + 1
            )
            log.debug3("Retrying in %fs", backoff_duration)
            time.sleep(backoff_duration)
            return self._run_with_retries(
                operation, remaining_retries - 1, resource_definition
            )

    # Internal struct to hold the key resource identifier elements
    _ResourceIdentifiers = namedtuple(
        "ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
    )

    @classmethod
    def _get_resource_identifiers(cls, resource_definition):
        """Helper for getting the required parts of a single resource definition"""
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace")
        assert None not in [
            api_version,
            kind,
            name,
        ], "Cannot apply resource without apiVersion, kind and name"
        return cls._ResourceIdentifiers(api_version, kind, name, namespace)

    @staticmethod
    def _clean_manifest(manifest: dict) -> dict:
        manifest = copy.deepcopy(manifest)
        for metadata_field in [
            "resourceVersion",
            "generation",
            "managedFields",
            "uid",
            "creationTimestamp",
        ]:
            manifest.get("metadata", {}).pop(metadata_field, None)
        return manifest

    def _apply(self, resource_definition: dict) -> bool:
        """Server-side apply a single resource, taking ownership of any fields
        another manager holds

        Returns:
            changed:  bool
                Whether or not the apply resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(resource_definition)
        success, current = self.get_object_current_state(
            kind=res_id.kind,
            name=res_id.name,
            namespace=res_id.namespace,
            api_version=res_id.api_version,
        )
        assert_cluster(
            success,
            f"Failed to fetch current state for {res_id.namespace}/{res_id.kind}/{res_id.name}",
        )

        resource_handle = self._get_resource_handle(res_id.kind, res_id.api_version)
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {res_id.api_version}/{res_id.kind}",
        )

        # Let the server own managedFields
        resource_definition["metadata"].pop("managedFields", None)
        resource_definition["metadata"].pop("resourceVersion", None)
        log.debug2(
            "Attempting to apply [%s/%s] in %s",
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        result = resource_handle.server_side_apply(
            body=resource_definition,
            name=res_id.name,
            namespace=res_id.namespace,
            field_manager=self.field_manager,
            force_conflicts=True,
        ).to_dict()
        return bool(
            recursive_diff(
                self._clean_manifest(current or {}), self._clean_manifest(result)
            )
        )

    def _disable(self, resource_definition: dict) -> bool:
        """Delete a single resource, treating a missing kind or object as a
        success without change
        """
        res_id = self._get_resource_identifiers(resource_definition)
        try:
            resource_handle = self.client.resources.get(
                api_version=res_id.api_version, kind=res_id.kind
            )
            if not res_id.namespace:
                resource_handle.namespaced = False
            log.debug2(
                "Attempting to delete [%s/%s] from %s",
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_handle.delete(name=res_id.name, namespace=res_id.namespace)
            return True
        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2(
                "Valid error caught when disabling [%s/%s]: %s",
                res_id.kind,
                res_id.name,
                err,
            )
        return False
