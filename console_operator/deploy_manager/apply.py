"""
The resource applier shared by every sync step. A required manifest is only
written when the object in the cluster differs from it on the fields the
manifest sets.
"""

# Standard
from typing import Optional, Tuple
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from ..exceptions import assert_cluster
from ..utils import project_onto
from .base import DeployManagerBase

log = alog.use_channel("APPLY")

# Metadata owned by the server which never takes part in the comparison
_IGNORED_METADATA = [
    "resourceVersion",
    "generation",
    "managedFields",
    "uid",
    "creationTimestamp",
]


def requires_update(existing: Optional[dict], required: dict) -> bool:
    """Determine whether the existing object has drifted from the required
    manifest. Fields the manifest does not set (server defaults, status) are
    ignored.
    """
    if existing is None:
        return True
    required = copy.deepcopy(required)
    for metadata_field in _IGNORED_METADATA:
        required.get("metadata", {}).pop(metadata_field, None)
    required.pop("status", None)
    diff = DeepDiff(project_onto(existing, required), required, ignore_order=False)
    if diff:
        log.debug3("Found diff: %s", diff)
    return bool(diff)


def apply_resource(
    deploy_manager: DeployManagerBase,
    required: dict,
    existing: Optional[dict] = None,
) -> Tuple[dict, bool]:
    """Make sure the required manifest is applied in the cluster

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager to read and write with
        required:  dict
            The desired manifest
        existing:  Optional[dict]
            The current object if the caller already read it

    Returns:
        result:  dict
            The object as it now exists in the cluster
        changed:  bool
            Whether or not a write was made
    """
    kind = required.get("kind")
    api_version = required.get("apiVersion")
    name = required.get("metadata", {}).get("name")
    namespace = required.get("metadata", {}).get("namespace")

    if existing is None:
        success, existing = deploy_manager.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )
        assert_cluster(
            success,
            f"Failed to fetch current state of {kind}/{name} in {namespace}",
            reason="FailedGet",
        )

    if not requires_update(existing, required):
        log.debug2("No change needed for %s/%s in %s", kind, name, namespace)
        return existing, False

    log.debug("Applying %s/%s in %s", kind, name, namespace)
    success, changed = deploy_manager.deploy([required])
    assert_cluster(
        success, f"Failed to apply {kind}/{name} in {namespace}", reason="FailedApply"
    )
    success, result = deploy_manager.get_object_current_state(
        kind=kind, name=name, namespace=namespace, api_version=api_version
    )
    assert_cluster(
        success and result is not None,
        f"Failed to read back {kind}/{name} in {namespace}",
        reason="FailedGet",
    )
    return result, changed


def delete_resource(deploy_manager: DeployManagerBase, resource: dict) -> bool:
    """Delete the resource, treating an absent object as success

    Returns:
        changed:  bool
            Whether or not anything was deleted
    """
    success, changed = deploy_manager.disable([resource])
    assert_cluster(
        success,
        f"Failed to delete {resource.get('kind')}/{resource.get('metadata', {}).get('name')}",
        reason="FailedDelete",
    )
    return changed
