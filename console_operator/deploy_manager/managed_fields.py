"""
Helpers for the FieldsV1 ownership sets kept in metadata.managedFields. These
let a field manager read back exactly the part of an object it applied, and
let the dry run cluster emulate server-side apply merging of list-maps.

FieldsV1 keys:
    f:<name>     a dict field
    k:<json>     a list-map item identified by its key fields
    v:<json>     a set item identified by its value
    .            the item itself
"""

# Standard
from typing import Any, Dict, List, Optional, Sequence
import copy
import json

# First Party
import alog

# Local
from ..utils import now_rfc3339

log = alog.use_channel("MGDFLDS")

# Lists of objects which are merged item by item on apply, keyed by these
# fields
LIST_MAP_KEYS = {
    "conditions": ("type",),
    "oidcClients": ("componentName", "componentNamespace"),
    "currentOIDCClients": ("issuerURL", "oidcProviderName"),
}

FIELDS_TYPE = "FieldsV1"
APPLY_OPERATION = "Apply"


## Fields sets #################################################################


def fields_v1_for(value: Any, field_name: Optional[str] = None) -> dict:
    """Compute the FieldsV1 set describing every field present in the given
    applied value
    """
    if isinstance(value, dict):
        return {f"f:{key}": fields_v1_for(val, key) for key, val in value.items()}
    if isinstance(value, list) and field_name in LIST_MAP_KEYS:
        keys = LIST_MAP_KEYS[field_name]
        fields = {}
        for item in value:
            item_fields = {".": {}}
            item_fields.update(fields_v1_for(item))
            fields[_list_map_key(item, keys)] = item_fields
        return fields
    # Scalars and atomic lists are owned whole
    return {}


def extract_owned(value: Any, fields: dict) -> Any:
    """Extract the part of the value described by the FieldsV1 set"""
    if not fields:
        return copy.deepcopy(value)
    if isinstance(value, dict):
        extracted = {}
        for field_key, sub_fields in fields.items():
            if not field_key.startswith("f:"):
                continue
            name = field_key[2:]
            if name in value:
                extracted[name] = extract_owned(value[name], sub_fields)
        return extracted
    if isinstance(value, list):
        extracted = []
        for item in value:
            for field_key, sub_fields in fields.items():
                if _item_matches(item, field_key):
                    extracted.append(
                        extract_owned(
                            item, {k: v for k, v in sub_fields.items() if k != "."}
                        )
                    )
                    break
        return extracted
    return copy.deepcopy(value)


def merge_fields(*field_sets: dict) -> dict:
    """Union of FieldsV1 sets"""
    merged = {}
    for fields in field_sets:
        for key, sub_fields in fields.items():
            merged[key] = merge_fields(merged.get(key, {}), sub_fields)
    return merged


## managedFields entries #######################################################


def get_manager_fields(
    obj: dict,
    field_manager: str,
    subresource: Optional[str] = None,
) -> Optional[dict]:
    """Get the union of the Apply fields owned by the given manager, or None if
    the manager has never applied to the object
    """
    entries = [
        entry
        for entry in obj.get("metadata", {}).get("managedFields") or []
        if entry.get("manager") == field_manager
        and entry.get("operation") == APPLY_OPERATION
        and entry.get("subresource") == subresource
    ]
    if not entries:
        return None
    return merge_fields(*[entry.get("fieldsV1") or {} for entry in entries])


def extract_owned_status(obj: dict, field_manager: str) -> Optional[dict]:
    """Extract the status that the given field manager applied. Returns None
    if the manager owns nothing on the status subresource.
    """
    fields = get_manager_fields(obj, field_manager, subresource="status")
    if fields is None:
        return None
    extracted = extract_owned(obj, fields)
    log.debug3("Extracted status for [%s]: %s", field_manager, extracted)
    return extracted.get("status", {})


def set_manager_fields(
    obj: dict,
    field_manager: str,
    fields: dict,
    api_version: str,
    subresource: Optional[str] = None,
) -> List[dict]:
    """Replace the managedFields entry of the given manager"""
    managed_fields = [
        entry
        for entry in obj.setdefault("metadata", {}).get("managedFields") or []
        if not (
            entry.get("manager") == field_manager
            and entry.get("operation") == APPLY_OPERATION
            and entry.get("subresource") == subresource
        )
    ]
    entry = {
        "manager": field_manager,
        "operation": APPLY_OPERATION,
        "apiVersion": api_version,
        "time": now_rfc3339(),
        "fieldsType": FIELDS_TYPE,
        "fieldsV1": fields,
    }
    if subresource:
        entry["subresource"] = subresource
    managed_fields.append(entry)
    obj["metadata"]["managedFields"] = managed_fields
    return managed_fields


## Apply merging ###############################################################


def apply_owned(
    current: Any,
    applied: Any,
    previous_fields: Optional[dict] = None,
    field_name: Optional[str] = None,
) -> Any:
    """Merge an applied value into the current value the way server-side apply
    does: fields in the applied value win, fields the manager previously owned
    but no longer applies are removed, everything else is left alone.
    """
    previous_fields = previous_fields or {}
    if isinstance(current, dict) and isinstance(applied, dict):
        merged = copy.deepcopy(current)
        for field_key in previous_fields:
            name = field_key[2:]
            if field_key.startswith("f:") and name not in applied:
                merged.pop(name, None)
        for key, val in applied.items():
            merged[key] = apply_owned(
                current.get(key),
                val,
                previous_fields.get(f"f:{key}"),
                field_name=key,
            )
        return merged
    if (
        isinstance(current, list)
        and isinstance(applied, list)
        and field_name in LIST_MAP_KEYS
    ):
        return _apply_list_map(current, applied, previous_fields, LIST_MAP_KEYS[field_name])
    return copy.deepcopy(applied)


def _apply_list_map(
    current: List[dict],
    applied: List[dict],
    previous_fields: dict,
    keys: Sequence[str],
) -> List[dict]:
    applied_by_key = {_list_map_key(item, keys): item for item in applied}
    merged = []
    for item in current:
        item_key = _list_map_key(item, keys)
        if item_key in applied_by_key:
            merged.append(
                apply_owned(
                    item,
                    applied_by_key.pop(item_key),
                    {k: v for k, v in previous_fields.get(item_key, {}).items() if k != "."},
                )
            )
        elif item_key not in previous_fields:
            merged.append(copy.deepcopy(item))
    for item in applied:
        if _list_map_key(item, keys) in applied_by_key:
            merged.append(copy.deepcopy(item))
    return merged


## Implementation Details ######################################################


def _list_map_key(item: Dict[str, Any], keys: Sequence[str]) -> str:
    return "k:" + json.dumps(
        {key: item.get(key) for key in keys}, sort_keys=True, separators=(",", ":")
    )


def _item_matches(item: Any, field_key: str) -> bool:
    if field_key.startswith("k:"):
        key = json.loads(field_key[2:])
        return isinstance(item, dict) and all(
            item.get(name) == val for name, val in key.items()
        )
    if field_key.startswith("v:"):
        return item == json.loads(field_key[2:])
    return False
