"""
Common utilities shared across the operator
"""

# Standard
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import copy
import re
import secrets

# Local
from . import constants

__MISSING__ = "__MISSING__"

## Dict Functions ##############################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    If both the base and overrides have a key and both values are dicts, the
    merge recurses, otherwise the base value is replaced by the override.
    """
    for key, value in overrides.items():
        if (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)
    return base


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to look in
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key (or any
            intermediate dict) is not found
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} is not a dict"
            )
    return dct.get(parts[-1], dflt)


def project_onto(existing: Any, template: Any) -> Any:
    """Project the existing value onto the shape of the template, keeping only
    the dict keys the template holds. Lists of the same length are projected
    item by item so server defaults inside list items are dropped too.
    """
    if isinstance(existing, dict) and isinstance(template, dict):
        return {
            key: project_onto(existing[key], val)
            for key, val in template.items()
            if key in existing
        }
    if (
        isinstance(existing, list)
        and isinstance(template, list)
        and len(existing) == len(template)
    ):
        return [project_onto(item, tmpl) for item, tmpl in zip(existing, template)]
    return copy.deepcopy(existing)


## Time Functions ##############################################################

# https://stackoverflow.com/questions/4628122/how-to-construct-a-timedelta-object-from-a-simple-string
_TIME_DELTA_REGEX = re.compile(
    r"^((?P<hours>\d+?)hr)?((?P<minutes>\d+?)m)?((?P<seconds>\d*\.?\d+?)s)?$"
)


def parse_time_delta(time_str: str) -> Optional[timedelta]:
    """Parse a string like 1hr, 5m, 10s or 1m30s into a timedelta

    Returns:
        result: Optional[timedelta]
            The parsed timedelta if the string could be parsed
    """
    parts = _TIME_DELTA_REGEX.match(time_str)
    if not parts or all(part is None for part in parts.groupdict().values()):
        return None
    return timedelta(
        **{name: float(param) for name, param in parts.groupdict().items() if param}
    )


def now_rfc3339() -> str:
    """The current UTC time in the format kubernetes uses for timestamps"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


## Secrets #####################################################################


def random_secret(num_bytes: int = 32) -> str:
    """Generate a random url-safe secret value"""
    return secrets.token_urlsafe(num_bytes)
