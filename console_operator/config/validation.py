"""
Validation of the values found in the loaded operator config. Each entry in
config_validation.yaml that holds a "type" describes one validated parameter,
and the remaining keys of the entry are the checks for that type.

    resync_period:
      type: duration
      min_seconds: 1
"""

# Standard
from typing import Any, Callable, Dict, List, Optional
import re

# First Party
import aconfig
import alog

# Local
from ..constants import NESTED_DICT_DELIM
from ..utils import nested_get, parse_time_delta

log = alog.use_channel("CONFG")

Validator = Callable[[Any], bool]

# <registry>/<path>[:tag][@digest], loosely
_IMAGE_REF = re.compile(r"^[a-z0-9]+([._\-/:][a-zA-Z0-9_\-]+)*(@sha256:[a-f0-9]{64})?$")


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get the nested keys of all params that fail validation

    Args:
        config:  aconfig.Config
            The parsed config with any env overrides applied
        validation_config:  aconfig.Config
            The parallel config describing the validators

    Returns:
        invalid_params:  List[str]
            The '.' delimited keys of every invalid param
    """
    invalid_params = []
    for key, validator in _collect_validators(validation_config).items():
        value = nested_get(config, key)
        if not validator(value):
            log.warning("Found invalid config key [%s] = %s", key, value)
            invalid_params.append(key)
    return invalid_params


## Checks ######################################################################


def _in_bounds(value, low, high) -> bool:
    return (low is None or value >= low) and (high is None or value <= high)


def _number(min=None, max=None) -> Validator:  # pylint: disable=redefined-builtin
    # bool is an int subclass, but never a valid number
    return lambda value: (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and _in_bounds(value, min, max)
    )


def _int(min=None, max=None) -> Validator:  # pylint: disable=redefined-builtin
    in_range = _number(min, max)
    return lambda value: isinstance(value, int) and in_range(value)


def _str(min_len=None, max_len=None) -> Validator:
    return lambda value: isinstance(value, str) and _in_bounds(len(value), min_len, max_len)


def _bool() -> Validator:
    return lambda value: isinstance(value, bool)


def _enum(values: List[Any]) -> Validator:
    assert isinstance(values, list) and values, "Must specify at least one enum value!"
    return lambda value: value in values


def _duration(min_seconds=None) -> Validator:
    """A duration string such as 30s or 1m30s"""

    def _validate(value: Any) -> bool:
        if not isinstance(value, str):
            return False
        delta = parse_time_delta(value)
        return delta is not None and _in_bounds(delta.total_seconds(), min_seconds, None)

    return _validate


def _image() -> Validator:
    return lambda value: isinstance(value, str) and bool(_IMAGE_REF.match(value))


_VALIDATOR_FACTORIES: Dict[str, Callable[..., Validator]] = {
    "number": _number,
    "int": _int,
    "str": _str,
    "bool": _bool,
    "enum": _enum,
    "duration": _duration,
    "image": _image,
}


## Implementation Details ######################################################


def _build_validator(param_args: dict) -> Optional[Validator]:
    """Build the validator for one entry, None if the type is not known"""
    param_args = dict(param_args)
    param_type = param_args.pop("type")
    optional = param_args.pop("optional", False)
    factory = _VALIDATOR_FACTORIES.get(param_type) if isinstance(param_type, str) else None
    if factory is None:
        return None
    validator = factory(**param_args)
    if optional:
        return lambda value: value is None or validator(value)
    return validator


def _collect_validators(
    validation_config: dict,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, Validator]:
    """Flatten the validation config into nested keys mapped to validators"""
    validators = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        nested_key = NESTED_DICT_DELIM.join(key_parts)
        validator = _build_validator(val) if "type" in val else None
        if validator is not None:
            log.debug3("Found parameter at %s", nested_key)
            validators[nested_key] = validator
        else:
            log.debug3("Recursing into %s", nested_key)
            validators.update(_collect_validators(val, prefix_parts=key_parts))
    return validators
