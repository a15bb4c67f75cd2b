"""
Helpers for the typed condition records stored in .status.conditions
"""

# Standard
from typing import List, Optional
import copy

# Local
from ..utils import now_rfc3339

## Condition Values ############################################################

STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"

DEGRADED = "Degraded"
PROGRESSING = "Progressing"
AVAILABLE = "Available"
UPGRADEABLE = "Upgradeable"

CONDITION_SUFFIXES = [DEGRADED, PROGRESSING, AVAILABLE, UPGRADEABLE]

## Helpers #####################################################################


def make_condition(
    condition_type: str,
    status: str,
    reason: str = "",
    message: str = "",
    last_transition_time: Optional[str] = None,
) -> dict:
    """Construct a condition dict"""
    return {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": last_transition_time or now_rfc3339(),
    }


def find_condition(conditions: Optional[List[dict]], condition_type: str) -> Optional[dict]:
    """Find the condition with the given type"""
    for condition in conditions or []:
        if condition.get("type") == condition_type:
            return condition
    return None


def set_condition(conditions: List[dict], new_condition: dict) -> List[dict]:
    """Set a condition in place, keeping at most one condition per type. The
    lastTransitionTime only moves when the status changes.
    """
    existing = find_condition(conditions, new_condition["type"])
    if existing is None:
        condition = copy.deepcopy(new_condition)
        condition.setdefault("lastTransitionTime", now_rfc3339())
        conditions.append(condition)
        return conditions

    if existing.get("status") != new_condition.get("status"):
        existing["status"] = new_condition.get("status")
        existing["lastTransitionTime"] = new_condition.get(
            "lastTransitionTime"
        ) or now_rfc3339()
    existing["reason"] = new_condition.get("reason", "")
    existing["message"] = new_condition.get("message", "")
    return conditions


def remove_condition(conditions: List[dict], condition_type: str) -> List[dict]:
    """Remove the condition with the given type in place"""
    conditions[:] = [c for c in conditions if c.get("type") != condition_type]
    return conditions
