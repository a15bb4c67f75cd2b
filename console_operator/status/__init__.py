"""
Status condition reporting
"""

# Local
from .auth_status import AuthStatusHandler
from .conditions import find_condition, set_condition
from .handler import (
    ConditionUpdate,
    StatusHandler,
    handle_available,
    handle_degraded,
    handle_progressing,
    handle_progressing_or_degraded,
    handle_upgradeable,
    reset_conditions,
)
