"""
The console sync: management state gate, ordered steps and resource builders
"""

# Local
from .management_state import (
    ManagementState,
    get_management_state,
    is_managed,
    read_management_state,
)
from .operator import ConsoleOperator
from .sequencer import (
    ConfigSnapshot,
    SequenceResult,
    StepInput,
    StepResult,
    SyncSequencer,
    SyncStep,
    read_config_snapshot,
)
from .steps import ConsoleSyncSteps
