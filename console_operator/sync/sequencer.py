"""
The sync sequencer runs a fixed, ordered list of named steps. Each step
declares the outputs of earlier steps it needs and the outputs it provides, so
the dependency graph between steps is explicit and checked up front.

The first failing step ends the pass. Nothing about the position of a failure
is kept between passes: the next pass starts again from the first step, which
is safe because every step is a no-op when its resources are already correct.
"""

# Standard
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase
from ..exceptions import assert_cluster, get_error_reason
from ..status.handler import (
    ConditionUpdate,
    StatusFn,
    StatusHandler,
    handle_progressing_or_degraded,
)
from ..utils import nested_get
from .management_state import ManagementState, get_management_state

log = alog.use_channel("SEQNCR")

ConditionDeriver = Callable[[str, str, Optional[BaseException]], List[ConditionUpdate]]

## Config Snapshot #############################################################


@dataclass(frozen=True)
class ConfigSnapshot:
    """The cluster configuration a pass works from, read once at its start.
    Steps read from it and never write to it.
    """

    operator_config: Mapping[str, Any]
    console_config: Mapping[str, Any]
    authentication: Mapping[str, Any]
    release_version: str

    @property
    def management_state(self) -> ManagementState:
        return get_management_state(self.operator_config)

    @property
    def auth_type(self) -> str:
        return nested_get(self.authentication, "spec.type", "") or ""

    @property
    def generation(self) -> int:
        return nested_get(self.operator_config, "metadata.generation", 0) or 0

    @property
    def conditions(self) -> List[dict]:
        return nested_get(self.operator_config, "status.conditions") or []


def read_config_snapshot(deploy_manager: DeployManagerBase) -> ConfigSnapshot:
    """Read the operator config, console config and authentication config

    Raises:
        ClusterError: One of the config objects could not be read
    """
    configs = {}
    for key, kind, api_version in [
        (
            "operator_config",
            constants.OPERATOR_CONFIG_KIND,
            constants.OPERATOR_CONFIG_API_VERSION,
        ),
        (
            "console_config",
            constants.CONSOLE_CONFIG_KIND,
            constants.CONSOLE_CONFIG_API_VERSION,
        ),
        (
            "authentication",
            constants.AUTHENTICATION_KIND,
            constants.AUTHENTICATION_API_VERSION,
        ),
    ]:
        success, content = deploy_manager.get_object_current_state(
            kind=kind, name=constants.CONFIG_RESOURCE_NAME, api_version=api_version
        )
        assert_cluster(
            success and content is not None,
            f"failed to retrieve {api_version}/{kind} {constants.CONFIG_RESOURCE_NAME}",
            reason="FailedGet",
        )
        configs[key] = content
    return ConfigSnapshot(release_version=config.release_version, **configs)


## Steps #######################################################################


@dataclass(frozen=True)
class StepInput:
    """What a step gets to work with: the config snapshot, the outputs of the
    steps before it and whether any of them changed something
    """

    configs: ConfigSnapshot
    outputs: Mapping[str, Any]
    changed_so_far: bool = False

    def __getitem__(self, key: str) -> Any:
        return self.outputs[key]


@dataclass(frozen=True)
class StepResult:
    """The outcome of one step"""

    changed: bool = False
    reason: str = ""
    error: Optional[BaseException] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    # Conditions added on top of the ones derived for the step's prefix
    conditions: Tuple[ConditionUpdate, ...] = ()
    status_fns: Tuple[StatusFn, ...] = ()


@dataclass(frozen=True)
class SyncStep:
    """A named step with declared inputs and outputs

    If the step has a prefix, its Degraded/Progressing pair is derived from
    the result. A step with a `when` predicate that does not hold for the
    snapshot is skipped and provides None for each of its outputs.
    """

    name: str
    run: Callable[[StepInput], StepResult]
    prefix: Optional[str] = None
    requires: Tuple[str, ...] = ()
    provides: Tuple[str, ...] = ()
    when: Optional[Callable[[ConfigSnapshot], bool]] = None
    derive: ConditionDeriver = handle_progressing_or_degraded


@dataclass(frozen=True)
class SequenceResult:
    changed: bool
    outputs: Mapping[str, Any]
    error: Optional[BaseException] = None
    failed_step: Optional[str] = None
    completed_steps: Tuple[str, ...] = ()


class SyncSequencer:
    """Runs steps in order, feeding each the outputs of those before it"""

    def __init__(self, steps: Sequence[SyncStep]):
        self.steps = list(steps)
        self._validate()

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def run(self, configs: ConfigSnapshot, status_handler: StatusHandler) -> SequenceResult:
        """Run every step until the first failure. Conditions for every step
        that ran are added to the status handler, which the caller flushes.
        """
        outputs: Dict[str, Any] = {}
        changed = False
        completed = []
        for step in self.steps:
            if step.when is not None and not step.when(configs):
                log.debug3("Skipping step %s", step.name)
                outputs.update({key: None for key in step.provides})
                continue

            log.debug2("Running step %s", step.name)
            step_input = StepInput(
                configs=configs,
                outputs=MappingProxyType(dict(outputs)),
                changed_so_far=changed,
            )
            result = self._run_step(step, step_input)

            if step.prefix:
                status_handler.add_conditions(
                    step.derive(step.prefix, result.reason, result.error)
                )
            status_handler.add_conditions(result.conditions)
            for status_fn in result.status_fns:
                status_handler.add_status_fn(status_fn)

            changed = changed or result.changed
            unknown = set(result.outputs) - set(step.provides)
            assert not unknown, f"Step {step.name} gave undeclared outputs {unknown}"
            outputs.update(result.outputs)

            if result.error is not None:
                log.debug(
                    "Step %s failed [%s]: %s", step.name, result.reason, result.error
                )
                return SequenceResult(
                    changed=changed,
                    outputs=MappingProxyType(outputs),
                    error=result.error,
                    failed_step=step.name,
                    completed_steps=tuple(completed),
                )
            completed.append(step.name)

        log.debug("Sync steps complete, resources updated: %s", changed)
        return SequenceResult(
            changed=changed,
            outputs=MappingProxyType(outputs),
            completed_steps=tuple(completed),
        )

    ## Implementation Details ##################################################

    def _validate(self):
        """Every input a step requires must be provided by an earlier step"""
        provided = set()
        names = set()
        for step in self.steps:
            assert step.name not in names, f"Duplicate step name {step.name}"
            names.add(step.name)
            missing = set(step.requires) - provided
            assert not missing, f"Step {step.name} requires {missing} before it is provided"
            provided.update(step.provides)

    @staticmethod
    def _run_step(step: SyncStep, step_input: StepInput) -> StepResult:
        """Run a step, turning a raised error into a failed result"""
        try:
            result = step.run(step_input)
        except Exception as err:  # pylint: disable=broad-except
            log.debug("Step %s raised", step.name, exc_info=True)
            return StepResult(reason=get_error_reason(err), error=err)
        return result
