"""
The StatusHandler batches every condition change made during one sync pass and
commits them to the operator config status in a single write. The handle_*
functions derive the conditions for a category prefix from the outcome of a
sync step.
"""

# Standard
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Union
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase
from ..exceptions import (
    ConflictError,
    ConsoleOperatorError,
    ErrorKind,
    assert_cluster,
    get_error_kind,
    get_error_reason,
)
from .conditions import (
    AVAILABLE,
    CONDITION_SUFFIXES,
    DEGRADED,
    PROGRESSING,
    STATUS_FALSE,
    STATUS_TRUE,
    UPGRADEABLE,
    set_condition,
)

log = alog.use_channel("STATUS")

TIMESTAMP_KEY = "lastTransitionTime"

StatusFn = Callable[[dict], None]

## Condition derivation ########################################################


@dataclass(frozen=True)
class ConditionUpdate:
    """A single intended change to one condition type"""

    type: str
    status: str
    reason: str = ""
    message: str = ""

    def as_condition(self) -> dict:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
        }


def _error_update(
    condition_type: str,
    reason: str,
    err: Optional[BaseException],
    status_on_error: str,
) -> ConditionUpdate:
    if err is None:
        other = STATUS_FALSE if status_on_error == STATUS_TRUE else STATUS_TRUE
        return ConditionUpdate(condition_type, other)
    return ConditionUpdate(
        condition_type,
        status_on_error,
        reason=get_error_reason(err, reason),
        message=str(err),
    )


def handle_degraded(
    prefix: str, reason: str, err: Optional[BaseException]
) -> ConditionUpdate:
    """<prefix>Degraded is True exactly when there is an error"""
    return _error_update(prefix + DEGRADED, reason, err, STATUS_TRUE)


def handle_progressing(
    prefix: str, reason: str, err: Optional[BaseException]
) -> ConditionUpdate:
    """<prefix>Progressing is True exactly when there is an error"""
    return _error_update(prefix + PROGRESSING, reason, err, STATUS_TRUE)


def handle_available(
    prefix: str, reason: str, err: Optional[BaseException]
) -> ConditionUpdate:
    """<prefix>Available is True exactly when there is no error"""
    return _error_update(prefix + AVAILABLE, reason, err, STATUS_FALSE)


def handle_upgradeable(
    prefix: str, reason: str, err: Optional[BaseException]
) -> ConditionUpdate:
    """<prefix>Upgradeable is True exactly when there is no error"""
    return _error_update(prefix + UPGRADEABLE, reason, err, STATUS_FALSE)


def handle_progressing_or_degraded(
    prefix: str, reason: str, err: Optional[BaseException]
) -> List[ConditionUpdate]:
    """Derive the Degraded/Progressing pair for a prefix from the error kind.

    - no error: neither Degraded nor Progressing
    - TRANSIENT error: Progressing with the error's reason and message
    - any other error: Degraded with the error's reason and message
    """
    kind = get_error_kind(err)
    if kind is None:
        return [
            handle_degraded(prefix, reason, None),
            handle_progressing(prefix, reason, None),
        ]
    if kind is ErrorKind.TRANSIENT:
        return [
            handle_degraded(prefix, reason, None),
            handle_progressing(prefix, reason, err),
        ]
    return [
        handle_degraded(prefix, reason, err),
        handle_progressing(prefix, reason, None),
    ]


def reset_conditions(conditions: Iterable[dict]) -> List[ConditionUpdate]:
    """Reset every known condition to its healthy value. Used when the operator
    is told to remove everything it manages.
    """
    updates = []
    for condition in conditions:
        condition_type = condition.get("type", "")
        for suffix in CONDITION_SUFFIXES:
            if not condition_type.endswith(suffix):
                continue
            prefix = condition_type[: -len(suffix)]
            if suffix == DEGRADED:
                updates.append(handle_degraded(prefix, "", None))
            elif suffix == PROGRESSING:
                updates.append(handle_progressing(prefix, "", None))
            elif suffix == AVAILABLE:
                updates.append(handle_available(prefix, "", None))
            else:
                updates.append(handle_upgradeable(prefix, "", None))
            break
    return updates


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Whether there is a meaningful (non-timestamp) change between the two
    status objects
    """
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True
    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


## Status fields ###############################################################


def set_observed_generation(generation: int) -> StatusFn:
    def _update(status: dict):
        status["observedGeneration"] = generation

    return _update


def set_ready_replicas(ready_replicas: int) -> StatusFn:
    def _update(status: dict):
        status["readyReplicas"] = ready_replicas

    return _update


def set_deployment_generation(deployment: dict) -> StatusFn:
    """Record the generation of the applied deployment in status.generations"""
    metadata = deployment.get("metadata", {})
    generation = {
        "group": "apps",
        "resource": "deployments",
        "namespace": metadata.get("namespace"),
        "name": metadata.get("name"),
        "lastGeneration": metadata.get("generation", 0),
    }

    def _update(status: dict):
        generations = [
            gen
            for gen in status.get("generations") or []
            if any(gen.get(key) != generation[key] for key in ("group", "resource", "namespace", "name"))
        ]
        generations.append(generation)
        status["generations"] = generations

    return _update


## StatusHandler ###############################################################


class StatusHandler:
    """Accumulates condition and status field changes for one pass. Instances
    are not thread safe and must not outlive the pass that created them.
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        kind: str = constants.OPERATOR_CONFIG_KIND,
        name: str = constants.CONFIG_RESOURCE_NAME,
        api_version: str = constants.OPERATOR_CONFIG_API_VERSION,
        namespace: Optional[str] = None,
    ):
        self.deploy_manager = deploy_manager
        self.kind = kind
        self.name = name
        self.api_version = api_version
        self.namespace = namespace
        self._conditions: Dict[str, ConditionUpdate] = {}
        self._status_fns: List[StatusFn] = []

    @property
    def conditions(self) -> List[ConditionUpdate]:
        """The pending condition updates in the order they were first added"""
        return list(self._conditions.values())

    def add_condition(self, update: ConditionUpdate):
        """Queue a condition update. A later update for the same type wins."""
        self._conditions[update.type] = update

    def add_conditions(
        self, updates: Union[ConditionUpdate, Iterable[ConditionUpdate]]
    ):
        if isinstance(updates, ConditionUpdate):
            updates = [updates]
        for update in updates:
            self.add_condition(update)

    def add_status_fn(self, status_fn: StatusFn):
        self._status_fns.append(status_fn)

    def update_observed_generation(self, generation: int):
        self.add_status_fn(set_observed_generation(generation))

    def update_ready_replicas(self, ready_replicas: int):
        self.add_status_fn(set_ready_replicas(ready_replicas))

    def update_deployment_generation(self, deployment: dict):
        self.add_status_fn(set_deployment_generation(deployment))

    def flush_and_return(
        self, err: Optional[BaseException] = None
    ) -> Optional[BaseException]:
        """Write every pending change in a single status update, then hand back
        the given error. If the status write itself fails, that error is
        returned instead.
        """
        try:
            self._write_status()
        except ConsoleOperatorError as update_err:
            log.warning(
                "Failed to update %s/%s status: %s", self.kind, self.name, update_err
            )
            return update_err
        finally:
            self._conditions = {}
            self._status_fns = []
        return err

    ## Implementation Details ##################################################

    def _write_status(self) -> bool:
        """Read-modify-write the status with retries on conflicts"""
        if not self._conditions and not self._status_fns:
            return False

        retries = config.status.update_retries
        for attempt in range(retries + 1):
            success, current = self.deploy_manager.get_object_current_state(
                kind=self.kind,
                name=self.name,
                namespace=self.namespace,
                api_version=self.api_version,
            )
            assert_cluster(
                success and current is not None,
                f"Failed to fetch {self.kind}/{self.name}",
                reason="FailedGet",
            )
            old_status = current.get("status") or {}
            new_status = copy.deepcopy(old_status)
            conditions = new_status.setdefault("conditions", [])
            for update in self._conditions.values():
                set_condition(conditions, update.as_condition())
            for status_fn in self._status_fns:
                status_fn(new_status)

            if not status_changed(old_status, new_status):
                log.debug2("No status change for %s/%s", self.kind, self.name)
                return False

            try:
                success, _ = self.deploy_manager.set_status(
                    kind=self.kind,
                    name=self.name,
                    namespace=self.namespace,
                    status=new_status,
                    api_version=self.api_version,
                    resource_version=current.get("metadata", {}).get(
                        "resourceVersion"
                    ),
                )
            except ConflictError as err:
                log.debug("Status conflict on attempt %d: %s", attempt, err)
                continue
            assert_cluster(
                success,
                f"Failed to update status of {self.kind}/{self.name}",
                reason="FailedUpdate",
            )
            log.debug2("Updated status of %s/%s", self.kind, self.name)
            return True

        raise ConflictError(
            f"Gave up updating status of {self.kind}/{self.name} after {retries + 1} attempts"
        )
