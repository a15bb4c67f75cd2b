"""
This module implements custom exceptions. Every operator error carries an
explicit ErrorKind tag which drives how it is reported in status conditions.
"""

# Standard
from enum import Enum
from typing import Optional

## Error Kinds #################################################################


class ErrorKind(Enum):
    """The kind of an error decides which condition it surfaces as"""

    # A condition that is expected to resolve itself (Progressing=True)
    TRANSIENT = "Transient"
    # A hard failure (Degraded=True)
    FATAL = "Fatal"


def get_error_kind(err: Optional[BaseException]) -> Optional[ErrorKind]:
    """Read the kind tag off of an error. Errors that did not come from this
    library are treated as FATAL.
    """
    if err is None:
        return None
    return getattr(err, "kind", ErrorKind.FATAL)


def get_error_reason(err: Optional[BaseException], default: str = "") -> str:
    """Read the reason off of an error, falling back to the given default"""
    return getattr(err, "reason", "") or default


## Base Error ##################################################################


class ConsoleOperatorError(Exception):
    """Base class for all console operator exceptions"""

    def __init__(
        self,
        message: str = "",
        kind: ErrorKind = ErrorKind.FATAL,
        reason: str = "",
        requeue: bool = True,
    ):
        """Construct with the error kind tag. This will be a static property of
        most children.
        """
        super().__init__(message)
        self.message = message
        self._kind = kind
        self._reason = reason
        self._requeue = requeue

    @property
    def kind(self) -> ErrorKind:
        """The tagged kind of this error"""
        return self._kind

    @property
    def reason(self) -> str:
        """Short CamelCase reason used in status conditions"""
        return self._reason

    @property
    def requeue(self) -> bool:
        """Whether the controller should retry the key with backoff"""
        return self._requeue

    @property
    def is_fatal_error(self) -> bool:
        return self._kind is ErrorKind.FATAL


## Transient Errors ############################################################


class SyncProgressingError(ConsoleOperatorError):
    """A SyncProgressingError indicates that the sync is waiting on something
    that is expected to show up on its own (e.g. a secret created by another
    controller).
    """

    def __init__(self, message: str = "", reason: str = ""):
        super().__init__(message, kind=ErrorKind.TRANSIENT, reason=reason)


class ConflictError(ConsoleOperatorError):
    """Exception raised when a write is rejected because the resourceVersion it
    was based on is out of date
    """

    def __init__(self, message: str = ""):
        super().__init__(message, kind=ErrorKind.TRANSIENT, reason="Conflict")


## Fatal Errors ################################################################


class ReasonedError(ConsoleOperatorError):
    """A hard error carrying the reason to report with it"""

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message, kind=ErrorKind.FATAL, reason=reason)


class CustomLogoError(ReasonedError):
    """Exception raised when the configured custom logo cannot be used"""

    def __init__(self, message: str = "", reason: str = "FailedSyncSource"):
        super().__init__(reason=reason, message=message)


class ConfigError(ConsoleOperatorError):
    """Exception caused by an invalid value in operator owned configuration.
    These are never retried with backoff since no amount of retrying fixes
    them.
    """

    def __init__(self, message: str = "", reason: str = "InvalidConfig"):
        super().__init__(message, kind=ErrorKind.FATAL, reason=reason, requeue=False)


class ClusterError(ConsoleOperatorError):
    """Exception caused when a cluster operation fails in an unexpected way"""

    def __init__(self, message: str = "", reason: str = ""):
        super().__init__(message, kind=ErrorKind.FATAL, reason=reason)


## Assertions ##################################################################


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError"""
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = "", reason: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching an existing
    secret) must succeed.
    """
    if not condition:
        raise ClusterError(message, reason=reason)
