from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class SwitchboardError(RuntimeError):
    """Base class for failures raised by the switchboard core."""


class SpawnFailure(SwitchboardError):
    """Raised when a bridged process cannot be started."""


class ProtocolFrameError(SwitchboardError):
    """Raised when an inbound bridge frame is malformed or not allowed in the current state."""

    def __init__(self, message: str, *, reason: str = "malformed") -> None:
        super().__init__(message)
        self.reason = reason


class ValidationFailure(SwitchboardError):
    """Raised when a state write or configuration document is rejected."""


class StateValidationError(ValidationFailure):
    def __init__(self, server_name: str, message: str) -> None:
        super().__init__(f"Invalid state for '{server_name}': {message}")
        self.server_name = server_name


class ConfigValidationError(ValidationFailure):
    def __init__(self, message: str, *, errors: Sequence[object] = ()) -> None:
        super().__init__(message)
        self.errors = list(errors)


class PersistenceFailure(SwitchboardError):
    """Raised when a snapshot cannot be written or read back."""


class MigrationGap(SwitchboardError):
    """Raised when no migration covers part of a requested version delta."""

    def __init__(self, versions: Sequence[str], *, direction: str) -> None:
        joined = ", ".join(versions)
        super().__init__(f"No {direction} migration available for version(s): {joined}")
        self.versions = tuple(versions)
        self.direction = direction


class InvalidTransitionError(SwitchboardError):
    def __init__(self, server_name: str, current: str, target: str) -> None:
        super().__init__(f"Backend '{server_name}' cannot move from '{current}' to '{target}'")
        self.server_name = server_name
        self.current = current
        self.target = target


class ErrorType(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    NETWORK_ERROR = "network_error"
    COMMAND_NOT_FOUND = "command_not_found"
    PACKAGE_NOT_FOUND = "package_not_found"
    PERMISSION_DENIED = "permission_denied"
    INVALID_CONFIG = "invalid_config"
    AUTHENTICATION_FAILED = "authentication_failed"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class ErrorClassification:
    error_type: ErrorType
    retryable: bool


_RETRYABLE = frozenset({ErrorType.TIMEOUT, ErrorType.CONNECTION_REFUSED, ErrorType.NETWORK_ERROR})

# First match wins; order matters for messages that mention several symptoms.
_PATTERNS: tuple[tuple[re.Pattern[str], ErrorType], ...] = (
    (re.compile(r"timed? ?out|timeout", re.IGNORECASE), ErrorType.TIMEOUT),
    (re.compile(r"econnrefused|connection refused", re.IGNORECASE), ErrorType.CONNECTION_REFUSED),
    (re.compile(r"enotfound|econnreset|network|socket hang up", re.IGNORECASE), ErrorType.NETWORK_ERROR),
    (re.compile(r"404|package not found|not in (the )?npm registry", re.IGNORECASE), ErrorType.PACKAGE_NOT_FOUND),
    (re.compile(r"enoent|command not found|no such file", re.IGNORECASE), ErrorType.COMMAND_NOT_FOUND),
    (re.compile(r"eacces|permission denied|operation not permitted", re.IGNORECASE), ErrorType.PERMISSION_DENIED),
    (re.compile(r"401|403|unauthori[sz]ed|authentication|invalid token", re.IGNORECASE), ErrorType.AUTHENTICATION_FAILED),
    (re.compile(r"invalid config|configuration|missing required", re.IGNORECASE), ErrorType.INVALID_CONFIG),
)


def classify_error(message: str | BaseException) -> ErrorClassification:
    """Map a failure message onto a coarse error type used for ``errorType``."""

    if isinstance(message, FileNotFoundError):
        return ErrorClassification(ErrorType.COMMAND_NOT_FOUND, retryable=False)
    if isinstance(message, PermissionError):
        return ErrorClassification(ErrorType.PERMISSION_DENIED, retryable=False)
    if isinstance(message, TimeoutError):
        return ErrorClassification(ErrorType.TIMEOUT, retryable=True)
    text = str(message)
    for pattern, error_type in _PATTERNS:
        if pattern.search(text):
            return ErrorClassification(error_type, retryable=error_type in _RETRYABLE)
    return ErrorClassification(ErrorType.UNKNOWN, retryable=False)


__all__ = [
    "ConfigValidationError",
    "ErrorClassification",
    "ErrorType",
    "InvalidTransitionError",
    "MigrationGap",
    "PersistenceFailure",
    "ProtocolFrameError",
    "SpawnFailure",
    "StateValidationError",
    "SwitchboardError",
    "ValidationFailure",
    "classify_error",
]
