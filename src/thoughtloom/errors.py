"""Central error definitions for the backup and restore core."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator

from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int
    retryable: bool = False


ERROR_DEFINITIONS: Dict[str, ErrorDefinition] = {
    "VALIDATION": ErrorDefinition("VALIDATION", "Entity failed validation.", status.HTTP_400_BAD_REQUEST),
    "INTEGRITY": ErrorDefinition("INTEGRITY", "Snapshot failed integrity validation.", status.HTTP_409_CONFLICT),
    "AVAILABILITY": ErrorDefinition("AVAILABILITY", "Remote backup storage is unavailable.", status.HTTP_503_SERVICE_UNAVAILABLE, retryable=True),
    "CIRCUIT_OPEN": ErrorDefinition("CIRCUIT_OPEN", "Remote backup storage is temporarily disabled after repeated failures.", status.HTTP_503_SERVICE_UNAVAILABLE, retryable=True),
    "NETWORK": ErrorDefinition("NETWORK", "Remote backup storage could not be reached.", status.HTTP_502_BAD_GATEWAY, retryable=True),
    "NOT_FOUND": ErrorDefinition("NOT_FOUND", "Backup not found.", status.HTTP_404_NOT_FOUND),
}

DEFAULT_ERROR_DEFINITION = ErrorDefinition(
    "UNEXPECTED_ERROR",
    "Unexpected error occurred.",
    status.HTTP_500_INTERNAL_SERVER_ERROR,
)


def error_definition(code: str) -> ErrorDefinition:
    return ERROR_DEFINITIONS.get(code, DEFAULT_ERROR_DEFINITION)


class ThoughtloomError(Exception):
    """Base class for every classified failure raised by the core."""

    code: str = "UNEXPECTED_ERROR"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        operation: str | None = None,
    ) -> None:
        definition = error_definition(self.code)
        self.message = message or definition.message
        super().__init__(self.message)
        self.details = dict(details or {})
        self.operation = operation

    @property
    def status_code(self) -> int:
        return error_definition(self.code).status_code

    @property
    def retryable(self) -> bool:
        return error_definition(self.code).retryable

    def with_operation(self, operation: str) -> "ThoughtloomError":
        """Attach ``operation`` unless an inner call site already did."""

        if self.operation is None:
            self.operation = operation
        return self


class ValidationError(ThoughtloomError):
    """A single entity is missing required fields or has wrong types."""

    code = "VALIDATION"


class IntegrityError(ThoughtloomError):
    """A snapshot is internally inconsistent or from an unsupported version."""

    code = "INTEGRITY"


class AvailabilityError(ThoughtloomError):
    """The remote backend cannot be used until the user remediates."""

    code = "AVAILABILITY"

    def __init__(
        self,
        message: str | None = None,
        *,
        reason: str = "unknown",
        details: dict[str, Any] | None = None,
        operation: str | None = None,
    ) -> None:
        merged = dict(details or {})
        merged.setdefault("reason", reason)
        super().__init__(message, details=merged, operation=operation)
        self.reason = reason


class CircuitOpenError(AvailabilityError):
    """Raised when the remote circuit breaker refuses new work."""

    code = "CIRCUIT_OPEN"


class NetworkError(ThoughtloomError):
    """Transient I/O failure talking to the remote backend."""

    code = "NETWORK"


class NotFoundError(ThoughtloomError):
    """The requested backup key does not exist."""

    code = "NOT_FOUND"


@contextmanager
def translate_io_errors(operation: str) -> Iterator[None]:
    """Re-raise ``OSError`` (connection failures and timeouts included) as :class:`NetworkError`."""

    try:
        yield
    except OSError as exc:
        raise NetworkError(
            str(exc) or None,
            details={"error": type(exc).__name__},
            operation=operation,
        ) from exc


__all__ = [
    "AvailabilityError",
    "CircuitOpenError",
    "DEFAULT_ERROR_DEFINITION",
    "ERROR_DEFINITIONS",
    "ErrorDefinition",
    "IntegrityError",
    "NetworkError",
    "NotFoundError",
    "ThoughtloomError",
    "ValidationError",
    "error_definition",
    "translate_io_errors",
]
