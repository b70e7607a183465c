"""Maps raised failures onto a small taxonomy with remediation hints."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from .errors import (
    AvailabilityError,
    CircuitOpenError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    ThoughtloomError,
    ValidationError,
    error_definition,
)
from .models import WireModel


class ErrorKind(str, Enum):
    VALIDATION = "Validation"
    INTEGRITY = "Integrity"
    AVAILABILITY = "Availability"
    NETWORK = "Network"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ErrorContext:
    operation: str
    component: str | None = None
    screen: str | None = None


class ClassifiedError(WireModel):
    """Presentation-ready description of a failure."""

    kind: ErrorKind
    code: str
    title: str
    message: str
    remediation: str | None = None
    retryable: bool = False
    operation: str | None = None
    component: str | None = None
    screen: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class _Rule:
    error_type: type[BaseException]
    kind: ErrorKind
    title: str
    remediation: str


# Subclasses precede their bases.
_RULES: tuple[_Rule, ...] = (
    _Rule(
        NotFoundError,
        ErrorKind.VALIDATION,
        "Backup not found",
        "Refresh the backup list and pick a backup that still exists.",
    ),
    _Rule(
        ValidationError,
        ErrorKind.VALIDATION,
        "Invalid data",
        "Correct the reported field and try again.",
    ),
    _Rule(
        PydanticValidationError,
        ErrorKind.VALIDATION,
        "Invalid data",
        "Correct the reported field and try again.",
    ),
    _Rule(
        IntegrityError,
        ErrorKind.INTEGRITY,
        "Backup cannot be restored",
        "The backup is damaged or was made by a newer version; choose another backup or update the app.",
    ),
    _Rule(
        CircuitOpenError,
        ErrorKind.AVAILABILITY,
        "Backup storage paused",
        "Remote access was paused after repeated failures; wait a moment and try again.",
    ),
    _Rule(
        AvailabilityError,
        ErrorKind.AVAILABILITY,
        "Backup storage unavailable",
        "Check your account and try again.",
    ),
    _Rule(
        NetworkError,
        ErrorKind.NETWORK,
        "Connection problem",
        "Check your connection and retry the same operation.",
    ),
    _Rule(
        OSError,
        ErrorKind.NETWORK,
        "Connection problem",
        "Check your connection and retry the same operation.",
    ),
)

_AVAILABILITY_REMEDIATION: dict[str, str] = {
    "noAccount": "Sign in to your storage account on this device, then try again.",
    "restricted": "Storage access is restricted; review account or device restrictions.",
    "unavailableNetwork": "The storage service could not be reached; check your connection and retry.",
}

_UNKNOWN_TITLE = "Something went wrong"
_UNKNOWN_REMEDIATION = "Try again. If the problem persists, collect diagnostics for support."


def _remediation(rule: _Rule, error: BaseException) -> str:
    if isinstance(error, AvailabilityError) and not isinstance(error, CircuitOpenError):
        return _AVAILABILITY_REMEDIATION.get(error.reason, rule.remediation)
    return rule.remediation


def classify(error: BaseException, context: ErrorContext | None = None) -> ClassifiedError:
    """Describe ``error`` for presentation. Pure; performs no I/O."""

    rule = next((rule for rule in _RULES if isinstance(error, rule.error_type)), None)

    if isinstance(error, ThoughtloomError):
        code, message, retryable = error.code, error.message, error.retryable
        details = dict(error.details)
        operation = error.operation
    else:
        if rule is None:
            definition = error_definition("UNEXPECTED_ERROR")
        elif rule.kind is ErrorKind.NETWORK:
            definition = error_definition("NETWORK")
        else:
            definition = error_definition("VALIDATION")
        code, message, retryable = definition.code, definition.message, definition.retryable
        details = {"error": type(error).__name__} if rule is not None else {}
        operation = None

    if context is not None:
        operation = context.operation or operation

    return ClassifiedError(
        kind=rule.kind if rule else ErrorKind.UNKNOWN,
        code=code,
        title=rule.title if rule else _UNKNOWN_TITLE,
        message=message,
        remediation=_remediation(rule, error) if rule else _UNKNOWN_REMEDIATION,
        retryable=retryable,
        operation=operation,
        component=context.component if context else None,
        screen=context.screen if context else None,
        details=details,
    )


__all__ = ["ClassifiedError", "ErrorContext", "ErrorKind", "classify"]
