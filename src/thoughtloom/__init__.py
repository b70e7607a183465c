"""Thoughtloom backup and restore core.

Local notes, categories and settings are snapshotted to a remote key/value
container and restored from it with validation before any local write.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .availability import RemoteConfig, RemoteHandle, configure, connect
from .backup_service import BackupService
from .classifier import ClassifiedError, ErrorContext, ErrorKind, classify
from .config import ServiceSettings
from .errors import (
    AvailabilityError,
    CircuitOpenError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    ThoughtloomError,
    ValidationError,
)

__all__ = [
    "AvailabilityError",
    "BackupService",
    "CircuitOpenError",
    "ClassifiedError",
    "ErrorContext",
    "ErrorKind",
    "IntegrityError",
    "NetworkError",
    "NotFoundError",
    "RemoteConfig",
    "RemoteHandle",
    "ServiceSettings",
    "ThoughtloomError",
    "ValidationError",
    "__version__",
    "classify",
    "configure",
    "connect",
]
