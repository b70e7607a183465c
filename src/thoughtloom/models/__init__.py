"""Pydantic models shared across the backup core."""

from __future__ import annotations

from .entities import AudioQuality, Category, Note, NoteType, Settings, ThemeMode, WireModel
from .errors import ErrorResponse
from .snapshot import BackupRecord, DataSummary, DeviceInfo, Snapshot, SnapshotMetadata

__all__ = [
    "AudioQuality",
    "BackupRecord",
    "Category",
    "DataSummary",
    "DeviceInfo",
    "ErrorResponse",
    "Note",
    "NoteType",
    "Settings",
    "Snapshot",
    "SnapshotMetadata",
    "ThemeMode",
    "WireModel",
]
