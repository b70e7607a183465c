"""Models for portable snapshots and their catalog records."""

from __future__ import annotations

from pydantic import AliasChoices, Field

from .entities import Category, Note, Settings, WireModel


class DeviceInfo(WireModel):
    """Describes the device a snapshot was taken on."""

    platform: str
    version: str
    device_id: str


class DataSummary(WireModel):
    """Counts and size of a snapshot's payload."""

    notes_count: int = Field(ge=0)
    categories_count: int = Field(ge=0)
    has_settings: bool = True
    total_size: int = Field(default=0, ge=0)


class SnapshotMetadata(WireModel):
    format_version: str = Field(
        validation_alias=AliasChoices("formatVersion", "version", "format_version"),
        serialization_alias="formatVersion",
    )
    created_at: str
    device_info: DeviceInfo
    data_summary: DataSummary


class Snapshot(WireModel):
    """A complete, immutable copy of the local entities."""

    metadata: SnapshotMetadata
    notes: tuple[Note, ...] = ()
    categories: tuple[Category, ...] = ()
    settings: Settings = Field(default_factory=Settings)


class BackupRecord(WireModel):
    """Catalog entry describing a stored snapshot without its body."""

    key: str
    created_at: str
    device_descriptor: DeviceInfo
    size_bytes: int = Field(ge=0)
    summary: DataSummary
    format_version: str


__all__ = [
    "BackupRecord",
    "DataSummary",
    "DeviceInfo",
    "Snapshot",
    "SnapshotMetadata",
]
