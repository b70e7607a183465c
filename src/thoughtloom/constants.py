"""Shared constants for the backup and restore core."""

from __future__ import annotations

from typing import Final

FORMAT_VERSION: Final[str] = "1.0.0"

GENERAL_CATEGORY_ID: Final[str] = "general"
GENERAL_CATEGORY_NAME: Final[str] = "General"
GENERAL_CATEGORY_COLOR: Final[str] = "#6B7280"

MAX_TEXT_LENGTH: Final[int] = 10_000
LABEL_PREVIEW_LENGTH: Final[int] = 50
MAX_AUDIO_DURATION_SECONDS: Final[float] = 4 * 60 * 60

DEFAULT_AUDIO_QUALITY: Final[str] = "medium"
DEFAULT_THEME_MODE: Final[str] = "system"
AUDIO_QUALITIES: Final[tuple[str, ...]] = ("low", "medium", "high")
THEME_MODES: Final[tuple[str, ...]] = ("light", "dark", "system")
NOTE_TYPES: Final[tuple[str, ...]] = ("text", "voice")

# Local store keys.
NOTES_KEY: Final[str] = "notes"
CATEGORIES_KEY: Final[str] = "categories"
SETTINGS_KEY: Final[str] = "settings"
DEVICE_ID_KEY: Final[str] = "device_id"
STAGING_SUFFIX: Final[str] = ".staging"
ROLLING_BACKUP_INFIX: Final[str] = "_backup_"
ROLLING_BACKUP_RETENTION: Final[int] = 3
SAFETY_BACKUP_PREFIX: Final[str] = "safety_backup_"

# Remote keys.
BACKUP_KEY_PREFIX: Final[str] = "backup_"
BACKUP_INDEX_KEY: Final[str] = "backup_list"
BACKUP_META_SUFFIX: Final[str] = ".meta"
PROBE_KEY: Final[str] = "__availability_probe__"

__all__ = [
    "AUDIO_QUALITIES",
    "BACKUP_INDEX_KEY",
    "BACKUP_KEY_PREFIX",
    "BACKUP_META_SUFFIX",
    "CATEGORIES_KEY",
    "DEFAULT_AUDIO_QUALITY",
    "DEFAULT_THEME_MODE",
    "DEVICE_ID_KEY",
    "FORMAT_VERSION",
    "GENERAL_CATEGORY_COLOR",
    "GENERAL_CATEGORY_ID",
    "GENERAL_CATEGORY_NAME",
    "LABEL_PREVIEW_LENGTH",
    "MAX_AUDIO_DURATION_SECONDS",
    "MAX_TEXT_LENGTH",
    "NOTES_KEY",
    "NOTE_TYPES",
    "PROBE_KEY",
    "ROLLING_BACKUP_INFIX",
    "ROLLING_BACKUP_RETENTION",
    "SAFETY_BACKUP_PREFIX",
    "SETTINGS_KEY",
    "STAGING_SUFFIX",
    "THEME_MODES",
]
