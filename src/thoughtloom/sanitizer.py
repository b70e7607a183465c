"""Normalisation of single entities before they enter a snapshot or the local store.

Every free-text field has control characters removed, whitespace collapsed
and its length capped. Required fields that end up empty raise
:class:`~thoughtloom.errors.ValidationError`; preference fields fall back to
their defaults instead. Sanitizing an already sanitized entity returns an
equal entity.
"""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from typing import Any, Mapping

from pydantic import BaseModel

from .constants import (
    AUDIO_QUALITIES,
    DEFAULT_AUDIO_QUALITY,
    DEFAULT_THEME_MODE,
    GENERAL_CATEGORY_ID,
    LABEL_PREVIEW_LENGTH,
    MAX_TEXT_LENGTH,
    NOTE_TYPES,
    THEME_MODES,
)
from .errors import ValidationError
from .models import Category, Note, Settings
from .timestamps import canonical_timestamp, utc_timestamp

LOGGER = logging.getLogger(__name__)

HEX_COLOR_RE = re.compile(r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$")

_LINE_BREAKS_RE = re.compile(r"[\t\n\r\f\v]")
_WHITESPACE_RE = re.compile(r"\s+")
_HORIZONTAL_WHITESPACE_RE = re.compile(r"[^\S\n]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def _strip_controls(value: str, *, keep: str = "") -> str:
    return "".join(
        char for char in value if char in keep or unicodedata.category(char) != "Cc"
    )


def _coerce_text(value: Any, *, entity: str, field: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(
            f"{entity} field '{field}' must be a string.",
            details={"entity": entity, "field": field},
        )
    if isinstance(value, (int, float)):
        return str(value)
    if not isinstance(value, str):
        raise ValidationError(
            f"{entity} field '{field}' must be a string.",
            details={"entity": entity, "field": field},
        )
    return value


def clean_line(value: str) -> str:
    """Collapse ``value`` onto a single trimmed line."""

    text = _LINE_BREAKS_RE.sub(" ", value)
    text = _strip_controls(text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text[:MAX_TEXT_LENGTH].rstrip()


def clean_multiline(value: str) -> str:
    """Normalise free text while keeping paragraph breaks."""

    text = value.replace("\r\n", "\n").replace("\r", "\n")
    text = _strip_controls(text, keep="\n\t")
    lines = [_HORIZONTAL_WHITESPACE_RE.sub(" ", line).strip() for line in text.split("\n")]
    text = _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()
    return text[:MAX_TEXT_LENGTH].rstrip()


def _as_mapping(partial: Any, *, entity: str) -> Mapping[str, Any]:
    if isinstance(partial, BaseModel):
        return partial.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(partial, Mapping):
        return partial
    raise ValidationError(
        f"{entity} must be an object.",
        details={"entity": entity, "received": type(partial).__name__},
    )


def _first(data: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = data.get(name)
        if value is not None:
            return value
    return None


def _line(data: Mapping[str, Any], *names: str, entity: str) -> str:
    raw = _coerce_text(_first(data, *names), entity=entity, field=names[0])
    return clean_line(raw) if raw is not None else ""


def _required_line(data: Mapping[str, Any], *names: str, entity: str) -> str:
    value = _line(data, *names, entity=entity)
    if not value:
        raise ValidationError(
            f"{entity} is missing required field '{names[0]}'.",
            details={"entity": entity, "field": names[0], "id": data.get("id")},
        )
    return value


def _timestamp(data: Mapping[str, Any], *names: str, entity: str, default: str) -> str:
    raw = _first(data, *names)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        return canonical_timestamp(raw)
    except ValueError as exc:
        raise ValidationError(
            f"{entity} field '{names[0]}' is not an ISO-8601 timestamp.",
            details={"entity": entity, "field": names[0], "id": data.get("id")},
        ) from exc


def _duration(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    duration = float(value)
    if not math.isfinite(duration) or duration < 0:
        return None
    return duration


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "Unknown"
    minutes, remainder = divmod(int(round(seconds)), 60)
    return f"{minutes}:{remainder:02d}"


def derive_label(note_type: str, content: str, duration: float | None) -> str:
    """Build the display label used when a note has none."""

    if note_type == "voice":
        return f"Voice Note ({format_duration(duration)})"
    preview = clean_line(content)
    if len(preview) > LABEL_PREVIEW_LENGTH:
        preview = f"{preview[:LABEL_PREVIEW_LENGTH]}..."
    return preview or "Untitled Note"


def sanitize_note(partial: Any) -> Note:
    """Return a normalised :class:`Note` or raise ``ValidationError``."""

    data = _as_mapping(partial, entity="note")
    note_id = _required_line(data, "id", entity="note")

    note_type = _line(data, "type", entity="note").lower()
    if note_type not in NOTE_TYPES:
        raise ValidationError(
            "note field 'type' must be 'text' or 'voice'.",
            details={"entity": "note", "field": "type", "id": note_id},
        )

    raw_content = _coerce_text(data.get("content"), entity="note", field="content")
    content = clean_multiline(raw_content) if raw_content is not None else ""
    if not content:
        raise ValidationError(
            "note is missing required field 'content'.",
            details={"entity": "note", "field": "content", "id": note_id},
        )

    audio_ref: str | None = None
    duration: float | None = None
    if note_type == "voice":
        audio_ref = _line(data, "audioPath", "audioRef", "audio_ref", entity="note") or None
        duration = _duration(
            _first(data, "audioDuration", "audioDurationSeconds", "audio_duration_seconds")
        )

    label = _line(data, "label", entity="note") or derive_label(note_type, content, duration)
    created_at = _timestamp(data, "createdAt", "created_at", entity="note", default=utc_timestamp())
    updated_at = _timestamp(data, "updatedAt", "updated_at", entity="note", default=created_at)

    return Note(
        id=note_id,
        label=label,
        type=note_type,  # type: ignore[arg-type]
        content=content,
        audio_ref=audio_ref,
        audio_duration_seconds=duration,
        category_id=_line(data, "categoryId", "category_id", entity="note") or GENERAL_CATEGORY_ID,
        created_at=created_at,
        updated_at=updated_at,
        is_favorite=_first(data, "isFavorite", "is_favorite") is True,
    )


def sanitize_category(partial: Any) -> Category:
    """Return a normalised :class:`Category` or raise ``ValidationError``."""

    data = _as_mapping(partial, entity="category")
    category_id = _required_line(data, "id", entity="category")
    name = _required_line(data, "name", entity="category")
    color = _required_line(data, "color", entity="category")
    if not HEX_COLOR_RE.match(color):
        raise ValidationError(
            "category field 'color' must be a 3- or 6-digit hex colour.",
            details={"entity": "category", "field": "color", "id": category_id},
        )
    return Category(
        id=category_id,
        name=name,
        color=color,
        created_at=_timestamp(
            data, "createdAt", "created_at", entity="category", default=utc_timestamp()
        ),
    )


def _choice(value: Any, choices: tuple[str, ...], default: str, *, field: str) -> str:
    candidate = value.strip().lower() if isinstance(value, str) else None
    if candidate in choices:
        return candidate
    if value is not None:
        LOGGER.debug(
            "sanitizer.setting_defaulted",
            extra={"extra_payload": {"field": field, "default": default}},
        )
    return default


def sanitize_settings(partial: Any = None) -> Settings:
    """Return :class:`Settings`, replacing missing or invalid fields with defaults."""

    if isinstance(partial, BaseModel):
        data: Mapping[str, Any] = partial.model_dump(mode="json", by_alias=True)
    elif isinstance(partial, Mapping):
        data = partial
    else:
        data = {}

    raw_default = _first(data, "defaultCategoryId", "default_category_id")
    default_category = clean_line(raw_default) if isinstance(raw_default, str) else ""

    return Settings(
        default_category_id=default_category or GENERAL_CATEGORY_ID,
        audio_quality=_choice(  # type: ignore[arg-type]
            _first(data, "audioQuality", "audio_quality"),
            AUDIO_QUALITIES,
            DEFAULT_AUDIO_QUALITY,
            field="audioQuality",
        ),
        theme_mode=_choice(  # type: ignore[arg-type]
            _first(data, "themeMode", "theme_mode"),
            THEME_MODES,
            DEFAULT_THEME_MODE,
            field="themeMode",
        ),
    )


__all__ = [
    "HEX_COLOR_RE",
    "clean_line",
    "clean_multiline",
    "derive_label",
    "format_duration",
    "sanitize_category",
    "sanitize_note",
    "sanitize_settings",
]
