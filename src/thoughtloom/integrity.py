"""Structural validation of deserialised entities and whole snapshots."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field

from .constants import (
    AUDIO_QUALITIES,
    FORMAT_VERSION,
    GENERAL_CATEGORY_ID,
    MAX_AUDIO_DURATION_SECONDS,
    NOTE_TYPES,
    THEME_MODES,
)
from .errors import IntegrityError
from .models import Snapshot
from .sanitizer import HEX_COLOR_RE
from .timestamps import is_canonical_timestamp, parse_timestamp

LOGGER = logging.getLogger(__name__)

EntityKind = Literal["note", "category", "settings"]

_VERSION_RE = re.compile(r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?$")


class EntityValidationResult(BaseModel):
    """Outcome of validating a single raw entity."""

    model_config = ConfigDict(extra="ignore")

    kind: EntityKind
    is_ok: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def parse_version(value: object) -> tuple[int, int, int] | None:
    """Parse a ``major[.minor[.patch]]`` string into a comparable tuple."""

    if not isinstance(value, str):
        return None
    match = _VERSION_RE.match(value.strip())
    if match is None:
        return None
    major, minor, patch = (int(part) if part else 0 for part in match.groups())
    return major, minor, patch


def is_supported_version(value: object) -> bool:
    parsed = parse_version(value)
    supported = parse_version(FORMAT_VERSION)
    return parsed is not None and supported is not None and parsed <= supported


def infer_kind(raw: Mapping[str, Any]) -> EntityKind:
    if "type" in raw or "content" in raw:
        return "note"
    if "color" in raw or "name" in raw:
        return "category"
    return "settings"


def _non_empty_string(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _check_timestamp(raw: Mapping[str, Any], field: str, errors: list[str], warnings: list[str]) -> None:
    value = raw.get(field)
    if value is None:
        errors.append(f"Missing timestamp '{field}'.")
    elif parse_timestamp(value) is None:
        errors.append(f"Field '{field}' is not an ISO-8601 timestamp.")
    elif not is_canonical_timestamp(value):
        warnings.append(f"Field '{field}' does not round-trip through parse and format unchanged.")


def _validate_note(raw: Mapping[str, Any], errors: list[str], warnings: list[str]) -> None:
    if not _non_empty_string(raw.get("id")):
        errors.append("Note is missing an id.")
    note_type = raw.get("type")
    if note_type not in NOTE_TYPES:
        errors.append(f"Note type must be one of {', '.join(NOTE_TYPES)}.")
    if not _non_empty_string(raw.get("content")):
        errors.append("Note content is empty.")
    if "categoryId" not in raw:
        warnings.append("Note has no categoryId; it will be filed under the general category.")
    elif not _non_empty_string(raw.get("categoryId")):
        errors.append("Note categoryId must be a non-empty string.")
    if "label" not in raw or not _non_empty_string(raw.get("label")):
        warnings.append("Note has no label; one will be derived.")
    if "isFavorite" in raw and not isinstance(raw["isFavorite"], bool):
        errors.append("Note isFavorite must be a boolean.")
    _check_timestamp(raw, "createdAt", errors, warnings)
    _check_timestamp(raw, "updatedAt", errors, warnings)

    audio_path = raw.get("audioPath", raw.get("audioRef"))
    duration = raw.get("audioDuration", raw.get("audioDurationSeconds"))
    if duration is not None:
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            errors.append("Note audioDuration must be a number.")
        elif not math.isfinite(duration) or not 0 <= duration <= MAX_AUDIO_DURATION_SECONDS:
            warnings.append(
                f"Note audioDuration {duration} is outside 0..{int(MAX_AUDIO_DURATION_SECONDS)} seconds."
            )
    if note_type == "voice" and not audio_path:
        warnings.append("Voice note has no audio reference.")
    if note_type == "text" and (audio_path is not None or duration is not None):
        warnings.append("Text note carries audio fields; they will be dropped.")


def _validate_category(raw: Mapping[str, Any], errors: list[str], warnings: list[str]) -> None:
    if not _non_empty_string(raw.get("id")):
        errors.append("Category is missing an id.")
    if not _non_empty_string(raw.get("name")):
        errors.append("Category name is empty.")
    color = raw.get("color")
    if not isinstance(color, str) or not HEX_COLOR_RE.match(color):
        errors.append("Category color must be a 3- or 6-digit hex colour.")
    _check_timestamp(raw, "createdAt", errors, warnings)


def _validate_settings(raw: Mapping[str, Any], errors: list[str], warnings: list[str]) -> None:
    default_category = raw.get("defaultCategoryId")
    if default_category is not None and not _non_empty_string(default_category):
        warnings.append("Settings defaultCategoryId is invalid; the general category will be used.")
    for field, choices in (("audioQuality", AUDIO_QUALITIES), ("themeMode", THEME_MODES)):
        value = raw.get(field)
        if value is not None and value not in choices:
            warnings.append(f"Settings {field} '{value}' is invalid; the default will be used.")


def validate_entity(raw: object, kind: EntityKind | None = None) -> EntityValidationResult:
    """Check ``raw`` against its required shape without raising."""

    if isinstance(raw, BaseModel):
        raw = raw.model_dump(mode="json", by_alias=True, exclude_none=True)
    if not isinstance(raw, Mapping):
        resolved: EntityKind = kind or "settings"
        return EntityValidationResult(
            kind=resolved,
            is_ok=False,
            errors=[f"Expected an object, received {type(raw).__name__}."],
        )

    resolved = kind or infer_kind(raw)
    errors: list[str] = []
    warnings: list[str] = []
    if resolved == "note":
        _validate_note(raw, errors, warnings)
    elif resolved == "category":
        _validate_category(raw, errors, warnings)
    else:
        _validate_settings(raw, errors, warnings)
    return EntityValidationResult(kind=resolved, is_ok=not errors, errors=errors, warnings=warnings)


def _violation(message: str, violation: str, **details: Any) -> IntegrityError:
    return IntegrityError(message, details={"violation": violation, **details})


def _coerce_snapshot(snapshot: Snapshot | Mapping[str, Any]) -> tuple[Snapshot, list[str]]:
    """Return the snapshot model and the warnings raised by its raw entities.

    A mapping is checked entity by entity, where only errors block, then
    normalised through the sanitizer the same way a stored body is.
    """

    from .snapshots import load_snapshot

    if isinstance(snapshot, Snapshot):
        return snapshot, []
    if not isinstance(snapshot, Mapping):
        raise _violation("Snapshot must be an object.", "shape")
    for field, expected in (("notes", list), ("categories", list), ("metadata", Mapping)):
        if not isinstance(snapshot.get(field), expected):
            raise _violation(f"Snapshot field '{field}' is missing or malformed.", "shape", field=field)

    warnings: list[str] = []
    for kind, field in (("category", "categories"), ("note", "notes")):
        for index, raw in enumerate(snapshot[field]):
            result = validate_entity(raw, kind)  # type: ignore[arg-type]
            if not result.is_ok:
                raise _violation(
                    f"Snapshot {kind} at index {index} is invalid: {result.errors[0]}",
                    "entity",
                    kind=kind,
                    index=index,
                )
            identifier = raw.get("id", index)
            warnings.extend(f"{kind} {identifier}: {warning}" for warning in result.warnings)

    raw_settings = snapshot.get("settings")
    if raw_settings is not None:
        settings_result = validate_entity(raw_settings, "settings")
        warnings.extend(f"settings: {warning}" for warning in settings_result.warnings)

    return load_snapshot(snapshot), warnings


def validate_snapshot(
    snapshot: Snapshot | Mapping[str, Any],
    *,
    allow_duplicate_category_names: bool = False,
) -> list[str]:
    """Raise :class:`IntegrityError` on the first violation in ``snapshot``.

    Field-level checks run on every entity, followed by the cross-entity
    checks: unique ids, unique category names (case-insensitive unless
    ``allow_duplicate_category_names``), summary counts, a supported format
    version, presence of the ``general`` category and resolvable note
    category references. Warnings are logged and returned.
    """

    model, warnings = _coerce_snapshot(snapshot)
    metadata = model.metadata

    if not is_supported_version(metadata.format_version):
        raise _violation(
            f"Snapshot format version {metadata.format_version!r} is not supported "
            f"(newest supported is {FORMAT_VERSION}).",
            "format_version",
            formatVersion=metadata.format_version,
        )
    if parse_timestamp(metadata.created_at) is None:
        raise _violation("Snapshot createdAt is not an ISO-8601 timestamp.", "metadata")

    for kind, entities in (("category", model.categories), ("note", model.notes)):
        for entity in entities:
            result = validate_entity(entity, kind)  # type: ignore[arg-type]
            if not result.is_ok:
                raise _violation(
                    f"Snapshot {kind} {entity.id!r} is invalid: {result.errors[0]}",
                    "entity",
                    kind=kind,
                    id=entity.id,
                )
            warnings.extend(f"{kind} {entity.id}: {warning}" for warning in result.warnings)

    category_ids: set[str] = set()
    category_names: dict[str, str] = {}
    for category in model.categories:
        if category.id in category_ids:
            raise _violation(f"Duplicate category id {category.id!r}.", "duplicate_id", kind="category", id=category.id)
        category_ids.add(category.id)
        folded = category.name.casefold()
        if folded in category_names and not allow_duplicate_category_names:
            raise _violation(
                f"Category name {category.name!r} is used more than once.",
                "duplicate_name",
                ids=[category_names[folded], category.id],
            )
        category_names.setdefault(folded, category.id)

    if GENERAL_CATEGORY_ID not in category_ids:
        raise _violation("Snapshot has no general category.", "missing_general")

    note_ids: set[str] = set()
    for note in model.notes:
        if note.id in note_ids:
            raise _violation(f"Duplicate note id {note.id!r}.", "duplicate_id", kind="note", id=note.id)
        note_ids.add(note.id)
        if note.category_id not in category_ids:
            raise _violation(
                f"Note {note.id!r} references unknown category {note.category_id!r}.",
                "dangling_category",
                noteId=note.id,
                categoryId=note.category_id,
            )

    summary = metadata.data_summary
    if summary.notes_count != len(model.notes) or summary.categories_count != len(model.categories):
        raise _violation(
            "Snapshot summary counts do not match its contents.",
            "summary_mismatch",
            notesCount=summary.notes_count,
            categoriesCount=summary.categories_count,
        )

    settings_result = validate_entity(model.settings, "settings")
    warnings.extend(f"settings: {warning}" for warning in settings_result.warnings)
    if model.settings.default_category_id not in category_ids:
        warnings.append(
            f"settings: default category {model.settings.default_category_id!r} is not in the snapshot."
        )

    warnings = list(dict.fromkeys(warnings))
    if warnings:
        LOGGER.warning(
            "integrity.snapshot_warnings",
            extra={"extra_payload": {"count": len(warnings), "warnings": warnings}},
        )
    return warnings


__all__ = [
    "EntityKind",
    "EntityValidationResult",
    "infer_kind",
    "is_supported_version",
    "parse_version",
    "validate_entity",
    "validate_snapshot",
]
