"""Snapshot construction, serialisation and parsing."""

from __future__ import annotations

import json
import logging
import platform as platform_module
from typing import Any, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError

from .constants import FORMAT_VERSION
from .errors import IntegrityError, ValidationError
from .integrity import is_supported_version, parse_version
from .models import Category, DataSummary, DeviceInfo, Note, Settings, Snapshot, SnapshotMetadata
from .sanitizer import sanitize_category, sanitize_note, sanitize_settings
from .timestamps import canonical_timestamp, utc_timestamp

LOGGER = logging.getLogger(__name__)


def describe_device(device_id: str, *, app_version: str | None = None) -> DeviceInfo:
    """Return the descriptor of the host this process runs on."""

    return DeviceInfo(
        platform=platform_module.system().lower() or "unknown",
        version=app_version or platform_module.release() or "unknown",
        device_id=device_id,
    )


def _compact(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def payload_size(notes: Iterable[Note], categories: Iterable[Category], settings: Settings) -> int:
    """UTF-8 byte size of the three collections serialised together."""

    payload = {
        "notes": [note.to_wire() for note in notes],
        "categories": [category.to_wire() for category in categories],
        "settings": settings.to_wire(),
    }
    return len(_compact(payload).encode("utf-8"))


def _sanitize_all(kind: str, items: Iterable[Any], sanitize: Any) -> list[Any]:
    sanitized = []
    for index, item in enumerate(items):
        try:
            sanitized.append(sanitize(item))
        except ValidationError as exc:
            raise ValidationError(
                f"{kind} at index {index} failed sanitization: {exc.message}",
                details={**exc.details, "index": index},
            ) from exc
    return sanitized


def build_snapshot(
    notes: Iterable[Any],
    categories: Iterable[Any],
    settings: Any,
    device_info: DeviceInfo,
    *,
    created_at: str | None = None,
) -> Snapshot:
    """Sanitize every entity and assemble a new :class:`Snapshot`.

    Nothing is returned when any entity fails sanitization; the raised
    ``ValidationError`` names the offending entity.
    """

    clean_categories = _sanitize_all("category", categories, sanitize_category)
    clean_notes = _sanitize_all("note", notes, sanitize_note)
    clean_settings = sanitize_settings(settings)

    metadata = SnapshotMetadata(
        format_version=FORMAT_VERSION,
        created_at=created_at or utc_timestamp(),
        device_info=device_info,
        data_summary=DataSummary(
            notes_count=len(clean_notes),
            categories_count=len(clean_categories),
            has_settings=True,
            total_size=payload_size(clean_notes, clean_categories, clean_settings),
        ),
    )
    snapshot = Snapshot(
        metadata=metadata,
        notes=tuple(clean_notes),
        categories=tuple(clean_categories),
        settings=clean_settings,
    )
    LOGGER.info(
        "snapshot.built",
        extra={
            "extra_payload": {
                "notes": len(clean_notes),
                "categories": len(clean_categories),
                "total_size": metadata.data_summary.total_size,
            }
        },
    )
    return snapshot


def serialize_snapshot(snapshot: Snapshot) -> str:
    """Render ``snapshot`` in its compact JSON wire format."""

    return _compact(snapshot.to_wire())


def _integrity(message: str, **details: Any) -> IntegrityError:
    return IntegrityError(message, details={"violation": "shape", **details})


def _load_entities(kind: str, raw: Any, sanitize: Any) -> list[Any]:
    if not isinstance(raw, list):
        raise _integrity(f"Snapshot field '{kind}' must be a list.", field=kind)
    try:
        return _sanitize_all(kind, raw, sanitize)
    except ValidationError as exc:
        raise IntegrityError(
            f"Snapshot contains an invalid {kind} entry: {exc.message}",
            details={"violation": "entity", **exc.details},
        ) from exc


def load_snapshot(payload: Any) -> Snapshot:
    """Turn a deserialised snapshot into a sanitized :class:`Snapshot`.

    Raises ``IntegrityError`` for malformed shapes, unsupported format
    versions and entities that cannot be sanitized. Cross-entity checks are
    left to :func:`thoughtloom.integrity.validate_snapshot`.
    """

    if not isinstance(payload, Mapping):
        raise _integrity("Snapshot must be a JSON object.")
    raw_metadata = payload.get("metadata")
    if not isinstance(raw_metadata, Mapping):
        raise _integrity("Snapshot metadata is missing.", field="metadata")

    version = raw_metadata.get("formatVersion", raw_metadata.get("version"))
    if parse_version(version) is None:
        raise IntegrityError(
            f"Snapshot format version {version!r} cannot be parsed.",
            details={"violation": "format_version", "formatVersion": version},
        )
    if not is_supported_version(version):
        raise IntegrityError(
            f"Snapshot format version {version} is newer than the supported {FORMAT_VERSION}.",
            details={"violation": "format_version", "formatVersion": version},
        )

    categories = _load_entities("categories", payload.get("categories"), sanitize_category)
    notes = _load_entities("notes", payload.get("notes"), sanitize_note)
    settings = sanitize_settings(payload.get("settings"))

    metadata_payload = dict(raw_metadata)
    try:
        metadata_payload["createdAt"] = canonical_timestamp(raw_metadata.get("createdAt"))
    except ValueError as exc:
        raise _integrity("Snapshot createdAt is not an ISO-8601 timestamp.", field="createdAt") from exc
    try:
        metadata = SnapshotMetadata.model_validate(metadata_payload)
    except PydanticValidationError as exc:
        raise _integrity(
            "Snapshot metadata is malformed.", field="metadata", errors=exc.error_count()
        ) from exc

    return Snapshot(
        metadata=metadata,
        notes=tuple(notes),
        categories=tuple(categories),
        settings=settings,
    )


def parse_snapshot(text: str) -> Snapshot:
    """Parse serialised snapshot text; see :func:`load_snapshot`."""

    if not text or not text.strip():
        raise _integrity("Snapshot body is empty.")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise _integrity("Snapshot body is not valid JSON.", position=exc.pos) from exc
    return load_snapshot(payload)


__all__ = [
    "build_snapshot",
    "describe_device",
    "load_snapshot",
    "parse_snapshot",
    "payload_size",
    "serialize_snapshot",
]
