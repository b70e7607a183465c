"""Local entity repository over the key/value primitive.

Each collection lives under one key as JSON. Every overwrite first copies
the previous value to ``<key>_backup_<epochMillis>`` (the newest three are
kept) and a value that no longer parses is recovered from the newest
readable copy.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import string
from typing import Any, Callable, Mapping

from pydantic import BaseModel

from .constants import (
    CATEGORIES_KEY,
    DEVICE_ID_KEY,
    GENERAL_CATEGORY_COLOR,
    GENERAL_CATEGORY_ID,
    GENERAL_CATEGORY_NAME,
    NOTES_KEY,
    ROLLING_BACKUP_INFIX,
    ROLLING_BACKUP_RETENTION,
    SETTINGS_KEY,
)
from .errors import NotFoundError, ValidationError
from .models import Category, Note, Settings
from .sanitizer import sanitize_category, sanitize_note, sanitize_settings
from .stores import KeyValueStore
from .timestamps import epoch_millis, utc_timestamp

LOGGER = logging.getLogger(__name__)

_DEVICE_ALPHABET = string.ascii_lowercase + string.digits


def _to_field_names(model: type[BaseModel], changes: Mapping[str, Any]) -> dict[str, Any]:
    """Key ``changes`` by model field name, accepting any wire alias."""

    lookup: dict[str, str] = {}
    for name, info in model.model_fields.items():
        lookup[name] = name
        for alias in (info.alias, info.serialization_alias):
            if alias:
                lookup[alias] = name
        for choice in getattr(info.validation_alias, "choices", None) or ():
            if isinstance(choice, str):
                lookup[choice] = name
    return {lookup.get(key, key): value for key, value in changes.items()}


class LocalRepository:
    """Reads and writes notes, categories and settings."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], int] = epoch_millis,
        rolling_retention: int = ROLLING_BACKUP_RETENTION,
    ) -> None:
        self.store = store
        self._clock = clock
        self._rolling_retention = rolling_retention

    # Raw persistence -------------------------------------------------

    async def rolling_keys(self, key: str) -> list[str]:
        """Rolling copies of ``key``, oldest first."""

        pattern = re.compile(rf"^{re.escape(key)}{ROLLING_BACKUP_INFIX}(\d+)$")
        stamped = []
        for item in await self.store.list_keys(f"{key}{ROLLING_BACKUP_INFIX}"):
            match = pattern.match(item)
            if match:
                stamped.append((int(match.group(1)), item))
        return [item for _, item in sorted(stamped)]

    async def _recover(self, key: str) -> Any:
        for candidate in reversed(await self.rolling_keys(key)):
            raw = await self.store.get(candidate)
            if raw is None:
                continue
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                continue
            await self.store.set(key, raw)
            LOGGER.warning(
                "repository.recovered",
                extra={"extra_payload": {"key": key, "source": candidate}},
            )
            return parsed
        LOGGER.error("repository.unrecoverable", extra={"extra_payload": {"key": key}})
        return None

    async def load_raw(self, key: str) -> Any:
        """Return the parsed JSON under ``key``, recovering corrupt values."""

        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("repository.corrupt_value", extra={"extra_payload": {"key": key}})
            return await self._recover(key)

    async def save_raw(self, key: str, payload: Any) -> None:
        previous = await self.store.get(key)
        if previous is not None:
            await self.store.set(f"{key}{ROLLING_BACKUP_INFIX}{self._clock()}", previous)
            rolling = await self.rolling_keys(key)
            for stale in rolling[: -self._rolling_retention]:
                await self.store.remove(stale)
        await self.store.set(key, json.dumps(payload, ensure_ascii=False))

    # Collections -----------------------------------------------------

    async def _load_list(self, key: str, sanitize: Callable[[Any], Any]) -> list[Any]:
        raw = await self.load_raw(key)
        if not isinstance(raw, list):
            return []
        items = []
        for index, item in enumerate(raw):
            try:
                items.append(sanitize(item))
            except ValidationError as exc:
                LOGGER.warning(
                    "repository.skipped_invalid",
                    extra={"extra_payload": {"key": key, "index": index, "error": exc.message}},
                )
        return items

    async def load_notes(self) -> list[Note]:
        return await self._load_list(NOTES_KEY, sanitize_note)

    async def load_categories(self) -> list[Category]:
        return await self._load_list(CATEGORIES_KEY, sanitize_category)

    async def load_settings(self) -> Settings:
        return sanitize_settings(await self.load_raw(SETTINGS_KEY))

    async def save_notes(self, notes: list[Note]) -> None:
        await self.save_raw(NOTES_KEY, [note.to_wire() for note in notes])

    async def save_categories(self, categories: list[Category]) -> None:
        await self.save_raw(CATEGORIES_KEY, [category.to_wire() for category in categories])

    async def save_settings(self, settings: Settings) -> None:
        await self.save_raw(SETTINGS_KEY, settings.to_wire())

    async def initialize(self) -> None:
        """Seed the general category and default settings, back-fill labels."""

        categories = await self.load_categories()
        if not any(category.id == GENERAL_CATEGORY_ID for category in categories):
            categories.insert(0, general_category())
            await self.save_categories(categories)
            LOGGER.info("repository.seeded_general")

        if await self.load_raw(SETTINGS_KEY) is None:
            await self.save_settings(Settings())

        raw_notes = await self.load_raw(NOTES_KEY)
        if raw_notes is None:
            await self.save_raw(NOTES_KEY, [])
        elif isinstance(raw_notes, list) and any(
            isinstance(item, Mapping) and not item.get("label") for item in raw_notes
        ):
            notes = await self.load_notes()
            await self.save_notes(notes)
            LOGGER.info("repository.labels_backfilled", extra={"extra_payload": {"notes": len(notes)}})

    # Notes -----------------------------------------------------------

    async def add_note(self, partial: Any) -> Note:
        note = sanitize_note(partial)
        notes = await self.load_notes()
        if any(existing.id == note.id for existing in notes):
            raise ValidationError(f"Note {note.id!r} already exists.", details={"id": note.id})
        await self._require_category(note.category_id)
        notes.append(note)
        await self.save_notes(notes)
        return note

    async def update_note(self, note_id: str, changes: Mapping[str, Any]) -> Note:
        notes = await self.load_notes()
        for index, existing in enumerate(notes):
            if existing.id == note_id:
                break
        else:
            raise NotFoundError(f"Note {note_id!r} does not exist.", details={"id": note_id})
        note = sanitize_note(
            {
                **existing.model_dump(),
                **_to_field_names(Note, changes),
                "id": note_id,
                "updated_at": utc_timestamp(),
            }
        )
        await self._require_category(note.category_id)
        notes[index] = note
        await self.save_notes(notes)
        return note

    async def delete_note(self, note_id: str) -> None:
        notes = await self.load_notes()
        remaining = [note for note in notes if note.id != note_id]
        if len(remaining) == len(notes):
            raise NotFoundError(f"Note {note_id!r} does not exist.", details={"id": note_id})
        await self.save_notes(remaining)

    # Categories ------------------------------------------------------

    async def _require_category(self, category_id: str) -> None:
        categories = await self.load_categories()
        if not any(category.id == category_id for category in categories):
            raise ValidationError(
                f"Category {category_id!r} does not exist.",
                details={"field": "categoryId", "categoryId": category_id},
            )

    @staticmethod
    def _ensure_unique_name(categories: list[Category], candidate: Category) -> None:
        folded = candidate.name.casefold()
        for category in categories:
            if category.id != candidate.id and category.name.casefold() == folded:
                raise ValidationError(
                    f"A category named {candidate.name!r} already exists.",
                    details={"field": "name", "id": category.id},
                )

    async def add_category(self, partial: Any) -> Category:
        category = sanitize_category(partial)
        categories = await self.load_categories()
        if any(existing.id == category.id for existing in categories):
            raise ValidationError(f"Category {category.id!r} already exists.", details={"id": category.id})
        self._ensure_unique_name(categories, category)
        categories.append(category)
        await self.save_categories(categories)
        return category

    async def update_category(self, category_id: str, changes: Mapping[str, Any]) -> Category:
        categories = await self.load_categories()
        for index, existing in enumerate(categories):
            if existing.id == category_id:
                break
        else:
            raise NotFoundError(f"Category {category_id!r} does not exist.", details={"id": category_id})
        category = sanitize_category(
            {**existing.model_dump(), **_to_field_names(Category, changes), "id": category_id}
        )
        self._ensure_unique_name(categories, category)
        categories[index] = category
        await self.save_categories(categories)
        return category

    async def delete_category(self, category_id: str) -> int:
        """Delete ``category_id`` and move its notes to ``general``; returns the moved count."""

        if category_id == GENERAL_CATEGORY_ID:
            raise ValidationError(
                "The general category cannot be deleted.",
                details={"id": category_id},
            )
        categories = await self.load_categories()
        remaining = [category for category in categories if category.id != category_id]
        if len(remaining) == len(categories):
            raise NotFoundError(f"Category {category_id!r} does not exist.", details={"id": category_id})

        notes = await self.load_notes()
        moved = 0
        for index, note in enumerate(notes):
            if note.category_id == category_id:
                notes[index] = note.model_copy(update={"category_id": GENERAL_CATEGORY_ID})
                moved += 1
        if moved:
            await self.save_notes(notes)
        await self.save_categories(remaining)

        settings = await self.load_settings()
        if settings.default_category_id == category_id:
            await self.save_settings(settings.model_copy(update={"default_category_id": GENERAL_CATEGORY_ID}))
        return moved

    # Device ----------------------------------------------------------

    async def device_id(self) -> str:
        """Return the persistent id of this installation, creating it once."""

        existing = await self.store.get(DEVICE_ID_KEY)
        if existing:
            return existing
        suffix = "".join(secrets.choice(_DEVICE_ALPHABET) for _ in range(9))
        device_id = f"device_{self._clock()}_{suffix}"
        await self.store.set(DEVICE_ID_KEY, device_id)
        return device_id


def general_category() -> Category:
    return Category(
        id=GENERAL_CATEGORY_ID,
        name=GENERAL_CATEGORY_NAME,
        color=GENERAL_CATEGORY_COLOR,
        created_at=utc_timestamp(),
    )


__all__ = ["LocalRepository", "general_category"]
