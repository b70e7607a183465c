import asyncio
import json
from itertools import count

import pytest

from thoughtloom.errors import NotFoundError, ValidationError
from thoughtloom.models import Settings
from thoughtloom.repository import LocalRepository
from thoughtloom.stores import MemoryKeyValueStore

from conftest import make_category, make_note


def _repository(store: MemoryKeyValueStore) -> LocalRepository:
    ticks = count(1_000)
    return LocalRepository(store, clock=lambda: next(ticks))


def test_initialize_seeds_general_category_and_settings(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)

    asyncio.run(repository.initialize())

    categories = asyncio.run(repository.load_categories())
    assert [category.id for category in categories] == ["general"]
    assert asyncio.run(repository.load_settings()) == Settings()
    assert json.loads(local_store.data["notes"]) == []


def test_initialize_backfills_missing_labels(local_store: MemoryKeyValueStore) -> None:
    local_store.data["categories"] = json.dumps([make_category("general", "General")])
    local_store.data["notes"] = json.dumps([make_note("n1", label="", content="Remember the milk")])
    repository = _repository(local_store)

    asyncio.run(repository.initialize())

    stored = json.loads(local_store.data["notes"])
    assert stored[0]["label"] == "Remember the milk"


def test_save_keeps_three_rolling_copies(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)

    async def scenario() -> list[str]:
        for index in range(6):
            await repository.save_raw("notes", [{"generation": index}])
        return await repository.rolling_keys("notes")

    rolling = asyncio.run(scenario())

    assert len(rolling) == 3
    assert json.loads(local_store.data[rolling[-1]]) == [{"generation": 4}]
    assert json.loads(local_store.data["notes"]) == [{"generation": 5}]


def test_corrupt_value_recovers_from_newest_readable_copy(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)
    local_store.data["notes"] = "{truncated"
    local_store.data["notes_backup_10"] = json.dumps([make_note("older")])
    local_store.data["notes_backup_20"] = "also broken"

    notes = asyncio.run(repository.load_notes())

    assert [note.id for note in notes] == ["older"]
    assert local_store.data["notes"] == local_store.data["notes_backup_10"]


def test_load_skips_invalid_entries(local_store: MemoryKeyValueStore) -> None:
    local_store.data["notes"] = json.dumps([make_note("ok"), make_note("bad", content="")])

    notes = asyncio.run(_repository(local_store).load_notes())

    assert [note.id for note in notes] == ["ok"]


def test_note_lifecycle(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)

    async def scenario():
        await repository.initialize()
        created = await repository.add_note(make_note("n1"))
        updated = await repository.update_note("n1", {"isFavorite": True, "content": "Edited"})
        await repository.delete_note("n1")
        return created, updated, await repository.load_notes()

    created, updated, remaining = asyncio.run(scenario())

    assert created.id == "n1"
    assert updated.is_favorite is True
    assert updated.content == "Edited"
    assert updated.created_at == created.created_at
    assert remaining == []


def test_add_note_requires_existing_category(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)
    asyncio.run(repository.initialize())

    with pytest.raises(ValidationError):
        asyncio.run(repository.add_note(make_note("n1", "nowhere")))


def test_missing_note_raises_not_found(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)
    asyncio.run(repository.initialize())

    with pytest.raises(NotFoundError):
        asyncio.run(repository.update_note("ghost", {"content": "x"}))
    with pytest.raises(NotFoundError):
        asyncio.run(repository.delete_note("ghost"))


def test_category_names_are_unique_case_insensitively(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)

    async def scenario() -> None:
        await repository.initialize()
        await repository.add_category(make_category("work", "Work"))
        await repository.add_category(make_category("work2", "WORK"))

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_delete_category_moves_notes_and_default(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)

    async def scenario():
        await repository.initialize()
        await repository.add_category(make_category("work", "Work"))
        await repository.add_note(make_note("n1", "work"))
        await repository.add_note(make_note("n2"))
        await repository.save_settings(Settings(default_category_id="work"))
        moved = await repository.delete_category("work")
        return moved, await repository.load_notes(), await repository.load_settings()

    moved, notes, settings = asyncio.run(scenario())

    assert moved == 1
    assert {note.category_id for note in notes} == {"general"}
    assert settings.default_category_id == "general"


def test_general_category_cannot_be_deleted(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)
    asyncio.run(repository.initialize())

    with pytest.raises(ValidationError):
        asyncio.run(repository.delete_category("general"))


def test_device_id_is_stable(local_store: MemoryKeyValueStore) -> None:
    repository = _repository(local_store)

    first = asyncio.run(repository.device_id())
    second = asyncio.run(repository.device_id())

    assert first == second
    assert first.startswith("device_1000_")
