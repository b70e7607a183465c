import asyncio
import os
from pathlib import Path

import pytest

from thoughtloom.stores import (
    AccountStatus,
    FileKeyValueStore,
    FileRemoteBackend,
    KeyValueStore,
    MemoryKeyValueStore,
    MemoryRemoteBackend,
    RemoteBackend,
)


def test_memory_stores_satisfy_protocols() -> None:
    assert isinstance(MemoryKeyValueStore(), KeyValueStore)
    assert isinstance(MemoryRemoteBackend(), RemoteBackend)
    assert isinstance(FileRemoteBackend(Path("unused")), RemoteBackend)


def test_memory_store_failure_injection_targets_key() -> None:
    store = MemoryKeyValueStore()
    store.inject_failure("set", OSError("full"), key="b")

    asyncio.run(store.set("a", "1"))
    with pytest.raises(OSError):
        asyncio.run(store.set("b", "2"))
    asyncio.run(store.set("b", "3"))

    assert store.data == {"a": "1", "b": "3"}
    assert store.mutations == [("set", "a"), ("set", "b"), ("set", "b")]


def test_file_store_round_trip(tmp_path: Path) -> None:
    store = FileKeyValueStore(tmp_path / "store")

    async def scenario():
        await store.set("notes", '[{"id": "n1"}]')
        await store.set("notes_backup_1", "[]")
        await store.set("odd/key name", "value")
        listed = await store.list_keys("notes")
        value = await store.get("notes")
        await store.remove("notes")
        await store.remove("never-existed")
        return listed, value, await store.get("notes"), await store.get("odd/key name")

    listed, value, removed, odd = asyncio.run(scenario())

    assert listed == ["notes", "notes_backup_1"]
    assert value == '[{"id": "n1"}]'
    assert removed is None
    assert odd == "value"


def test_file_store_lists_nothing_before_first_write(tmp_path: Path) -> None:
    assert asyncio.run(FileKeyValueStore(tmp_path / "absent").list_keys()) == []


def test_file_remote_account_status(tmp_path: Path) -> None:
    missing = FileRemoteBackend(tmp_path / "missing")
    created = FileRemoteBackend(tmp_path / "created", create=True)
    file_root = tmp_path / "file"
    file_root.write_text("x", encoding="utf-8")

    assert asyncio.run(missing.account_status()) is AccountStatus.NO_ACCOUNT
    assert asyncio.run(created.account_status()) is AccountStatus.AVAILABLE
    assert asyncio.run(FileRemoteBackend(file_root).account_status()) is AccountStatus.COULD_NOT_DETERMINE


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="requires a non-root POSIX user")
def test_file_remote_read_only_is_restricted(tmp_path: Path) -> None:
    root = tmp_path / "readonly"
    root.mkdir()
    root.chmod(0o500)
    try:
        assert asyncio.run(FileRemoteBackend(root).account_status()) is AccountStatus.RESTRICTED
    finally:
        root.chmod(0o700)
