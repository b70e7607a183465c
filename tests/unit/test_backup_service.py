import asyncio
import json

import pytest

from thoughtloom.backup_service import BackupService
from thoughtloom.config import ServiceSettings
from thoughtloom.errors import AvailabilityError, IntegrityError, NotFoundError, ValidationError
from thoughtloom.stores import AccountStatus, MemoryKeyValueStore, MemoryRemoteBackend

from conftest import make_category, make_note


def _open(settings: ServiceSettings, local: MemoryKeyValueStore, remote: MemoryRemoteBackend) -> BackupService:
    return asyncio.run(BackupService.open(settings, local_store=local, backend=remote))


def _seed(local: MemoryKeyValueStore) -> None:
    local.data["categories"] = json.dumps([make_category("general", "General"), make_category("work", "Work")])
    local.data["notes"] = json.dumps([make_note("n1"), make_note("n2", "work")])


def test_open_initialises_local_store_and_connects(service_settings, local_store, remote) -> None:
    service = _open(service_settings, local_store, remote)

    assert service.connected
    assert "categories" in local_store.data
    assert "settings" in local_store.data


def test_backup_and_restore_round_trip(service_settings, local_store, remote) -> None:
    _seed(local_store)
    service = _open(service_settings, local_store, remote)

    async def scenario():
        record = await service.create_backup()
        await service.repository.delete_note("n2")
        report = await service.restore_backup(record.key)
        return record, report, await service.repository.load_notes()

    record, report, notes = asyncio.run(scenario())

    assert record.summary.notes_count == 2
    assert record.device_descriptor.version
    assert report.notes_restored == 2
    assert report.safety_backup_key is not None
    assert [note.id for note in notes] == ["n1", "n2"]


def test_create_backup_prunes_to_retention(tmp_path, local_store, remote) -> None:
    settings = ServiceSettings(data_dir=tmp_path / "data", backup_retention=2, remote_backoff_seconds=0.0)
    service = _open(settings, local_store, remote)

    async def scenario():
        for _ in range(4):
            await service.create_backup()
        return await service.list_backups()

    records = asyncio.run(scenario())

    assert len(records) == 2
    assert len(json.loads(remote.data["backup_list"])) == 2


def test_remote_operations_fail_cleanly_when_not_connected(service_settings, local_store) -> None:
    remote = MemoryRemoteBackend(status=AccountStatus.NO_ACCOUNT)
    service = _open(service_settings, local_store, remote)

    assert not service.connected
    with pytest.raises(AvailabilityError) as excinfo:
        asyncio.run(service.create_backup())

    assert excinfo.value.reason == "noAccount"
    assert excinfo.value.operation == "create_backup"
    assert remote.mutations == []


def test_operations_gate_on_probe(service_settings, local_store, remote) -> None:
    service = _open(service_settings, local_store, remote)
    remote.status = AccountStatus.RESTRICTED

    with pytest.raises(AvailabilityError) as excinfo:
        asyncio.run(service.list_backups())

    assert excinfo.value.reason == "restricted"


def test_restore_of_corrupt_backup_is_logged(service_settings, local_store, remote) -> None:
    key = "backup_1700000000000_abcdef"
    remote.data[key] = "{not json"
    remote.data["backup_list"] = json.dumps([key])
    service = _open(service_settings, local_store, remote)
    before = dict(local_store.data)

    with pytest.raises(IntegrityError) as excinfo:
        asyncio.run(service.restore_backup(key))

    assert excinfo.value.operation == "restore"
    assert local_store.data == before
    assert len(list(service_settings.diagnostics_dir.glob("*.json"))) == 1


def test_delete_unknown_backup_raises_not_found_without_diagnostics(service_settings, local_store, remote) -> None:
    service = _open(service_settings, local_store, remote)

    with pytest.raises(NotFoundError):
        asyncio.run(service.delete_backup("backup_1_zzzzzz"))

    assert not service_settings.diagnostics_dir.exists()


def test_verify_without_connection_reports_reason(service_settings, local_store) -> None:
    service = _open(service_settings, local_store, MemoryRemoteBackend(status=AccountStatus.RESTRICTED))

    result = asyncio.run(service.verify())

    assert not result.is_working
    assert result.reason == "restricted"


def test_audit_and_repair_through_service(service_settings, local_store, remote) -> None:
    service = _open(service_settings, local_store, remote)
    local_store.data["notes"] = json.dumps([make_note("n1", "ghost")])

    report = asyncio.run(service.audit())
    repaired = asyncio.run(service.repair())

    assert any(issue.type == "orphaned" for issue in report.issues)
    assert repaired.repaired == 1
    assert not any(issue.type == "orphaned" for issue in repaired.report.issues)


def test_create_backup_refuses_local_data_with_an_invalid_note(tmp_path, local_store, remote) -> None:
    settings = ServiceSettings(data_dir=tmp_path / "data", backup_retention=1, remote_backoff_seconds=0.0)
    _seed(local_store)
    service = _open(settings, local_store, remote)
    earlier = asyncio.run(service.create_backup())
    local_store.data["notes"] = json.dumps([make_note("good"), make_note("bad", content="   ")])

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(service.create_backup())

    assert excinfo.value.details["index"] == 1
    assert "note at index 1" in excinfo.value.message
    assert excinfo.value.operation == "create_backup"
    assert json.loads(remote.data["backup_list"]) == [earlier.key]
    assert [record.key for record in asyncio.run(service.list_backups())] == [earlier.key]


def test_create_backup_refuses_dangling_category_reference(service_settings, local_store, remote) -> None:
    service = _open(service_settings, local_store, remote)
    local_store.data["notes"] = json.dumps([make_note("n1", "ghost")])

    with pytest.raises(IntegrityError) as excinfo:
        asyncio.run(service.create_backup())

    assert excinfo.value.details["violation"] == "dangling_category"
    assert "backup_list" not in remote.data
