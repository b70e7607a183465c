import json

import pytest

from thoughtloom.errors import IntegrityError, ValidationError
from thoughtloom.models import DeviceInfo
from thoughtloom.snapshots import (
    build_snapshot,
    describe_device,
    load_snapshot,
    parse_snapshot,
    payload_size,
    serialize_snapshot,
)

from conftest import make_category, make_note

DEVICE = DeviceInfo(platform="linux", version="0.1.0", device_id="device_1_abc")


def test_build_snapshot_sanitizes_and_summarises(notes, categories, settings_payload) -> None:
    snapshot = build_snapshot(notes, categories, settings_payload, DEVICE, created_at="2024-03-02T00:00:00.000Z")

    metadata = snapshot.metadata
    assert metadata.format_version == "1.0.0"
    assert metadata.created_at == "2024-03-02T00:00:00.000Z"
    assert metadata.device_info == DEVICE
    assert metadata.data_summary.notes_count == 3
    assert metadata.data_summary.categories_count == 2
    assert metadata.data_summary.has_settings is True
    assert metadata.data_summary.total_size == payload_size(snapshot.notes, snapshot.categories, snapshot.settings)
    assert snapshot.notes[2].label == "Voice Note (1:15)"
    assert snapshot.settings.theme_mode == "dark"


def test_build_snapshot_names_the_failing_entity(categories) -> None:
    broken = [make_note("n1"), make_note("n2", content="")]

    with pytest.raises(ValidationError) as excinfo:
        build_snapshot(broken, categories, {}, DEVICE)

    assert excinfo.value.details["index"] == 1
    assert excinfo.value.details["id"] == "n2"


def test_serialize_snapshot_uses_wire_names(notes, categories, settings_payload) -> None:
    snapshot = build_snapshot(notes, categories, settings_payload, DEVICE)

    payload = json.loads(serialize_snapshot(snapshot))

    assert set(payload) == {"metadata", "notes", "categories", "settings"}
    assert payload["metadata"]["formatVersion"] == "1.0.0"
    assert payload["metadata"]["deviceInfo"]["deviceId"] == "device_1_abc"
    assert payload["notes"][2]["audioPath"] == "recordings/n3.m4a"
    assert payload["settings"] == {"defaultCategoryId": "work", "audioQuality": "high", "themeMode": "dark"}


def test_parse_snapshot_round_trips(notes, categories, settings_payload) -> None:
    snapshot = build_snapshot(notes, categories, settings_payload, DEVICE)

    assert parse_snapshot(serialize_snapshot(snapshot)) == snapshot


def test_load_snapshot_accepts_legacy_version_key() -> None:
    payload = {
        "metadata": {
            "version": "1.0.0",
            "createdAt": "2024-03-01T09:30:00Z",
            "deviceInfo": DEVICE.to_wire(),
            "dataSummary": {"notesCount": 0, "categoriesCount": 1},
        },
        "notes": [],
        "categories": [make_category("general", "General")],
    }

    snapshot = load_snapshot(payload)

    assert snapshot.metadata.format_version == "1.0.0"
    assert snapshot.metadata.created_at == "2024-03-01T09:30:00.000Z"
    assert snapshot.settings.default_category_id == "general"


@pytest.mark.parametrize("body", ["", "   ", "{not json", "[]"])
def test_parse_snapshot_rejects_garbage(body: str) -> None:
    with pytest.raises(IntegrityError) as excinfo:
        parse_snapshot(body)
    assert excinfo.value.details["violation"] == "shape"


def test_load_snapshot_rejects_newer_version_before_sanitizing() -> None:
    payload = {
        "metadata": {"formatVersion": "3.0.0"},
        "notes": "not even a list",
        "categories": [],
    }

    with pytest.raises(IntegrityError) as excinfo:
        load_snapshot(payload)

    assert excinfo.value.details["violation"] == "format_version"


def test_load_snapshot_turns_entity_failures_into_integrity_errors() -> None:
    payload = {
        "metadata": {
            "formatVersion": "1.0.0",
            "createdAt": "2024-03-01T09:30:00.000Z",
            "deviceInfo": DEVICE.to_wire(),
            "dataSummary": {"notesCount": 1, "categoriesCount": 1},
        },
        "notes": [make_note("n1", type="fax")],
        "categories": [make_category("general", "General")],
    }

    with pytest.raises(IntegrityError) as excinfo:
        load_snapshot(payload)

    assert excinfo.value.details["violation"] == "entity"
    assert excinfo.value.details["field"] == "type"


def test_describe_device_uses_app_version() -> None:
    device = describe_device("device_42_xyz", app_version="9.9.9")

    assert device.device_id == "device_42_xyz"
    assert device.version == "9.9.9"
    assert device.platform
