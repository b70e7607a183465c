"""Pytest configuration for the thoughtloom test suite."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from thoughtloom.config import ServiceSettings
from thoughtloom.stores import MemoryKeyValueStore, MemoryRemoteBackend

CREATED_AT = "2024-03-01T09:30:00.000Z"


def make_category(category_id: str, name: str, color: str = "#3366FF") -> dict[str, Any]:
    return {"id": category_id, "name": name, "color": color, "createdAt": CREATED_AT}


def make_note(note_id: str, category_id: str = "general", **overrides: Any) -> dict[str, Any]:
    note: dict[str, Any] = {
        "id": note_id,
        "label": f"Note {note_id}",
        "type": "text",
        "content": f"Body of {note_id}",
        "categoryId": category_id,
        "createdAt": CREATED_AT,
        "updatedAt": CREATED_AT,
        "isFavorite": False,
    }
    note.update(overrides)
    return note


@pytest.fixture()
def categories() -> list[dict[str, Any]]:
    return [
        make_category("general", "General", "#6B7280"),
        make_category("work", "Work"),
    ]


@pytest.fixture()
def notes() -> list[dict[str, Any]]:
    return [
        make_note("n1"),
        make_note("n2", "work"),
        make_note(
            "n3",
            "work",
            type="voice",
            label="",
            content="Transcribed standup",
            audioPath="recordings/n3.m4a",
            audioDuration=75,
        ),
    ]


@pytest.fixture()
def settings_payload() -> dict[str, Any]:
    return {"defaultCategoryId": "work", "audioQuality": "high", "themeMode": "dark"}


@pytest.fixture()
def local_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def remote() -> MemoryRemoteBackend:
    return MemoryRemoteBackend()


@pytest.fixture()
def service_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> ServiceSettings:
    """Settings rooted in a temporary directory with retries that never sleep."""

    monkeypatch.chdir(tmp_path)
    for name in ServiceSettings.model_fields:
        monkeypatch.delenv(f"{ServiceSettings.ENV_PREFIX}{name.upper()}", raising=False)
    return ServiceSettings(
        data_dir=tmp_path / "data",
        remote_backoff_seconds=0.0,
        remote_timeout_seconds=0.0,
    )


@pytest.fixture()
def service_app(
    service_settings: ServiceSettings,
    local_store: MemoryKeyValueStore,
    remote: MemoryRemoteBackend,
) -> FastAPI:
    """Provide the FastAPI application bound to in-memory stores."""

    from thoughtloom.app import create_app

    return create_app(service_settings, local_store=local_store, backend=remote)


@pytest.fixture()
def test_client(service_app: FastAPI) -> Iterator[TestClient]:
    """Yield a test client with the application lifespan running."""

    with TestClient(service_app) as client:
        yield client
