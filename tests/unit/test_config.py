from pathlib import Path

import pytest
from pydantic import ValidationError

from thoughtloom.config import ServiceSettings


def test_defaults_derive_directories(service_settings: ServiceSettings) -> None:
    data_dir = service_settings.data_dir

    assert service_settings.local_store_dir == data_dir / "store"
    assert service_settings.remote_root == data_dir / "remote"
    assert service_settings.diagnostics_dir == data_dir / "diagnostics"
    assert service_settings.backup_retention == 5


def test_from_environment_reads_prefixed_variables(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("THOUGHTLOOM_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("THOUGHTLOOM_BACKUP_RETENTION", "8")
    monkeypatch.setenv("THOUGHTLOOM_ENVIRONMENT", "development")

    settings = ServiceSettings.from_environment()

    assert settings.data_dir == tmp_path / "data"
    assert settings.backup_retention == 8
    assert settings.environment == "development"


def test_from_environment_reads_env_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("THOUGHTLOOM_REMOTE_RETRY_ATTEMPTS", raising=False)
    monkeypatch.delenv("THOUGHTLOOM_CONTAINER_IDENTIFIER", raising=False)
    (tmp_path / ".env").write_text(
        "# local overrides\n"
        "export THOUGHTLOOM_REMOTE_RETRY_ATTEMPTS=4\n"
        "THOUGHTLOOM_CONTAINER_IDENTIFIER='iCloud.example.dev'\n",
        encoding="utf-8",
    )

    settings = ServiceSettings.from_environment()

    assert settings.remote_retry_attempts == 4
    assert settings.container_identifier == "iCloud.example.dev"


def test_rejects_data_dir_that_is_a_file(tmp_path: Path) -> None:
    target = tmp_path / "occupied"
    target.write_text("x", encoding="utf-8")

    with pytest.raises(ValidationError):
        ServiceSettings(data_dir=target)


def test_rejects_remote_dir_equal_to_data_dir(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        ServiceSettings(data_dir=tmp_path, remote_dir=tmp_path)


def test_rejects_out_of_range_retention(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        ServiceSettings(data_dir=tmp_path, backup_retention=0)
