import asyncio
from pathlib import Path

import pytest

from thoughtloom.availability import (
    AvailabilityProber,
    classify_reason,
    collect_diagnostics,
    configure,
    configure_from_settings,
    connect,
)
from thoughtloom.config import ServiceSettings
from thoughtloom.errors import AvailabilityError, NetworkError
from thoughtloom.resilience import ResilientRemote
from thoughtloom.stores import AccountStatus, FileRemoteBackend, MemoryRemoteBackend


@pytest.mark.parametrize(
    ("error", "reason"),
    [
        (AvailabilityError("x", reason="noAccount"), "noAccount"),
        (RuntimeError("User is not signed in"), "noAccount"),
        (PermissionError("denied"), "restricted"),
        (RuntimeError("Access denied by policy"), "restricted"),
        (ConnectionRefusedError("refused"), "unavailableNetwork"),
        (NetworkError("socket closed"), "unavailableNetwork"),
        (RuntimeError("The request timed out"), "unavailableNetwork"),
        (RuntimeError("something odd"), "unknown"),
    ],
)
def test_classify_reason(error: BaseException, reason: str) -> None:
    assert classify_reason(error) == reason


def test_configure_is_pure_and_validates() -> None:
    config = configure(container_identifier="iCloud.example", environment="development")

    assert config.container_identifier == "iCloud.example"
    assert config.remote_dir is None
    with pytest.raises(ValueError):
        configure(container_identifier="  ")
    with pytest.raises(ValueError):
        configure(container_identifier="iCloud.example", environment="staging")


def test_configure_from_settings(service_settings: ServiceSettings) -> None:
    config = configure_from_settings(service_settings)

    assert config.remote_dir == service_settings.remote_root
    assert config.resilience is not None
    assert config.resilience.max_attempts == 3


def test_connect_returns_handle_wrapped_in_resilience(service_settings: ServiceSettings) -> None:
    backend = MemoryRemoteBackend()

    handle = asyncio.run(connect(configure_from_settings(service_settings), backend))

    assert handle.account_status is AccountStatus.AVAILABLE
    assert isinstance(handle.remote, ResilientRemote)
    assert handle.remote.backend is backend


@pytest.mark.parametrize(
    ("status", "reason"),
    [
        (AccountStatus.NO_ACCOUNT, "noAccount"),
        (AccountStatus.RESTRICTED, "restricted"),
        (AccountStatus.COULD_NOT_DETERMINE, "unknown"),
    ],
)
def test_connect_raises_with_reason(status: AccountStatus, reason: str) -> None:
    config = configure(container_identifier="iCloud.example")

    with pytest.raises(AvailabilityError) as excinfo:
        asyncio.run(connect(config, MemoryRemoteBackend(status=status)))

    assert excinfo.value.reason == reason
    assert excinfo.value.operation == "connect"


def test_connect_classifies_status_failures() -> None:
    config = configure(container_identifier="iCloud.example")
    backend = MemoryRemoteBackend(status_error=ConnectionError("network is unreachable"))

    with pytest.raises(AvailabilityError) as excinfo:
        asyncio.run(connect(config, backend))

    assert excinfo.value.reason == "unavailableNetwork"


def test_connect_to_missing_directory_reports_no_account(tmp_path: Path) -> None:
    config = configure(
        container_identifier="iCloud.example",
        remote_dir=tmp_path / "absent",
        create_container=False,
    )

    with pytest.raises(AvailabilityError) as excinfo:
        asyncio.run(connect(config))

    assert excinfo.value.reason == "noAccount"


def test_connect_creates_directory_container(tmp_path: Path) -> None:
    config = configure(container_identifier="iCloud.example", remote_dir=tmp_path / "remote")

    handle = asyncio.run(connect(config))

    assert isinstance(handle.remote, FileRemoteBackend)
    assert (tmp_path / "remote").is_dir()


def test_probe_never_raises() -> None:
    prober = AvailabilityProber(MemoryRemoteBackend(status_error=OSError("i/o failure")))

    result = asyncio.run(prober.probe())

    assert not result.available
    assert result.reason == "unavailableNetwork"


def test_probe_reports_account_status() -> None:
    result = asyncio.run(AvailabilityProber(MemoryRemoteBackend(status=AccountStatus.RESTRICTED)).probe())

    assert result.to_wire() == {"available": False, "reason": "restricted", "accountStatus": "restricted"}


def test_verify_round_trips_and_cleans_up() -> None:
    backend = MemoryRemoteBackend()

    result = asyncio.run(AvailabilityProber(backend).verify())

    assert result.is_working
    assert result.details == {
        "accountStatus": "available",
        "containerAccess": True,
        "recordCreation": True,
        "networkActivity": True,
    }
    assert backend.data == {}


def test_verify_reports_the_failing_step() -> None:
    backend = MemoryRemoteBackend()
    backend.inject_failure("set", PermissionError("write not permitted"))

    result = asyncio.run(AvailabilityProber(backend).verify())

    assert not result.is_working
    assert result.reason == "restricted"
    assert result.details["containerAccess"] is True
    assert result.details["recordCreation"] is False


def test_verify_removes_the_written_key_when_read_back_fails() -> None:
    backend = MemoryRemoteBackend()
    backend.inject_failure("get", ConnectionResetError("connection reset by peer"))

    result = asyncio.run(AvailabilityProber(backend).verify())

    assert not result.is_working
    assert result.details["containerAccess"] is True
    assert backend.data == {}
    assert [operation for operation, _ in backend.mutations] == ["set", "remove"]


def test_collect_diagnostics_for_healthy_remote() -> None:
    config = configure(container_identifier="iCloud.example")

    diagnostics = asyncio.run(collect_diagnostics(config, MemoryRemoteBackend()))

    payload = diagnostics.to_wire()
    assert payload["initializationStatus"] == "initialized"
    assert payload["accountStatus"] == "available"
    assert payload["verificationResult"]["isWorking"] is True
    assert payload["recommendations"] == []


def test_collect_diagnostics_for_missing_account() -> None:
    config = configure(container_identifier="iCloud.example", environment="development")

    diagnostics = asyncio.run(
        collect_diagnostics(config, MemoryRemoteBackend(status=AccountStatus.NO_ACCOUNT))
    )

    assert diagnostics.initialization_status == "failed: noAccount"
    assert diagnostics.account_status == "noAccount"
    assert diagnostics.verification_result is None
    assert len(diagnostics.recommendations) == 2
