import asyncio

import pytest

from thoughtloom import resilience as resilience_module
from thoughtloom.config import ServiceSettings
from thoughtloom.errors import CircuitOpenError, NetworkError
from thoughtloom.resilience import CircuitBreaker, ResiliencePolicy, ResilientRemote
from thoughtloom.stores import AccountStatus, MemoryRemoteBackend


def _policy(**overrides) -> ResiliencePolicy:
    values = dict(
        name="remote",
        timeout_seconds=0.0,
        max_attempts=3,
        backoff_seconds=0.1,
        circuit_failure_threshold=5,
        circuit_reset_seconds=60.0,
    )
    values.update(overrides)
    return ResiliencePolicy(**values)


def test_policy_from_settings(service_settings: ServiceSettings) -> None:
    policy = ResiliencePolicy.from_settings(service_settings)

    assert policy.name == "remote"
    assert policy.max_attempts == service_settings.remote_retry_attempts + 1
    assert policy.circuit_failure_threshold == 3


def test_retries_transient_failures_with_linear_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    sleep_calls: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleep_calls.append(delay)

    monkeypatch.setattr(resilience_module.asyncio, "sleep", fake_sleep)

    backend = MemoryRemoteBackend(data={"k": "v"})
    backend.inject_failure("get", ConnectionResetError("reset"), times=2)
    remote = ResilientRemote(backend, _policy())

    assert asyncio.run(remote.get("k")) == "v"
    assert sleep_calls == [0.1, 0.2]
    assert remote.breaker.state == "closed"


def test_gives_up_after_max_attempts(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_sleep(delay: float) -> None:
        return None

    monkeypatch.setattr(resilience_module.asyncio, "sleep", fake_sleep)

    backend = MemoryRemoteBackend()
    backend.inject_failure("set", OSError("offline"), times=5)
    remote = ResilientRemote(backend, _policy(max_attempts=2))

    with pytest.raises(NetworkError) as excinfo:
        asyncio.run(remote.set("k", "v"))

    assert excinfo.value.operation == "remote.set"
    assert excinfo.value.details["error"] == "OSError"
    assert [call for call in backend.calls if call[0] == "set"] == [("set", "k"), ("set", "k")]


def test_non_transport_errors_are_not_retried() -> None:
    backend = MemoryRemoteBackend()
    backend.inject_failure("get", KeyError("bug"), times=3)
    remote = ResilientRemote(backend, _policy(backoff_seconds=0.0))

    with pytest.raises(KeyError):
        asyncio.run(remote.get("k"))

    assert len([call for call in backend.calls if call[0] == "get"]) == 1


def test_timeouts_become_network_errors() -> None:
    class SlowBackend(MemoryRemoteBackend):
        async def get(self, key: str) -> str | None:
            await asyncio.sleep(1)
            return None

    remote = ResilientRemote(SlowBackend(), _policy(timeout_seconds=0.01, max_attempts=1))

    with pytest.raises(NetworkError) as excinfo:
        asyncio.run(remote.get("k"))

    assert excinfo.value.details["error"] == "TimeoutError"


def test_circuit_opens_and_short_circuits_calls() -> None:
    backend = MemoryRemoteBackend()
    backend.inject_failure("list_keys", OSError("down"), times=10)
    remote = ResilientRemote(
        backend,
        _policy(max_attempts=5, backoff_seconds=0.0, circuit_failure_threshold=2, circuit_reset_seconds=600.0),
    )

    with pytest.raises(NetworkError):
        asyncio.run(remote.list_keys(""))

    assert remote.breaker.state == "open"
    assert len([call for call in backend.calls if call[0] == "list_keys"]) == 2

    with pytest.raises(CircuitOpenError) as excinfo:
        asyncio.run(remote.get("k"))
    assert excinfo.value.reason == "unavailableNetwork"


def test_breaker_half_opens_after_reset_window() -> None:
    now = [0.0]
    breaker = CircuitBreaker(failure_threshold=1, reset_seconds=10.0, clock=lambda: now[0])

    breaker.record_failure()
    assert breaker.state == "open"
    assert not breaker.allow()

    now[0] = 10.0
    assert breaker.allow()
    assert breaker.state == "half-open"

    breaker.record_failure()
    assert breaker.state == "open"

    now[0] = 25.0
    assert breaker.allow()
    breaker.record_success()
    assert breaker.state == "closed"


def test_breaker_rejects_invalid_configuration() -> None:
    with pytest.raises(ValueError):
        CircuitBreaker(failure_threshold=0, reset_seconds=1.0)
    with pytest.raises(ValueError):
        CircuitBreaker(failure_threshold=1, reset_seconds=-1.0)


def test_account_status_passes_through() -> None:
    remote = ResilientRemote(MemoryRemoteBackend(status=AccountStatus.RESTRICTED), _policy())

    assert asyncio.run(remote.account_status()) is AccountStatus.RESTRICTED
