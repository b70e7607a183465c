"""Timeouts, retries and circuit breaking around the remote backend."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .config import ServiceSettings
from .errors import CircuitOpenError, NetworkError
from .stores import AccountStatus, RemoteBackend

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ResiliencePolicy:
    """Configuration for remote retries, timeouts, and circuit breaking."""

    name: str
    timeout_seconds: float
    max_attempts: int = 1
    backoff_seconds: float = 0.5
    circuit_failure_threshold: int = 3
    circuit_reset_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: ServiceSettings, *, name: str = "remote") -> "ResiliencePolicy":
        return cls(
            name=name,
            timeout_seconds=settings.remote_timeout_seconds,
            max_attempts=settings.remote_retry_attempts + 1,
            backoff_seconds=settings.remote_backoff_seconds,
            circuit_failure_threshold=settings.remote_circuit_failure_threshold,
            circuit_reset_seconds=settings.remote_circuit_reset_seconds,
        )


class CircuitBreaker:
    """Closed / open / half-open state machine.

    A failure while half-open re-opens the circuit immediately.
    """

    def __init__(
        self,
        *,
        failure_threshold: int,
        reset_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be greater than zero.")
        if reset_seconds < 0:
            raise ValueError("reset_seconds may not be negative.")
        self._failure_threshold = failure_threshold
        self._reset_seconds = reset_seconds
        self._clock = clock
        self._failure_count = 0
        self._state = "closed"
        self._opened_at = 0.0
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        return self._state

    def allow(self) -> bool:
        with self._lock:
            if self._state == "open":
                if self._reset_seconds == 0 or (
                    self._clock() - self._opened_at >= self._reset_seconds
                ):
                    self._state = "half-open"
                    return True
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._state = "closed"

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            if self._state == "half-open" or self._failure_count >= self._failure_threshold:
                self._failure_count = self._failure_threshold
                self._state = "open"
                self._opened_at = self._clock()


class ResilientRemote:
    """Remote backend wrapper applying a :class:`ResiliencePolicy` to every call.

    Transport failures (``OSError``, timeouts, :class:`NetworkError`) are
    retried with linear backoff and counted by the circuit breaker. Any other
    exception propagates on the first attempt.
    """

    def __init__(
        self,
        backend: RemoteBackend,
        policy: ResiliencePolicy,
        *,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        if policy.max_attempts <= 0:
            raise ValueError("policy.max_attempts must be at least 1")
        if policy.timeout_seconds < 0:
            raise ValueError("policy.timeout_seconds may not be negative")
        self.backend = backend
        self.policy = policy
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=policy.circuit_failure_threshold,
            reset_seconds=policy.circuit_reset_seconds,
        )

    async def _attempt(self, call: Callable[[], Awaitable[T]]) -> T:
        timeout = self.policy.timeout_seconds
        if timeout and timeout > 0:
            async with asyncio.timeout(timeout):
                return await call()
        return await call()

    async def _run(self, label: str, call: Callable[[], Awaitable[T]]) -> T:
        name = f"{self.policy.name}.{label}"
        if not self.breaker.allow():
            LOGGER.warning("remote.circuit_open", extra={"extra_payload": {"operation": name}})
            raise CircuitOpenError(
                f"Remote circuit for '{name}' is open.",
                reason="unavailableNetwork",
                operation=name,
            )

        attempts = self.policy.max_attempts
        backoff = max(0.0, self.policy.backoff_seconds)
        last_error: NetworkError | None = None

        for attempt in range(1, attempts + 1):
            try:
                result = await self._attempt(call)
            except asyncio.CancelledError:
                raise
            except TimeoutError as exc:
                last_error = NetworkError(
                    f"Remote call '{name}' timed out.",
                    details={"timeout_seconds": self.policy.timeout_seconds, "error": "TimeoutError"},
                    operation=name,
                )
                last_error.__cause__ = exc
            except OSError as exc:
                last_error = NetworkError(
                    str(exc) or None,
                    details={"error": type(exc).__name__},
                    operation=name,
                )
                last_error.__cause__ = exc
            except NetworkError as exc:
                exc.with_operation(name)
                last_error = exc
            else:
                self.breaker.record_success()
                return result

            self.breaker.record_failure()
            LOGGER.warning(
                "remote.failure",
                extra={
                    "extra_payload": {
                        "operation": name,
                        "attempt": attempt,
                        "error": last_error.details.get("error", last_error.code),
                    }
                },
            )
            if self.breaker.state == "open":
                break
            if attempt < attempts and backoff:
                await asyncio.sleep(backoff * attempt)

        assert last_error is not None
        raise last_error

    async def get(self, key: str) -> str | None:
        return await self._run("get", lambda: self.backend.get(key))

    async def set(self, key: str, value: str) -> None:
        await self._run("set", lambda: self.backend.set(key, value))

    async def remove(self, key: str) -> None:
        await self._run("remove", lambda: self.backend.remove(key))

    async def list_keys(self, prefix: str = "") -> list[str]:
        return await self._run("list_keys", lambda: self.backend.list_keys(prefix))

    async def account_status(self) -> AccountStatus:
        return await self._run("account_status", self.backend.account_status)


__all__ = ["CircuitBreaker", "ResiliencePolicy", "ResilientRemote"]
