"""Remote availability: configuration, connection, probing and verification.

Connecting is two-phase. :func:`configure` is pure and returns a
:class:`RemoteConfig`; :func:`connect` performs the I/O and either returns a
:class:`RemoteHandle` or raises :class:`~thoughtloom.errors.AvailabilityError`.
Callers keep the handle; nothing here holds hidden connection state.
"""

from __future__ import annotations

import logging
import platform as platform_module
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Literal
from uuid import uuid4

from pydantic import Field

from .config import ServiceSettings
from .constants import PROBE_KEY
from .errors import AvailabilityError, NetworkError, ThoughtloomError
from .models import WireModel
from .resilience import ResiliencePolicy, ResilientRemote
from .stores import AccountStatus, FileRemoteBackend, RemoteBackend

LOGGER = logging.getLogger(__name__)

Reason = Literal["noAccount", "restricted", "unavailableNetwork", "unknown"]
ReasonPredicate = Callable[[BaseException, str], bool]


def _message_contains(*needles: str) -> ReasonPredicate:
    return lambda error, message: any(needle in message for needle in needles)


def _is_instance(*types: type[BaseException]) -> ReasonPredicate:
    return lambda error, message: isinstance(error, types)


def _any_of(*predicates: ReasonPredicate) -> ReasonPredicate:
    return lambda error, message: any(predicate(error, message) for predicate in predicates)


def _has_reason(reason: str) -> ReasonPredicate:
    return lambda error, message: getattr(error, "reason", None) == reason


# Evaluated in order; the first match wins.
REASON_RULES: list[tuple[ReasonPredicate, Reason]] = [
    (
        _any_of(
            _has_reason("noAccount"),
            _message_contains("no account", "not authenticated", "not signed in", "account not found"),
        ),
        "noAccount",
    ),
    (
        _any_of(
            _has_reason("restricted"),
            _is_instance(PermissionError),
            _message_contains("restricted", "permission", "not permitted", "access denied", "forbidden"),
        ),
        "restricted",
    ),
    (
        _any_of(
            _has_reason("unavailableNetwork"),
            _is_instance(NetworkError, ConnectionError, TimeoutError, OSError),
            _message_contains("network", "offline", "timed out", "connection", "unreachable", "i/o"),
        ),
        "unavailableNetwork",
    ),
]

_STATUS_REASONS: dict[AccountStatus, Reason] = {
    AccountStatus.NO_ACCOUNT: "noAccount",
    AccountStatus.RESTRICTED: "restricted",
    AccountStatus.COULD_NOT_DETERMINE: "unknown",
}


def classify_reason(error: BaseException) -> Reason:
    """Map ``error`` onto the most specific availability reason."""

    message = str(error).lower()
    for predicate, reason in REASON_RULES:
        if predicate(error, message):
            return reason
    return "unknown"


class ProbeResult(WireModel):
    available: bool
    reason: Reason | None = None
    account_status: AccountStatus = AccountStatus.COULD_NOT_DETERMINE


class VerificationResult(WireModel):
    """Outcome of a real write/read round trip against the remote."""

    is_working: bool
    error: str | None = None
    reason: Reason | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class RemoteDiagnostics(WireModel):
    platform: str
    container_identifier: str
    initialization_status: str
    account_status: str
    verification_result: VerificationResult | None = None
    recommendations: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class RemoteConfig:
    container_identifier: str
    environment: str = "production"
    remote_dir: Path | None = None
    create_container: bool = True
    resilience: ResiliencePolicy | None = None


def configure(**params: Any) -> RemoteConfig:
    """Build a :class:`RemoteConfig` without touching the remote."""

    config = RemoteConfig(**params)
    if not config.container_identifier.strip():
        raise ValueError("container_identifier must not be empty")
    if config.environment not in {"production", "development"}:
        raise ValueError("environment must be 'production' or 'development'")
    return config


def configure_from_settings(settings: ServiceSettings) -> RemoteConfig:
    return configure(
        container_identifier=settings.container_identifier,
        environment=settings.environment,
        remote_dir=settings.remote_root,
        resilience=ResiliencePolicy.from_settings(settings),
    )


class AvailabilityProber:
    """Answers whether the remote is usable, and why not."""

    def __init__(self, remote: RemoteBackend) -> None:
        self._remote = remote

    async def probe(self) -> ProbeResult:
        """Query the account status only; never raises for remote failures."""

        try:
            status = await self._remote.account_status()
        except (ThoughtloomError, OSError) as exc:
            reason = classify_reason(exc)
            LOGGER.info("availability.probe_failed", extra={"extra_payload": {"reason": reason}})
            return ProbeResult(available=False, reason=reason)
        if status is AccountStatus.AVAILABLE:
            return ProbeResult(available=True, account_status=status)
        return ProbeResult(available=False, reason=_STATUS_REASONS[status], account_status=status)

    async def _discard(self, probe_key: str) -> None:
        try:
            await self._remote.remove(probe_key)
        except (ThoughtloomError, OSError):
            LOGGER.warning("availability.probe_cleanup_failed", extra={"extra_payload": {"key": probe_key}})

    async def verify(self) -> VerificationResult:
        """Write, read back and remove a throwaway key.

        The key is removed whenever the write went through, including when
        the read-back fails.
        """

        details: dict[str, Any] = {
            "accountStatus": AccountStatus.COULD_NOT_DETERMINE.value,
            "containerAccess": False,
            "recordCreation": False,
            "networkActivity": False,
        }
        probe_key = f"{PROBE_KEY}{uuid4().hex}"
        token = uuid4().hex
        written = False
        try:
            status = await self._remote.account_status()
            details["accountStatus"] = status.value
            details["networkActivity"] = True
            if status is not AccountStatus.AVAILABLE:
                return VerificationResult(
                    is_working=False,
                    error=f"Account status is {status.value}.",
                    reason=_STATUS_REASONS[status],
                    details=details,
                )
            await self._remote.list_keys(PROBE_KEY)
            details["containerAccess"] = True
            await self._remote.set(probe_key, token)
            written = True
            echoed = await self._remote.get(probe_key)
            details["recordCreation"] = echoed == token
        except (ThoughtloomError, OSError) as exc:
            reason = classify_reason(exc)
            LOGGER.warning(
                "availability.verify_failed",
                extra={"extra_payload": {"reason": reason, "details": details}},
            )
            return VerificationResult(is_working=False, error=str(exc), reason=reason, details=details)
        finally:
            if written:
                await self._discard(probe_key)

        if not details["recordCreation"]:
            return VerificationResult(
                is_working=False,
                error="Round-trip value did not match what was written.",
                reason="unknown",
                details=details,
            )
        return VerificationResult(is_working=True, details=details)


@dataclass
class RemoteHandle:
    """A connected remote plus the configuration it was opened with."""

    config: RemoteConfig
    remote: RemoteBackend
    account_status: AccountStatus

    @property
    def prober(self) -> AvailabilityProber:
        return AvailabilityProber(self.remote)

    async def probe(self) -> ProbeResult:
        return await self.prober.probe()

    async def verify(self) -> VerificationResult:
        return await self.prober.verify()


def _default_backend(config: RemoteConfig) -> RemoteBackend:
    if config.remote_dir is None:
        raise AvailabilityError(
            "No remote container directory is configured.",
            reason="noAccount",
            operation="connect",
        )
    return FileRemoteBackend(config.remote_dir, create=config.create_container)


async def connect(config: RemoteConfig, backend: RemoteBackend | None = None) -> RemoteHandle:
    """Open the remote described by ``config``.

    Raises :class:`AvailabilityError` with the classified reason when the
    account is missing, restricted or its status cannot be read.
    """

    try:
        raw = backend if backend is not None else _default_backend(config)
    except OSError as exc:
        raise AvailabilityError(str(exc), reason=classify_reason(exc), operation="connect") from exc
    remote: RemoteBackend = ResilientRemote(raw, config.resilience) if config.resilience else raw

    try:
        status = await remote.account_status()
    except (ThoughtloomError, OSError) as exc:
        reason = classify_reason(exc)
        raise AvailabilityError(
            f"Could not determine remote account status: {exc}",
            reason=reason,
            details={"container": config.container_identifier},
            operation="connect",
        ) from exc

    if status is not AccountStatus.AVAILABLE:
        raise AvailabilityError(
            f"Remote account is not available ({status.value}).",
            reason=_STATUS_REASONS[status],
            details={"container": config.container_identifier, "accountStatus": status.value},
            operation="connect",
        )

    LOGGER.info(
        "availability.connected",
        extra={
            "extra_payload": {
                "container": config.container_identifier,
                "environment": config.environment,
            }
        },
    )
    return RemoteHandle(config=config, remote=remote, account_status=status)


_RECOMMENDATIONS: dict[str, str] = {
    "noAccount": "Sign in to the remote storage account on this device.",
    "restricted": "Remote storage is restricted on this device; check account and device restrictions.",
    "unavailableNetwork": "The remote could not be reached; check network connectivity and retry.",
    "unknown": "The remote account status could not be determined; retry later.",
}


async def collect_diagnostics(
    config: RemoteConfig,
    backend: RemoteBackend | None = None,
) -> RemoteDiagnostics:
    """Connect, verify, and summarise the remote for operators."""

    recommendations: list[str] = []
    verification: VerificationResult | None = None
    try:
        handle = await connect(config, backend)
    except AvailabilityError as exc:
        initialization_status = f"failed: {exc.reason}"
        account_status = exc.details.get("accountStatus", AccountStatus.COULD_NOT_DETERMINE.value)
        recommendations.append(_RECOMMENDATIONS.get(exc.reason, _RECOMMENDATIONS["unknown"]))
    else:
        initialization_status = "initialized"
        account_status = handle.account_status.value
        verification = await handle.verify()
        if not verification.is_working:
            recommendations.append(
                _RECOMMENDATIONS.get(verification.reason or "unknown", _RECOMMENDATIONS["unknown"])
            )
            if not verification.details.get("recordCreation"):
                recommendations.append("Check that the backup container accepts new records.")

    if config.environment == "development":
        recommendations.append(
            "The container uses the development environment; production backups are not visible."
        )

    return RemoteDiagnostics(
        platform=platform_module.system().lower() or "unknown",
        container_identifier=config.container_identifier,
        initialization_status=initialization_status,
        account_status=account_status,
        verification_result=verification,
        recommendations=recommendations,
    )


__all__ = [
    "AccountStatus",
    "AvailabilityProber",
    "ProbeResult",
    "REASON_RULES",
    "RemoteConfig",
    "RemoteDiagnostics",
    "RemoteHandle",
    "VerificationResult",
    "classify_reason",
    "collect_diagnostics",
    "configure",
    "configure_from_settings",
    "connect",
]
