"""Backup orchestration over the local repository and the connected remote."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Iterator

from . import __version__
from .audit import IntegrityReport, RepairResult, audit_local_data, repair_local_data
from .availability import (
    RemoteConfig,
    RemoteDiagnostics,
    RemoteHandle,
    VerificationResult,
    collect_diagnostics,
    configure_from_settings,
    connect,
)
from .catalog import BackupCatalog
from .config import ServiceSettings
from .constants import CATEGORIES_KEY, NOTES_KEY, SETTINGS_KEY
from .diagnostics import DiagnosticLogger
from .errors import AvailabilityError, ThoughtloomError, ValidationError
from .integrity import validate_snapshot
from .models import BackupRecord, Snapshot
from .repository import LocalRepository
from .restore import RestoreEngine, RestoreReport
from .snapshots import build_snapshot, describe_device, serialize_snapshot
from .stores import FileKeyValueStore, KeyValueStore, RemoteBackend

LOGGER = logging.getLogger(__name__)

_CALLER_ERRORS = {"VALIDATION", "NOT_FOUND"}


class BackupService:
    """Create, list, restore and delete remote backups of the local data.

    Backup and restore check :meth:`RemoteHandle.probe` first and raise
    :class:`AvailabilityError` when the remote is unusable. Only one backup
    or restore runs at a time per service instance.
    """

    def __init__(
        self,
        *,
        settings: ServiceSettings,
        repository: LocalRepository,
        config: RemoteConfig,
        handle: RemoteHandle | None,
        diagnostics: DiagnosticLogger,
        backend: RemoteBackend | None = None,
        connect_error: AvailabilityError | None = None,
    ) -> None:
        self._settings = settings
        self.repository = repository
        self._config = config
        self._handle = handle
        self._diagnostics = diagnostics
        self._backend = backend
        self._connect_error = connect_error
        self._lock = asyncio.Lock()

    @classmethod
    async def open(
        cls,
        settings: ServiceSettings,
        *,
        local_store: KeyValueStore | None = None,
        backend: RemoteBackend | None = None,
    ) -> "BackupService":
        """Initialise the local repository and connect to the remote.

        A failed connection is kept and reported by remote operations, so the
        local side stays usable.
        """

        repository = LocalRepository(local_store or FileKeyValueStore(settings.local_store_dir))
        await repository.initialize()

        config = configure_from_settings(settings)
        handle: RemoteHandle | None = None
        connect_error: AvailabilityError | None = None
        try:
            handle = await connect(config, backend)
        except AvailabilityError as exc:
            connect_error = exc
            LOGGER.warning(
                "backup_service.remote_unavailable",
                extra={"extra_payload": {"reason": exc.reason}},
            )

        return cls(
            settings=settings,
            repository=repository,
            config=config,
            handle=handle,
            diagnostics=DiagnosticLogger(settings.diagnostics_dir),
            backend=backend,
            connect_error=connect_error,
        )

    @property
    def connected(self) -> bool:
        return self._handle is not None

    @contextmanager
    def _operation(self, operation: str, *, record: bool = True) -> Iterator[None]:
        try:
            yield
        except ThoughtloomError as exc:
            exc.with_operation(operation)
            if record and exc.code not in _CALLER_ERRORS:
                self._diagnostics.log(
                    code=f"{operation.upper()}_{exc.code}",
                    message=exc.message,
                    details=exc.details,
                )
            raise

    def _require_handle(self, operation: str) -> RemoteHandle:
        if self._handle is not None:
            return self._handle
        error = self._connect_error
        raise AvailabilityError(
            error.message if error else "Remote backup storage is not connected.",
            reason=error.reason if error else "unknown",
            operation=operation,
        )

    async def _catalog(self, operation: str) -> BackupCatalog:
        handle = self._require_handle(operation)
        probe = await handle.probe()
        if not probe.available:
            raise AvailabilityError(
                f"Remote backup storage is unavailable ({probe.reason}).",
                reason=probe.reason or "unknown",
                details={"accountStatus": probe.account_status.value},
                operation=operation,
            )
        return BackupCatalog(handle.remote)

    async def _snapshot_local_data(self) -> Snapshot:
        """Build a snapshot from the stored collections as they are.

        Entities are not pre-filtered, so one that fails sanitization aborts
        the backup instead of being left out of it. The snapshot must also
        pass the same validation a restore applies.
        """

        snapshot = build_snapshot(
            _stored_collection(NOTES_KEY, await self.repository.load_raw(NOTES_KEY)),
            _stored_collection(CATEGORIES_KEY, await self.repository.load_raw(CATEGORIES_KEY)),
            await self.repository.load_raw(SETTINGS_KEY),
            describe_device(await self.repository.device_id(), app_version=__version__),
        )
        validate_snapshot(
            snapshot,
            allow_duplicate_category_names=self._settings.allow_duplicate_category_names,
        )
        return snapshot

    async def create_backup(self) -> BackupRecord:
        async with self._lock:
            with self._operation("create_backup"):
                catalog = await self._catalog("create_backup")
                snapshot = await self._snapshot_local_data()
                record = await catalog.store(snapshot, serialize_snapshot(snapshot))
                pruned = await catalog.prune(self._settings.backup_retention)
        LOGGER.info(
            "backup_service.backup_created",
            extra={"extra_payload": {"key": record.key, "pruned": len(pruned)}},
        )
        return record

    async def list_backups(self) -> list[BackupRecord]:
        with self._operation("list_backups"):
            catalog = await self._catalog("list_backups")
            return await catalog.list()

    async def restore_backup(self, key: str) -> RestoreReport:
        async with self._lock:
            with self._operation("restore_backup", record=False):
                catalog = await self._catalog("restore_backup")
                engine = RestoreEngine(
                    catalog,
                    self.repository.store,
                    diagnostics=self._diagnostics,
                    safety_backup=self._settings.restore_safety_backup,
                    safety_retention=self._settings.safety_backup_retention,
                    allow_duplicate_category_names=self._settings.allow_duplicate_category_names,
                )
                return await engine.restore(key)

    async def delete_backup(self, key: str) -> None:
        with self._operation("delete_backup"):
            catalog = await self._catalog("delete_backup")
            await catalog.delete(key)

    async def prune_backups(self, keep: int | None = None) -> list[str]:
        with self._operation("prune_backups"):
            catalog = await self._catalog("prune_backups")
            return await catalog.prune(self._settings.backup_retention if keep is None else keep)

    async def verify(self) -> VerificationResult:
        if self._handle is None:
            error = self._connect_error
            return VerificationResult(
                is_working=False,
                error=error.message if error else "Remote backup storage is not connected.",
                reason=error.reason if error else "unknown",  # type: ignore[arg-type]
            )
        return await self._handle.verify()

    async def diagnostics(self) -> RemoteDiagnostics:
        return await collect_diagnostics(self._config, self._backend)

    async def audit(self) -> IntegrityReport:
        return await audit_local_data(self.repository)

    async def repair(self) -> RepairResult:
        async with self._lock:
            return await repair_local_data(self.repository)


def _stored_collection(key: str, raw: Any) -> list[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(
            f"Stored {key} are not a list; run a repair before backing up.",
            details={"key": key},
        )
    return raw


__all__ = ["BackupService"]
