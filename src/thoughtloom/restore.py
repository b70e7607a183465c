"""Restore engine: fetch, validate, then replace local entities."""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from .catalog import BackupCatalog
from .constants import (
    CATEGORIES_KEY,
    NOTES_KEY,
    SAFETY_BACKUP_PREFIX,
    SETTINGS_KEY,
    STAGING_SUFFIX,
)
from .diagnostics import DiagnosticLogger
from .errors import IntegrityError, ThoughtloomError, translate_io_errors
from .integrity import validate_snapshot
from .models import Snapshot
from .snapshots import parse_snapshot
from .stores import KeyValueStore
from .timestamps import epoch_millis, utc_timestamp

LOGGER = logging.getLogger(__name__)

REPLACEMENT_ORDER: tuple[str, ...] = (CATEGORIES_KEY, NOTES_KEY, SETTINGS_KEY)
SAFETY_KEY_RE = re.compile(rf"^{SAFETY_BACKUP_PREFIX}\d+$")


class RestorePhase(str, Enum):
    FETCHING = "fetching"
    VALIDATING = "validating"
    REPLACING = "replacing"
    DONE = "done"
    FAILED = "failed"


class RestoreReport(BaseModel):
    """Progress and outcome of a single restore."""

    key: str
    phase: RestorePhase = RestorePhase.FETCHING
    history: list[RestorePhase] = Field(default_factory=lambda: [RestorePhase.FETCHING])
    notes_restored: int = 0
    categories_restored: int = 0
    replaced_kinds: list[str] = Field(default_factory=list)
    rolled_back_kinds: list[str] = Field(default_factory=list)
    safety_backup_key: str | None = None
    warnings: list[str] = Field(default_factory=list)
    error_code: str | None = None

    def advance(self, phase: RestorePhase) -> None:
        self.phase = phase
        self.history.append(phase)
        LOGGER.info("restore.phase", extra={"extra_payload": {"key": self.key, "phase": phase.value}})


def _collections(snapshot: Snapshot) -> dict[str, str]:
    payloads: dict[str, Any] = {
        CATEGORIES_KEY: [category.to_wire() for category in snapshot.categories],
        NOTES_KEY: [note.to_wire() for note in snapshot.notes],
        SETTINGS_KEY: snapshot.settings.to_wire(),
    }
    return {kind: json.dumps(payload, ensure_ascii=False) for kind, payload in payloads.items()}


def _lenient_json(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


class RestoreEngine:
    """Replace the local collections with the contents of a stored snapshot.

    Local data is only touched once the snapshot has parsed, sanitized and
    passed :func:`~thoughtloom.integrity.validate_snapshot`. Replacement
    writes every collection to ``<kind>.staging`` first, then swaps each
    kind in dependency order (categories, notes, settings) from the value
    read back out of its staging key. If a swap fails the kinds already
    swapped are put back to their previous values, so notes never point at
    categories from a different snapshot. A failure
    while rolling back is logged and leaves the remaining kinds as they
    were; the optional safety snapshot is the recovery path for that window.
    """

    def __init__(
        self,
        catalog: BackupCatalog,
        local: KeyValueStore,
        *,
        diagnostics: DiagnosticLogger | None = None,
        safety_backup: bool = True,
        safety_retention: int = 3,
        allow_duplicate_category_names: bool = False,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self._catalog = catalog
        self._local = local
        self._diagnostics = diagnostics
        self._safety_backup = safety_backup
        self._safety_retention = safety_retention
        self._allow_duplicate_category_names = allow_duplicate_category_names
        self._clock = clock

    async def restore(self, key: str) -> RestoreReport:
        report = RestoreReport(key=key)
        try:
            body = await self._catalog.fetch(key)

            report.advance(RestorePhase.VALIDATING)
            snapshot = parse_snapshot(body)
            report.warnings = validate_snapshot(
                snapshot,
                allow_duplicate_category_names=self._allow_duplicate_category_names,
            )

            report.advance(RestorePhase.REPLACING)
            if self._safety_backup:
                report.safety_backup_key = await self._write_safety_backup(key)
            await self._replace(snapshot, report)
        except ThoughtloomError as exc:
            exc.with_operation("restore")
            self._fail(report, exc)
            raise

        report.notes_restored = len(snapshot.notes)
        report.categories_restored = len(snapshot.categories)
        report.advance(RestorePhase.DONE)
        LOGGER.info(
            "restore.completed",
            extra={
                "extra_payload": {
                    "key": key,
                    "notes": report.notes_restored,
                    "categories": report.categories_restored,
                }
            },
        )
        return report

    def _fail(self, report: RestoreReport, exc: ThoughtloomError) -> None:
        failed_in = report.phase
        report.error_code = exc.code
        report.advance(RestorePhase.FAILED)
        LOGGER.warning(
            "restore.failed",
            extra={
                "extra_payload": {
                    "key": report.key,
                    "phase": failed_in.value,
                    "code": exc.code,
                    "replaced": report.replaced_kinds,
                }
            },
        )
        if self._diagnostics is not None:
            self._diagnostics.log(
                code=f"RESTORE_{exc.code}",
                message=exc.message,
                details={
                    "key": report.key,
                    "phase": failed_in.value,
                    "replaced_kinds": list(report.replaced_kinds),
                    "rolled_back_kinds": list(report.rolled_back_kinds),
                    **exc.details,
                },
            )

    async def _read_current(self) -> dict[str, str | None]:
        with translate_io_errors("restore.read_local"):
            return {kind: await self._local.get(kind) for kind in REPLACEMENT_ORDER}

    async def _write_safety_backup(self, source_key: str) -> str:
        current = await self._read_current()
        safety_key = f"{SAFETY_BACKUP_PREFIX}{self._clock()}"
        payload = {
            "metadata": {"createdAt": utc_timestamp(), "sourceBackup": source_key},
            **{kind: _lenient_json(raw) for kind, raw in current.items()},
        }
        with translate_io_errors("restore.safety_backup"):
            await self._local.set(safety_key, json.dumps(payload, ensure_ascii=False))
            existing = sorted(
                (item for item in await self._local.list_keys(SAFETY_BACKUP_PREFIX) if SAFETY_KEY_RE.match(item)),
                key=lambda item: int(item[len(SAFETY_BACKUP_PREFIX) :]),
            )
            for stale in existing[: -self._safety_retention]:
                await self._local.remove(stale)
        LOGGER.info("restore.safety_backup", extra={"extra_payload": {"key": safety_key}})
        return safety_key

    async def _replace(self, snapshot: Snapshot, report: RestoreReport) -> None:
        staged = _collections(snapshot)
        previous = await self._read_current()

        with translate_io_errors("restore.stage"):
            for kind in REPLACEMENT_ORDER:
                await self._local.set(f"{kind}{STAGING_SUFFIX}", staged[kind])

        try:
            with translate_io_errors("restore.swap"):
                for kind in REPLACEMENT_ORDER:
                    value = await self._local.get(f"{kind}{STAGING_SUFFIX}")
                    if value != staged[kind]:
                        raise IntegrityError(
                            f"Staged {kind} did not read back as written.",
                            details={"violation": "staging", "kind": kind},
                        )
                    await self._local.set(kind, value)
                    report.replaced_kinds.append(kind)
        except ThoughtloomError:
            await self._roll_back(previous, report)
            raise

        with translate_io_errors("restore.cleanup"):
            for kind in REPLACEMENT_ORDER:
                await self._local.remove(f"{kind}{STAGING_SUFFIX}")

    async def _roll_back(self, previous: dict[str, str | None], report: RestoreReport) -> None:
        for kind in reversed(report.replaced_kinds):
            value = previous[kind]
            try:
                if value is None:
                    await self._local.remove(kind)
                else:
                    await self._local.set(kind, value)
            except OSError:
                LOGGER.error(
                    "restore.rollback_failed",
                    extra={"extra_payload": {"key": report.key, "kind": kind}},
                    exc_info=True,
                )
                return
            report.rolled_back_kinds.append(kind)


__all__ = ["REPLACEMENT_ORDER", "RestoreEngine", "RestorePhase", "RestoreReport"]
