"""Naming, listing and pruning of snapshots stored on the remote backend."""

from __future__ import annotations

import json
import logging
import re
import secrets
import string
from datetime import datetime
from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from .constants import BACKUP_INDEX_KEY, BACKUP_KEY_PREFIX, BACKUP_META_SUFFIX
from .errors import IntegrityError, NotFoundError, translate_io_errors
from .models import BackupRecord, DataSummary, DeviceInfo, Snapshot
from .snapshots import parse_snapshot, serialize_snapshot
from .stores import KeyValueStore
from .timestamps import UTC, epoch_millis, format_timestamp

LOGGER = logging.getLogger(__name__)

BACKUP_KEY_RE = re.compile(r"^backup_(\d+)_([a-z0-9]{6})$")
DEFAULT_KEEP = 5

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


def random_token(length: int = 6) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def record_from_snapshot(key: str, snapshot: Snapshot, size_bytes: int) -> BackupRecord:
    metadata = snapshot.metadata
    return BackupRecord(
        key=key,
        created_at=metadata.created_at,
        device_descriptor=metadata.device_info,
        size_bytes=size_bytes,
        summary=metadata.data_summary,
        format_version=metadata.format_version,
    )


def _record_from_key(key: str) -> BackupRecord:
    """Placeholder record for a legacy body whose metadata cannot be read."""

    match = BACKUP_KEY_RE.match(key)
    millis = int(match.group(1)) if match else 0
    created = datetime.fromtimestamp(millis / 1000, tz=UTC)
    return BackupRecord(
        key=key,
        created_at=format_timestamp(created),
        device_descriptor=DeviceInfo(platform="unknown", version="unknown", device_id="unknown"),
        size_bytes=0,
        summary=DataSummary(notes_count=0, categories_count=0, has_settings=False),
        format_version="unknown",
    )


class BackupCatalog:
    """Stores snapshot bodies under generated keys and tracks them in an index.

    Layout on the remote:

    * ``backup_<epochMillis>_<random6>``: the serialised snapshot body.
    * ``<key>.meta``: the :class:`BackupRecord` for that body, so listing
      never reads bodies.
    * ``backup_list``: JSON array of known keys, oldest first.
    """

    def __init__(
        self,
        remote: KeyValueStore,
        *,
        clock: Callable[[], int] = epoch_millis,
        token_factory: Callable[[], str] = random_token,
    ) -> None:
        self._remote = remote
        self._clock = clock
        self._token_factory = token_factory

    @staticmethod
    def meta_key(key: str) -> str:
        return f"{key}{BACKUP_META_SUFFIX}"

    def _new_key(self, taken: set[str]) -> str:
        while True:
            key = f"{BACKUP_KEY_PREFIX}{self._clock()}_{self._token_factory()}"
            if key not in taken:
                return key

    async def _listed_keys(self) -> list[str]:
        with translate_io_errors("catalog.list_keys"):
            listed = await self._remote.list_keys(BACKUP_KEY_PREFIX)
        return [key for key in listed if BACKUP_KEY_RE.match(key)]

    async def read_index(self) -> list[str]:
        """Return the indexed keys, oldest first."""

        with translate_io_errors("catalog.read_index"):
            raw = await self._remote.get(BACKUP_INDEX_KEY)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list) and all(isinstance(item, str) for item in parsed):
            return parsed
        LOGGER.warning("catalog.index_corrupt", extra={"extra_payload": {"key": BACKUP_INDEX_KEY}})
        rebuilt = sorted(await self._listed_keys(), key=_sort_key)
        await self._write_index(rebuilt)
        return rebuilt

    async def _write_index(self, keys: list[str]) -> None:
        with translate_io_errors("catalog.write_index"):
            await self._remote.set(BACKUP_INDEX_KEY, json.dumps(keys))

    async def store(self, snapshot: Snapshot, body: str) -> BackupRecord:
        """Write ``body`` (the serialised ``snapshot``) and index it."""

        index = await self.read_index()
        key = self._new_key(set(index))
        record = record_from_snapshot(key, snapshot, len(body.encode("utf-8")))
        with translate_io_errors("catalog.create"):
            await self._remote.set(key, body)
            await self._remote.set(self.meta_key(key), json.dumps(record.to_wire()))
        index.append(key)
        await self._write_index(index)
        LOGGER.info(
            "catalog.created",
            extra={"extra_payload": {"key": key, "size_bytes": record.size_bytes}},
        )
        return record

    async def create(self, snapshot: Snapshot) -> str:
        """Store ``snapshot`` and return its new key."""

        record = await self.store(snapshot, serialize_snapshot(snapshot))
        return record.key

    async def fetch(self, key: str) -> str:
        """Return the raw body stored under ``key``."""

        if not BACKUP_KEY_RE.match(key):
            raise NotFoundError(f"Backup {key!r} does not exist.", details={"key": key})
        with translate_io_errors("catalog.fetch"):
            body = await self._remote.get(key)
        # An empty body is the legacy "deleted" marker.
        if not body:
            raise NotFoundError(f"Backup {key!r} does not exist.", details={"key": key})
        return body

    async def _read_record(self, key: str) -> BackupRecord | None:
        with translate_io_errors("catalog.read_metadata"):
            raw = await self._remote.get(self.meta_key(key))
        if not raw:
            return None
        try:
            return BackupRecord.model_validate_json(raw)
        except PydanticValidationError:
            LOGGER.warning("catalog.metadata_corrupt", extra={"extra_payload": {"key": key}})
            return None

    async def _legacy_record(self, key: str) -> BackupRecord | None:
        """Recover a record for a body stored without metadata.

        Returns ``None`` when the body is absent or empty. The recovered
        record is written back so later listings skip the body read.
        """

        with translate_io_errors("catalog.read_legacy"):
            body = await self._remote.get(key)
        if not body:
            return None
        record: BackupRecord
        try:
            record = record_from_snapshot(key, parse_snapshot(body), len(body.encode("utf-8")))
        except IntegrityError:
            LOGGER.warning("catalog.legacy_unreadable", extra={"extra_payload": {"key": key}}, exc_info=True)
            return _record_from_key(key)
        with translate_io_errors("catalog.write_metadata"):
            await self._remote.set(self.meta_key(key), json.dumps(record.to_wire()))
        return record

    async def list(self) -> list[BackupRecord]:
        """Return records newest first, pruning index entries whose body is gone."""

        index = await self.read_index()
        present = set(await self._listed_keys())
        records: list[BackupRecord] = []
        stale: list[str] = []
        for key in reversed(index):
            if key not in present:
                stale.append(key)
                continue
            record = await self._read_record(key) or await self._legacy_record(key)
            if record is None:
                stale.append(key)
                continue
            records.append(record)

        if stale:
            await self._write_index([key for key in index if key not in stale])
            LOGGER.info(
                "catalog.self_healed",
                extra={"extra_payload": {"pruned": stale, "remaining": len(index) - len(stale)}},
            )
        return records

    async def delete(self, key: str) -> None:
        """Remove ``key`` from the index, then remove its body and metadata."""

        index = await self.read_index()
        indexed = key in index
        exists = key in await self._listed_keys()
        if not indexed and not exists:
            raise NotFoundError(f"Backup {key!r} does not exist.", details={"key": key})
        if indexed:
            await self._write_index([item for item in index if item != key])
        with translate_io_errors("catalog.delete"):
            await self._remote.remove(key)
            await self._remote.remove(self.meta_key(key))
        LOGGER.info("catalog.deleted", extra={"extra_payload": {"key": key}})

    async def prune(self, keep: int = DEFAULT_KEEP) -> list[str]:
        """Delete the oldest backups beyond ``keep`` and return their keys."""

        if keep < 0:
            raise ValueError("keep must be zero or greater")
        index = await self.read_index()
        excess = len(index) - keep
        if excess <= 0:
            return []
        victims, survivors = index[:excess], index[excess:]
        await self._write_index(survivors)
        with translate_io_errors("catalog.prune"):
            for key in victims:
                await self._remote.remove(key)
                await self._remote.remove(self.meta_key(key))
        LOGGER.info(
            "catalog.pruned",
            extra={"extra_payload": {"deleted": victims, "kept": len(survivors)}},
        )
        return victims


def _sort_key(key: str) -> tuple[int, str]:
    match = BACKUP_KEY_RE.match(key)
    return (int(match.group(1)) if match else 0, key)


__all__ = [
    "BACKUP_KEY_RE",
    "BackupCatalog",
    "DEFAULT_KEEP",
    "random_token",
    "record_from_snapshot",
]
