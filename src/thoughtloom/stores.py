"""Key/value primitives consumed by the backup core.

The local store and the remote backend share one async shape: ``get``,
``set``, ``remove`` and ``list_keys``. The remote additionally answers
``account_status``. In-memory implementations support failure injection for
tests; file-backed implementations persist one file per key.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote, unquote

from .persistence import remove_file, write_text_atomic

LOGGER = logging.getLogger(__name__)

_VALUE_SUFFIX = ".value"


class AccountStatus(str, Enum):
    """Account state reported by the remote backend."""

    AVAILABLE = "available"
    NO_ACCOUNT = "noAccount"
    RESTRICTED = "restricted"
    COULD_NOT_DETERMINE = "couldNotDetermine"


@runtime_checkable
class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def list_keys(self, prefix: str = "") -> list[str]: ...


@runtime_checkable
class RemoteBackend(KeyValueStore, Protocol):
    async def account_status(self) -> AccountStatus: ...


@dataclass
class _InjectedFailure:
    operation: str
    key: str | None
    error: BaseException
    remaining: int


@dataclass
class MemoryKeyValueStore:
    """Dictionary-backed store with optional failure injection."""

    data: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    _failures: list[_InjectedFailure] = field(default_factory=list, repr=False)

    def inject_failure(
        self,
        operation: str,
        error: BaseException,
        *,
        key: str | None = None,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` calls of ``operation`` (optionally on ``key``) raise ``error``."""

        self._failures.append(_InjectedFailure(operation, key, error, times))

    def _record(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        for failure in self._failures:
            if failure.operation != operation or failure.remaining <= 0:
                continue
            if failure.key is not None and failure.key != key:
                continue
            failure.remaining -= 1
            raise failure.error

    @property
    def mutations(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in {"set", "remove"}]

    async def get(self, key: str) -> str | None:
        self._record("get", key)
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._record("set", key)
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self._record("remove", key)
        self.data.pop(key, None)

    async def list_keys(self, prefix: str = "") -> list[str]:
        self._record("list_keys", prefix)
        return sorted(key for key in self.data if key.startswith(prefix))


@dataclass
class MemoryRemoteBackend(MemoryKeyValueStore):
    """In-memory remote with a configurable account status."""

    status: AccountStatus = AccountStatus.AVAILABLE
    status_error: BaseException | None = None

    async def account_status(self) -> AccountStatus:
        self.calls.append(("account_status", ""))
        if self.status_error is not None:
            raise self.status_error
        return self.status


class FileKeyValueStore:
    """Store that keeps each key in its own file under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='._-')}{_VALUE_SUFFIX}"

    def _read(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _list(self, prefix: str) -> list[str]:
        if not self.root.is_dir():
            return []
        keys = [
            unquote(entry.name[: -len(_VALUE_SUFFIX)])
            for entry in self.root.iterdir()
            if entry.is_file() and entry.name.endswith(_VALUE_SUFFIX)
        ]
        return sorted(key for key in keys if key.startswith(prefix))

    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(write_text_atomic, self._path(key), value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(remove_file, self._path(key))

    async def list_keys(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._list, prefix)


class FileRemoteBackend(FileKeyValueStore):
    """Directory-backed remote container.

    A missing directory reads as ``noAccount`` and a read-only one as
    ``restricted``.
    """

    def __init__(self, root: Path, *, create: bool = False) -> None:
        super().__init__(root)
        if create:
            self.root.mkdir(parents=True, exist_ok=True)

    def _status(self) -> AccountStatus:
        if not self.root.exists():
            return AccountStatus.NO_ACCOUNT
        if not self.root.is_dir():
            return AccountStatus.COULD_NOT_DETERMINE
        if not os.access(self.root, os.W_OK):
            return AccountStatus.RESTRICTED
        return AccountStatus.AVAILABLE

    async def account_status(self) -> AccountStatus:
        status = await asyncio.to_thread(self._status)
        LOGGER.debug(
            "remote.account_status",
            extra={"extra_payload": {"root": str(self.root), "status": status.value}},
        )
        return status


__all__ = [
    "AccountStatus",
    "FileKeyValueStore",
    "FileRemoteBackend",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "MemoryRemoteBackend",
    "RemoteBackend",
]
