"""Atomic file writes for the directory-backed key/value stores."""

from __future__ import annotations

import errno
import json
import os
import time
from contextlib import contextmanager
from pathlib import Path
from threading import Lock, RLock
from typing import IO, Any, Iterator
from uuid import uuid4

# EACCES/EPERM on POSIX, ERROR_ACCESS_DENIED/ERROR_SHARING_VIOLATION on Windows.
_RETRY_ERRNOS = frozenset({errno.EACCES, errno.EPERM})
_RETRY_WINERRORS = frozenset({5, 32})


class _PathLocks:
    """Per-path re-entrant locks shared by every writer in the process."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[str, RLock] = {}

    def for_path(self, target: Path) -> RLock:
        with self._guard:
            return self._locks.setdefault(str(target), RLock())


_LOCKS = _PathLocks()


@contextmanager
def locked_path(target: Path) -> Iterator[None]:
    """Hold the process-wide lock for ``target`` while the block runs."""

    with _LOCKS.for_path(target):
        yield


def flush_handle(handle: IO[Any], *, durable: bool) -> None:
    handle.flush()
    if durable:
        os.fsync(handle.fileno())


def _retryable(exc: OSError) -> bool:
    return exc.errno in _RETRY_ERRNOS or getattr(exc, "winerror", None) in _RETRY_WINERRORS


def replace_file(temp_path: Path, target_path: Path, *, attempts: int = 5, delay: float = 0.05) -> None:
    """Rename ``temp_path`` over ``target_path``.

    A rename refused because another process holds the target open is
    retried with a growing pause; any other failure is raised at once.
    """

    for attempt in range(1, attempts + 1):
        try:
            temp_path.replace(target_path)
        except OSError as exc:
            if attempt == attempts or not _retryable(exc):
                raise
            time.sleep(delay * attempt)
        else:
            return


def write_text_atomic(path: Path, content: str, *, durable: bool = True) -> None:
    """Write ``content`` to ``path`` as UTF-8, byte for byte.

    Readers see either the old file or the complete new one. The temporary
    sibling is removed when the write or the rename fails.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    scratch = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
    with locked_path(path):
        try:
            with scratch.open("w", encoding="utf-8", newline="") as handle:
                handle.write(content)
                flush_handle(handle, durable=durable)
            replace_file(scratch, path)
        finally:
            scratch.unlink(missing_ok=True)


def remove_file(path: Path) -> None:
    with locked_path(path):
        path.unlink(missing_ok=True)


def dump_diagnostic(path: Path, payload: dict[str, Any]) -> None:
    """Write ``payload`` as indented JSON."""

    write_text_atomic(path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


__all__ = [
    "dump_diagnostic",
    "flush_handle",
    "locked_path",
    "remove_file",
    "replace_file",
    "write_text_atomic",
]
