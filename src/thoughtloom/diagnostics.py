"""Diagnostic records for failed backup and restore operations."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .persistence import dump_diagnostic
from .timestamps import format_timestamp, now

_SENSITIVE_DETAIL_KEYWORDS = ("content", "label", "name", "path", "body")
_SLUG_JUNK = re.compile(r"[^a-z0-9_]+")


@dataclass
class DiagnosticLogger:
    """Write one JSON file per failure under ``directory``.

    Files are named ``<UTC stamp>_<code slug>.json`` so a lexical sort is a
    chronological one. Detail values whose key suggests user content are
    replaced with ``[REDACTED]``.
    """

    directory: Path

    def _free_path(self, stem: str) -> Path:
        path = self.directory / f"{stem}.json"
        counter = 1
        while path.exists():
            path = self.directory / f"{stem}_{counter}.json"
            counter += 1
        return path

    def log(
        self,
        *,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        moment = now()
        path = self._free_path(f"{moment.strftime('%Y%m%dT%H%M%S%fZ')}_{_slug(code)}")
        dump_diagnostic(
            path,
            {
                "timestamp": format_timestamp(moment),
                "code": code,
                "message": message,
                "details": _redact(details or {}),
            },
        )
        return path

    def recent(self, limit: int = 20) -> list[Path]:
        """Return up to ``limit`` diagnostic files, newest first."""

        if not self.directory.is_dir():
            return []
        return sorted(self.directory.glob("*.json"), reverse=True)[:limit]


def _slug(code: str) -> str:
    return _SLUG_JUNK.sub("-", code.lower()).strip("-") or "diagnostic"


def _redact(details: dict[str, Any]) -> dict[str, Any]:
    redacted: dict[str, Any] = {}
    for key, value in details.items():
        if isinstance(value, dict):
            redacted[key] = _redact(value)
        elif isinstance(value, str) and any(word in key.lower() for word in _SENSITIVE_DETAIL_KEYWORDS):
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted


__all__ = ["DiagnosticLogger"]
