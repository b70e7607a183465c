"""ISO-8601 timestamp helpers shared by the sanitizer and validator."""

from __future__ import annotations

from datetime import datetime, timezone

UTC = timezone.utc


def now() -> datetime:
    return datetime.now(tz=UTC)


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as UTC with millisecond precision and a ``Z`` suffix."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_timestamp() -> str:
    """Return the current time in canonical form."""

    return format_timestamp(now())


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 string, returning ``None`` when it is not one."""

    if not isinstance(value, str) or not value.strip():
        return None
    candidate = value.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def canonical_timestamp(value: object) -> str:
    """Return the canonical rendering of ``value`` or raise ``ValueError``."""

    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"Not an ISO-8601 timestamp: {value!r}")
    return format_timestamp(parsed)


def is_canonical_timestamp(value: object) -> bool:
    """True when ``value`` survives a parse/format round trip unchanged."""

    parsed = parse_timestamp(value)
    return parsed is not None and format_timestamp(parsed) == value


def epoch_millis(value: datetime | None = None) -> int:
    moment = value or now()
    return int(moment.timestamp() * 1000)


__all__ = [
    "UTC",
    "canonical_timestamp",
    "epoch_millis",
    "format_timestamp",
    "is_canonical_timestamp",
    "now",
    "parse_timestamp",
    "utc_timestamp",
]
