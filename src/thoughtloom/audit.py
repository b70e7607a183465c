"""Health checks and repairs for the local store."""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any, Literal, Mapping

from pydantic import Field

from .constants import (
    AUDIO_QUALITIES,
    CATEGORIES_KEY,
    GENERAL_CATEGORY_ID,
    NOTES_KEY,
    SETTINGS_KEY,
    THEME_MODES,
)
from .errors import ValidationError
from .integrity import validate_entity
from .models import Category, Note, WireModel
from .repository import LocalRepository, general_category
from .sanitizer import sanitize_category, sanitize_note, sanitize_settings
from .timestamps import epoch_millis, utc_timestamp

LOGGER = logging.getLogger(__name__)

IssueType = Literal["corruption", "inconsistency", "orphaned", "validation", "backup"]
Severity = Literal["low", "medium", "high", "critical"]

STALE_ROLLING_BACKUP_MILLIS = 7 * 24 * 60 * 60 * 1000
_SEVERITY_ORDER: tuple[Severity, ...] = ("critical", "high", "medium", "low")


class IntegrityIssue(WireModel):
    type: IssueType
    severity: Severity
    description: str
    affected: Any = None
    suggested_fix: str | None = None


class IntegrityReport(WireModel):
    """Result of :func:`audit_local_data`."""

    is_healthy: bool
    timestamp: str
    issues: list[IntegrityIssue] = Field(default_factory=list)
    summary: str
    recommendations: list[str] = Field(default_factory=list)


class RepairResult(WireModel):
    repaired: int
    actions: list[str] = Field(default_factory=list)
    report: IntegrityReport


class _Collector:
    def __init__(self) -> None:
        self.issues: list[IntegrityIssue] = []

    def add(
        self,
        issue_type: IssueType,
        severity: Severity,
        description: str,
        *,
        affected: Any = None,
        suggested_fix: str | None = None,
    ) -> None:
        self.issues.append(
            IntegrityIssue(
                type=issue_type,
                severity=severity,
                description=description,
                affected=affected,
                suggested_fix=suggested_fix,
            )
        )


async def _read_json(repository: LocalRepository, key: str, collector: _Collector) -> Any:
    try:
        raw = await repository.store.get(key)
    except OSError as exc:
        collector.add(
            "corruption",
            "critical",
            f"Failed to read {key}: {exc}",
            suggested_fix="Check storage permissions and free space.",
        )
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        collector.add(
            "corruption",
            "critical",
            f"Stored {key} is not valid JSON.",
            affected={"key": key},
            suggested_fix="Run a repair to recover from the newest rolling backup.",
        )
        return None


def _duplicates(ids: list[Any]) -> list[Any]:
    return sorted(str(item) for item, count in Counter(ids).items() if count > 1)


def _check_entities(
    kind: Literal["note", "category"],
    items: Any,
    collector: _Collector,
) -> list[Mapping[str, Any]]:
    label = "Notes" if kind == "note" else "Categories"
    if items is None:
        return []
    if not isinstance(items, list):
        collector.add(
            "corruption",
            "critical",
            f"{label} are not stored as a list.",
            suggested_fix="Run a repair to recover from the newest rolling backup.",
        )
        return []

    valid: list[Mapping[str, Any]] = []
    for index, item in enumerate(items):
        result = validate_entity(item, kind)
        structural = [error for error in result.errors if not error.startswith("Missing timestamp")]
        identifier = item.get("id") if isinstance(item, Mapping) else None
        if structural:
            collector.add(
                "validation",
                "high",
                f"{kind.capitalize()} at index {index} has invalid structure.",
                affected={"index": index, "id": identifier, "errors": structural},
                suggested_fix=f"The {kind} will be repaired or removed.",
            )
            continue
        if len(structural) != len(result.errors):
            collector.add(
                "validation",
                "medium",
                f"{kind.capitalize()} {identifier} is missing timestamp fields.",
                affected={"id": identifier},
                suggested_fix="Timestamps will be added.",
            )
        valid.append(item)

    duplicates = _duplicates([item.get("id") for item in valid])
    if duplicates:
        collector.add(
            "corruption",
            "high",
            f"Found {len(duplicates)} duplicate {kind} id(s).",
            affected=duplicates,
            suggested_fix="Only the first entry for each id will be kept.",
        )
    return valid


def _check_settings(settings: Any, category_ids: set[str], collector: _Collector) -> None:
    if settings is None:
        return
    if not isinstance(settings, Mapping):
        collector.add(
            "validation",
            "medium",
            "Settings are malformed.",
            suggested_fix="Settings will be reset to defaults.",
        )
        return
    for field, choices, default in (
        ("audioQuality", AUDIO_QUALITIES, "medium"),
        ("themeMode", THEME_MODES, "system"),
    ):
        value = settings.get(field)
        if value is not None and value not in choices:
            collector.add(
                "validation",
                "low",
                f"Invalid {field} setting: {value}",
                affected={field: value},
                suggested_fix=f"{field} will be reset to {default}.",
            )
    default_category = settings.get("defaultCategoryId")
    if isinstance(default_category, str) and default_category not in category_ids:
        collector.add(
            "inconsistency",
            "low",
            f"Default category {default_category} does not exist.",
            affected={"defaultCategoryId": default_category},
            suggested_fix="The general category will become the default.",
        )


async def _check_rolling_backups(repository: LocalRepository, collector: _Collector, now_millis: int) -> None:
    try:
        stamped: list[int] = []
        for key in (NOTES_KEY, CATEGORIES_KEY, SETTINGS_KEY):
            stamped.extend(int(item.rsplit("_", 1)[1]) for item in await repository.rolling_keys(key))
    except OSError as exc:
        collector.add(
            "backup",
            "medium",
            f"Failed to check rolling backups: {exc}",
            suggested_fix="Check storage permissions and free space.",
        )
        return
    if not stamped:
        collector.add(
            "backup",
            "low",
            "No rolling backups found.",
            suggested_fix="Rolling backups are written on the next data change.",
        )
        return
    stale = [stamp for stamp in stamped if now_millis - stamp > STALE_ROLLING_BACKUP_MILLIS]
    if stale:
        collector.add(
            "backup",
            "low",
            f"{len(stale)} rolling backup(s) are older than 7 days.",
            suggested_fix="Old rolling backups are replaced as data changes.",
        )


def _summary(issues: list[IntegrityIssue]) -> str:
    if not issues:
        return "All data integrity checks passed."
    counts = Counter(issue.severity for issue in issues)
    parts = [f"{counts[severity]} {severity}" for severity in _SEVERITY_ORDER if counts[severity]]
    return f"Found {len(issues)} data integrity issue(s): {', '.join(parts)} severity"


def _recommendations(issues: list[IntegrityIssue]) -> list[str]:
    recommendations: list[str] = []
    if any(issue.severity == "critical" for issue in issues):
        recommendations.append("Critical issues detected; act before making further changes.")
        recommendations.append("Consider restoring from a backup.")
    types = {issue.type for issue in issues}
    if "corruption" in types or "validation" in types:
        recommendations.append("Run a repair to fix invalid or corrupted data.")
    if "orphaned" in types:
        recommendations.append("Run a repair to move orphaned notes to the general category.")
    if "backup" in types:
        recommendations.append("Create a remote backup to keep a recent copy of your data.")
    if not recommendations:
        recommendations.append("No action required.")
    return recommendations


async def audit_local_data(
    repository: LocalRepository,
    *,
    now_millis: int | None = None,
) -> IntegrityReport:
    """Inspect the local store without modifying it."""

    collector = _Collector()

    raw_notes = await _read_json(repository, NOTES_KEY, collector)
    raw_categories = await _read_json(repository, CATEGORIES_KEY, collector)
    raw_settings = await _read_json(repository, SETTINGS_KEY, collector)

    notes = _check_entities("note", raw_notes, collector)
    categories = _check_entities("category", raw_categories, collector)
    category_ids = {str(category.get("id")) for category in categories}

    if raw_categories is not None and GENERAL_CATEGORY_ID not in category_ids:
        collector.add(
            "corruption",
            "critical",
            "The general category is missing.",
            suggested_fix="The general category will be recreated.",
        )

    orphaned = [
        {"id": note.get("id"), "categoryId": note.get("categoryId")}
        for note in notes
        if note.get("categoryId") and note.get("categoryId") not in category_ids
    ]
    if orphaned:
        collector.add(
            "orphaned",
            "medium",
            f"{len(orphaned)} note(s) reference categories that do not exist.",
            affected=orphaned,
            suggested_fix="Notes will be moved to the general category.",
        )

    _check_settings(raw_settings, category_ids, collector)
    await _check_rolling_backups(repository, collector, now_millis or epoch_millis())

    issues = collector.issues
    report = IntegrityReport(
        is_healthy=not any(issue.severity in {"critical", "high"} for issue in issues),
        timestamp=utc_timestamp(),
        issues=issues,
        summary=_summary(issues),
        recommendations=_recommendations(issues),
    )
    LOGGER.info(
        "audit.completed",
        extra={"extra_payload": {"healthy": report.is_healthy, "issues": len(issues)}},
    )
    return report


def _sanitized_unique(items: Any, sanitize: Any, actions: list[str], kind: str) -> list[Any]:
    if not isinstance(items, list):
        return []
    kept: dict[str, Any] = {}
    for item in items:
        try:
            entity = sanitize(item)
        except ValidationError:
            actions.append(f"Removed an invalid {kind}.")
            continue
        if entity.id in kept:
            actions.append(f"Removed duplicate {kind} {entity.id}.")
            continue
        kept[entity.id] = entity
    return list(kept.values())


async def repair_local_data(repository: LocalRepository) -> RepairResult:
    """Fix what :func:`audit_local_data` reports and return a fresh report."""

    actions: list[str] = []

    raw_categories = await repository.load_raw(CATEGORIES_KEY)
    categories: list[Category] = _sanitized_unique(raw_categories, sanitize_category, actions, "category")
    if not any(category.id == GENERAL_CATEGORY_ID for category in categories):
        categories.insert(0, general_category())
        actions.append("Recreated the general category.")
    category_ids = {category.id for category in categories}

    raw_notes = await repository.load_raw(NOTES_KEY)
    notes: list[Note] = _sanitized_unique(raw_notes, sanitize_note, actions, "note")
    for index, note in enumerate(notes):
        if note.category_id not in category_ids:
            notes[index] = note.model_copy(update={"category_id": GENERAL_CATEGORY_ID})
            actions.append(f"Moved note {note.id} to the general category.")

    settings = sanitize_settings(await repository.load_raw(SETTINGS_KEY))
    if settings.default_category_id not in category_ids:
        settings = settings.model_copy(update={"default_category_id": GENERAL_CATEGORY_ID})
        actions.append("Reset the default category to general.")

    await repository.save_categories(categories)
    await repository.save_notes(notes)
    await repository.save_settings(settings)

    LOGGER.info("audit.repaired", extra={"extra_payload": {"actions": len(actions)}})
    return RepairResult(
        repaired=len(actions),
        actions=actions,
        report=await audit_local_data(repository),
    )


__all__ = [
    "IntegrityIssue",
    "IntegrityReport",
    "RepairResult",
    "audit_local_data",
    "repair_local_data",
]
