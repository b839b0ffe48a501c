"""Health checks, statistics and retention for a knowledge base root.

These are the operations behind the ``llkb health``, ``llkb stats`` and
``llkb prune`` commands. They report problems in their results instead of
raising, so a damaged knowledge base can still be inspected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Literal

from llkb.core.config import LLKBConfig, load_config
from llkb.core.constants import CONFIG_FILENAME, LOW_SUCCESS_MIN_OCCURRENCES
from llkb.core.errors import ConfigInvalidError, CorruptDataError, LLKBError, StoreError
from llkb.core.logging import get_logger
from llkb.learning.analytics import AnalyticsAggregator
from llkb.learning.confidence import ConfidenceConfig, ConfidenceModel
from llkb.learning.history import EntityArchivedEvent, HistoryLog, HistoryStats
from llkb.learning.store import (
    AnalyticsSnapshot,
    Collection,
    Component,
    ComponentsFile,
    KnowledgeStore,
    Lesson,
    LessonsFile,
)
from llkb.utils.time import days_between, ensure_utc, utc_now

_logger = get_logger("maintenance")

CheckStatus = Literal["pass", "warn", "fail"]
HealthStatus = Literal["healthy", "warning", "error"]


# =============================================================================
# Health
# =============================================================================


@dataclass
class HealthCheck:
    name: str
    status: CheckStatus
    message: str
    details: str | None = None


@dataclass
class HealthReport:
    """Result of run_health_check().

    Attributes:
        status: error if any check failed, warning if any warned, else healthy.
        checks: Individual checks in the order they ran.
        summary: One-line description of the overall status.
    """

    status: HealthStatus
    checks: list[HealthCheck]
    summary: str

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "summary": self.summary,
            "checks": [
                {
                    "name": c.name,
                    "status": c.status,
                    "message": c.message,
                    "details": c.details,
                }
                for c in self.checks
            ],
        }


def _confidence_model(config: LLKBConfig) -> ConfidenceModel:
    return ConfidenceModel(
        ConfidenceConfig(
            min_component_uses=config.retention.min_component_uses,
            component_age_days=float(config.retention.archive_unused),
        )
    )


def _check_collection(store: KnowledgeStore, collection: Collection) -> HealthCheck:
    name = collection.filename
    if not store.exists(collection):
        return HealthCheck(name, "warn", f"{name} not found")
    try:
        store.load(collection)
    except CorruptDataError as e:
        return HealthCheck(name, "fail", f"{name} is corrupt", details=e.detail)
    except StoreError as e:
        return HealthCheck(name, "fail", f"{name} is unreadable", details=str(e))
    return HealthCheck(name, "pass", f"{name} is valid")


def run_health_check(root: Path) -> HealthReport:
    """Check the directory layout, file integrity and lesson health of a root."""
    checks: list[HealthCheck] = []

    if root.is_dir():
        checks.append(HealthCheck("Directory exists", "pass", f"LLKB directory found at {root}"))
    else:
        checks.append(
            HealthCheck("Directory exists", "fail", f"LLKB directory not found at {root}")
        )

    config_path = root / CONFIG_FILENAME
    config = LLKBConfig()
    if not config_path.exists():
        checks.append(
            HealthCheck("Config file", "warn", f"{CONFIG_FILENAME} not found - using defaults")
        )
    else:
        try:
            config = LLKBConfig.from_yaml(config_path)
            checks.append(HealthCheck("Config file", "pass", f"{CONFIG_FILENAME} is valid"))
        except ConfigInvalidError as e:
            checks.append(
                HealthCheck(
                    "Config file",
                    "warn",
                    f"{CONFIG_FILENAME} is invalid - using defaults",
                    details=str(e),
                )
            )

    store = KnowledgeStore(root, config.locking)
    collection_checks = {c: _check_collection(store, c) for c in Collection}
    checks.extend(collection_checks.values())

    history = HistoryLog(store.history_dir)
    if store.history_dir.is_dir():
        checks.append(
            HealthCheck(
                "History directory",
                "pass",
                f"History directory found with {len(history.partitions())} files",
            )
        )
    else:
        checks.append(
            HealthCheck(
                "History directory",
                "warn",
                "History directory not found - will be created on first event",
            )
        )

    if collection_checks[Collection.LESSONS].status == "pass":
        checks.append(_check_lesson_health(store.load_lessons(), _confidence_model(config)))

    failed = [c for c in checks if c.status == "fail"]
    warned = [c for c in checks if c.status == "warn"]
    if failed:
        report = HealthReport("error", checks, f"LLKB has errors: {len(failed)} failed checks")
    elif warned:
        report = HealthReport("warning", checks, f"LLKB has warnings: {len(warned)} warnings")
    else:
        report = HealthReport("healthy", checks, "LLKB is healthy")

    _logger.debug("health_checked", root=str(root), status=report.status)
    return report


def _check_lesson_health(lessons: LessonsFile, model: ConfidenceModel) -> HealthCheck:
    active = lessons.active()
    low = [
        lesson for lesson in active
        if lesson.metrics.confidence < model.config.review_threshold
    ]
    declining = [lesson for lesson in active if model.detect_declining(lesson)]
    if not low and not declining:
        return HealthCheck("Lesson health", "pass", "All lessons healthy")
    details = [
        *(f"Low confidence: {lesson.id} ({lesson.metrics.confidence})" for lesson in low),
        *(f"Declining: {lesson.id}" for lesson in declining),
    ]
    return HealthCheck(
        "Lesson health",
        "warn",
        f"{len(low)} low confidence, {len(declining)} declining",
        details=", ".join(details),
    )


# =============================================================================
# Stats
# =============================================================================


@dataclass
class StatsReport:
    """Analytics snapshot plus history statistics."""

    analytics: AnalyticsSnapshot
    history: HistoryStats


def get_stats(root: Path, now: datetime | None = None) -> StatsReport:
    """Return the stored analytics snapshot and history statistics.

    Raises:
        StoreError: If analytics.json is corrupt or unreadable.
    """
    store = KnowledgeStore(root)
    history = HistoryLog(store.history_dir)
    return StatsReport(analytics=store.load_analytics(), history=history.stats(now))


# =============================================================================
# Prune
# =============================================================================


@dataclass
class PruneReport:
    """What prune() removed or archived (or would, in a dry run).

    Attributes:
        dry_run: True if nothing was changed.
        history_files: Expired history partitions.
        archived_lessons: Ids of lessons selected by the retention policy.
        archived_components: Ids of components selected by the retention policy.
        reasons: Why each archived entity was selected, keyed by id.
        errors: Failures collected along the way.
    """

    dry_run: bool
    history_files: list[Path] = field(default_factory=list)
    archived_lessons: list[str] = field(default_factory=list)
    archived_components: list[str] = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "dryRun": self.dry_run,
            "historyFiles": [p.name for p in self.history_files],
            "archivedLessons": self.archived_lessons,
            "archivedComponents": self.archived_components,
            "reasons": self.reasons,
            "errors": self.errors,
        }


@dataclass
class RetentionPolicy:
    """Decides which active lessons and components are archived.

    Attributes:
        max_lesson_age: Days without a success before a lesson is stale.
            Lessons that never succeeded count from when they were first seen.
        min_success_rate: Lessons with at least LOW_SUCCESS_MIN_OCCURRENCES
            occurrences and a lower success rate are archived.
        model: Confidence model whose low-usage rule selects components.
        inactive_cutoff: Anything with no activity since this time is
            archived too. None disables the rule.
    """

    max_lesson_age: int
    min_success_rate: float
    model: ConfidenceModel
    inactive_cutoff: datetime | None = None

    @classmethod
    def from_config(
        cls,
        config: LLKBConfig,
        inactive_cutoff: datetime | None = None,
    ) -> RetentionPolicy:
        return cls(
            max_lesson_age=config.retention.max_lesson_age,
            min_success_rate=config.retention.min_success_rate,
            model=_confidence_model(config),
            inactive_cutoff=inactive_cutoff,
        )

    def lesson_reason(self, lesson: Lesson, now: datetime) -> str | None:
        """Why a lesson should be archived, or None to keep it."""
        if self.inactive_cutoff is not None and lesson.last_activity < self.inactive_cutoff:
            return f"no activity since {self.inactive_cutoff.date().isoformat()}"
        metrics = lesson.metrics
        proven_at = metrics.last_success or metrics.first_seen
        if days_between(proven_at, now) > self.max_lesson_age:
            return f"no success in {self.max_lesson_age} days"
        if (
            metrics.occurrences >= LOW_SUCCESS_MIN_OCCURRENCES
            and metrics.success_rate < self.min_success_rate
        ):
            return (
                f"success rate {metrics.success_rate:.2f} below "
                f"{self.min_success_rate:.2f}"
            )
        return None

    def component_reason(self, component: Component, now: datetime) -> str | None:
        """Why a component should be archived, or None to keep it."""
        if (
            self.inactive_cutoff is not None
            and component.last_activity < self.inactive_cutoff
        ):
            return f"no activity since {self.inactive_cutoff.date().isoformat()}"
        if self.model.is_low_usage(component, now):
            config = self.model.config
            return (
                f"fewer than {config.min_component_uses} uses after "
                f"{config.component_age_days:g} days"
            )
        return None


def prune(
    root: Path,
    force: bool = False,
    history_retention_days: int | None = None,
    archive_inactive_days: int | None = None,
    now: datetime | None = None,
) -> PruneReport:
    """Apply the retention policy to a knowledge base root.

    Deletes history partitions older than history.retentionDays and archives:

    - lessons with no success in retention.maxLessonAge days
    - lessons whose success rate stays below retention.minSuccessRate
    - components older than retention.archiveUnused days with fewer than
      retention.minComponentUses uses
    - with archive_inactive_days, anything with no activity in that window

    App quirks are never archived. Without force this is a dry run.

    Args:
        root: Knowledge base root.
        force: Actually delete and archive.
        history_retention_days: Overrides history.retentionDays.
        archive_inactive_days: Extra inactivity window for archiving.
        now: Current time (defaults to now).
    """
    now = ensure_utc(now or utc_now())
    config = load_config(root)
    store = KnowledgeStore(root, config.locking)
    history = HistoryLog(
        store.history_dir,
        locked_appends=config.history.locked_appends,
        locking=config.locking,
    )
    report = PruneReport(dry_run=not force)

    retention = history_retention_days or config.history.retention_days
    history_result = history.prune(retention, now=now, dry_run=not force)
    report.history_files = history_result.removed
    report.errors.extend(history_result.errors)

    cutoff = None
    if archive_inactive_days is not None:
        cutoff = now - timedelta(days=archive_inactive_days)
    policy = RetentionPolicy.from_config(config, inactive_cutoff=cutoff)
    _archive(store, history, policy, report, now)

    if force and (report.archived_lessons or report.archived_components):
        try:
            AnalyticsAggregator(store, policy.model, history).refresh(now=now)
        except LLKBError as e:
            report.errors.append(f"analytics: {e}")

    _logger.info(
        "prune_completed",
        dry_run=report.dry_run,
        history_files=len(report.history_files),
        archived_lessons=len(report.archived_lessons),
        archived_components=len(report.archived_components),
        errors=len(report.errors),
    )
    return report


def _archive(
    store: KnowledgeStore,
    history: HistoryLog,
    policy: RetentionPolicy,
    report: PruneReport,
    now: datetime,
) -> None:
    def archive_lessons(data: LessonsFile) -> list[str]:
        selected: list[Lesson] = []
        for lesson in data.active():
            reason = policy.lesson_reason(lesson, now)
            if reason is not None:
                report.reasons[lesson.id] = reason
                selected.append(lesson)
        if not report.dry_run:
            for lesson in selected:
                lesson.archived = True
                lesson.archived_at = now
                data.lessons.remove(lesson)
                data.archived.append(lesson)
        return [lesson.id for lesson in selected]

    def archive_components(data: ComponentsFile) -> list[str]:
        selected: list[Component] = []
        for component in data.active():
            reason = policy.component_reason(component, now)
            if reason is not None:
                report.reasons[component.id] = reason
                selected.append(component)
        if not report.dry_run:
            for component in selected:
                component.archived = True
                component.archived_at = now
        return [c.id for c in selected]

    try:
        if report.dry_run:
            report.archived_lessons = archive_lessons(store.load_lessons())
        else:
            report.archived_lessons = store.update_with_lock(
                Collection.LESSONS, archive_lessons
            ).value
    except LLKBError as e:
        report.errors.append(f"lessons: {e}")

    try:
        if report.dry_run:
            report.archived_components = archive_components(store.load_components())
        else:
            report.archived_components = store.update_with_lock(
                Collection.COMPONENTS, archive_components
            ).value
    except LLKBError as e:
        report.errors.append(f"components: {e}")

    if report.dry_run:
        return
    archived: list[tuple[str, Literal["lesson", "component"]]] = [
        *((lesson_id, "lesson") for lesson_id in report.archived_lessons),
        *((component_id, "component") for component_id in report.archived_components),
    ]
    for entity_id, kind in archived:
        history.append(
            EntityArchivedEvent(
                entity_id=entity_id,
                run_id="maintenance",
                summary=f"Archived {kind} {entity_id}: {report.reasons[entity_id]}",
                entity_kind=kind,
            )
        )
