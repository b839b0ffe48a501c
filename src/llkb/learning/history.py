"""Append-only, date-partitioned event log.

Every mutation of the knowledge base is recorded as one JSON object per line
in ``history/<YYYY-MM-DD>.jsonl`` (UTC dates). The log is an audit trail and
the source of the per-day predictive extraction count; it is never a
correctness dependency, so append() degrades to a warning on failure.

Events form a closed tagged union over EventType, discriminated by the
``event`` field. Each kind declares its own required fields.

Appends are single write() calls in append mode and take no lock by default.
That is safe for small appends on local disks; set history.lockedAppends for
filesystems without atomic small appends.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from llkb.core.config import LockingConfig
from llkb.core.errors import HistoryWriteError, LockTimeoutError
from llkb.core.logging import get_logger
from llkb.learning.store.locking import FileLock
from llkb.learning.store.models import StoreModel, UtcDatetime
from llkb.utils.time import ensure_utc, utc_now

_logger = get_logger("history")

_PARTITION_NAME = re.compile(r"^(\d{4}-\d{2}-\d{2})\.jsonl$")


class EventType(str, Enum):
    """Kinds of history events."""

    LESSON_CREATED = "lesson_created"
    LESSON_APPLIED = "lesson_applied"
    COMPONENT_EXTRACTED = "component_extracted"
    COMPONENT_USED = "component_used"
    QUIRK_DISCOVERED = "quirk_discovered"
    METRICS_UPDATED = "metrics_updated"
    OVERRIDE = "override"
    EXTRACTION_DEFERRED = "extraction_deferred"
    ENTITY_ARCHIVED = "entity_archived"
    ANALYTICS_RECALCULATED = "analytics_recalculated"


class BaseEvent(StoreModel):
    """Fields shared by every history event."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    timestamp: UtcDatetime = Field(default_factory=utc_now)
    entity_id: str
    run_id: str
    tool: str = "llkb"
    summary: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class LessonCreatedEvent(BaseEvent):
    event: Literal["lesson_created"] = "lesson_created"


class LessonAppliedEvent(BaseEvent):
    event: Literal["lesson_applied"] = "lesson_applied"
    success: bool


class ComponentExtractedEvent(BaseEvent):
    event: Literal["component_extracted"] = "component_extracted"
    extraction_type: Literal["predictive", "reactive"]


class ComponentUsedEvent(BaseEvent):
    event: Literal["component_used"] = "component_used"
    success: bool


class QuirkDiscoveredEvent(BaseEvent):
    event: Literal["quirk_discovered"] = "quirk_discovered"


class MetricsUpdatedEvent(BaseEvent):
    event: Literal["metrics_updated"] = "metrics_updated"


class OverrideEvent(BaseEvent):
    event: Literal["override"] = "override"
    reason: str


class ExtractionDeferredEvent(BaseEvent):
    event: Literal["extraction_deferred"] = "extraction_deferred"
    reason_code: str


class EntityArchivedEvent(BaseEvent):
    event: Literal["entity_archived"] = "entity_archived"
    entity_kind: Literal["lesson", "component"]


class AnalyticsRecalculatedEvent(BaseEvent):
    event: Literal["analytics_recalculated"] = "analytics_recalculated"
    entity_id: str = "analytics"


HistoryEvent = Annotated[
    LessonCreatedEvent
    | LessonAppliedEvent
    | ComponentExtractedEvent
    | ComponentUsedEvent
    | QuirkDiscoveredEvent
    | MetricsUpdatedEvent
    | OverrideEvent
    | ExtractionDeferredEvent
    | EntityArchivedEvent
    | AnalyticsRecalculatedEvent,
    Field(discriminator="event"),
]

_event_adapter: TypeAdapter[HistoryEvent] = TypeAdapter(HistoryEvent)


def parse_event(data: dict[str, Any]) -> HistoryEvent:
    """Validate a decoded JSON object into its event class.

    Raises:
        ValidationError: If the kind is unknown or required fields are missing.
    """
    return _event_adapter.validate_python(data)


def is_predictive_extraction(event: HistoryEvent) -> bool:
    return (
        isinstance(event, ComponentExtractedEvent)
        and event.extraction_type == "predictive"
    )


@dataclass
class HistoryStats:
    """Summary of the partitions on disk."""

    today_events: int = 0
    file_count: int = 0
    oldest: date | None = None
    newest: date | None = None


@dataclass
class HistoryPruneResult:
    removed: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class HistoryLog:
    """Date-partitioned JSONL event log under a directory."""

    def __init__(
        self,
        directory: Path,
        locked_appends: bool = False,
        locking: LockingConfig | None = None,
    ) -> None:
        self._directory = directory
        self._locked_appends = locked_appends
        self._locking = locking or LockingConfig()

    @property
    def directory(self) -> Path:
        return self._directory

    def partition_path(self, day: date) -> Path:
        return self._directory / f"{day.isoformat()}.jsonl"

    # ─── Writing ─────────────────────────────────────────────────────────

    def append(self, event: BaseEvent) -> bool:
        """Append an event, logging a warning instead of raising on failure.

        Returns:
            True if the event was written.
        """
        try:
            self.append_strict(event)
        except HistoryWriteError as e:
            _logger.warning(
                "history_write_failed",
                event_type=getattr(event, "event", None),
                entity_id=event.entity_id,
                error=str(e),
            )
            return False
        return True

    def append_strict(self, event: BaseEvent) -> None:
        """Append an event.

        Raises:
            HistoryWriteError: If the directory or partition cannot be written,
                or the partition lock cannot be taken.
        """
        path = self.partition_path(ensure_utc(event.timestamp).date())
        line = event.model_dump_json(by_alias=True) + "\n"
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            if self._locked_appends:
                with self._new_lock(path):
                    self._write_line(path, line)
            else:
                self._write_line(path, line)
        except (OSError, LockTimeoutError) as e:
            raise HistoryWriteError(f"Cannot append to {path}: {e}") from e

    @staticmethod
    def _write_line(path: Path, line: str) -> None:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)

    def _new_lock(self, path: Path) -> FileLock:
        return FileLock(
            path,
            timeout=self._locking.timeout_seconds,
            stale_after=self._locking.stale_after_seconds,
            poll_interval=self._locking.poll_interval_seconds,
        )

    # ─── Reading ─────────────────────────────────────────────────────────

    def iter_events(self, day: date) -> Iterator[HistoryEvent]:
        """Yield the valid events of one partition, skipping malformed lines."""
        path = self.partition_path(day)
        if not path.exists():
            return
        skipped = 0
        with open(path, encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    yield parse_event(json.loads(line))
                except (json.JSONDecodeError, ValidationError, TypeError):
                    skipped += 1
        if skipped:
            _logger.debug("history_lines_skipped", partition=path.name, count=skipped)

    def read_events(self, day: date) -> list[HistoryEvent]:
        return list(self.iter_events(day))

    def count_events_today(
        self,
        predicate: Callable[[HistoryEvent], bool] | None = None,
        now: datetime | None = None,
    ) -> int:
        """Count today's events matching predicate (all events if None)."""
        today = ensure_utc(now or utc_now()).date()
        return sum(
            1 for event in self.iter_events(today)
            if predicate is None or predicate(event)
        )

    def count_extractions_today(
        self,
        run_id: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Count today's predictive component extractions, optionally for one run."""
        def matches(event: HistoryEvent) -> bool:
            if not is_predictive_extraction(event):
                return False
            return run_id is None or event.run_id == run_id

        return self.count_events_today(matches, now)

    def partitions(self) -> list[tuple[date, Path]]:
        """Partition files on disk, oldest first. Other files are ignored."""
        if not self._directory.is_dir():
            return []
        found = []
        for path in self._directory.iterdir():
            match = _PARTITION_NAME.match(path.name)
            if match is None:
                continue
            try:
                day = date.fromisoformat(match.group(1))
            except ValueError:
                continue
            found.append((day, path))
        return sorted(found)

    def stats(self, now: datetime | None = None) -> HistoryStats:
        partitions = self.partitions()
        if not partitions:
            return HistoryStats()
        return HistoryStats(
            today_events=self.count_events_today(now=now),
            file_count=len(partitions),
            oldest=partitions[0][0],
            newest=partitions[-1][0],
        )

    # ─── Retention ───────────────────────────────────────────────────────

    def expired_partitions(
        self,
        retention_days: int,
        now: datetime | None = None,
    ) -> list[Path]:
        """Partitions dated before today minus retention_days."""
        cutoff = ensure_utc(now or utc_now()).date() - timedelta(days=retention_days)
        return [path for day, path in self.partitions() if day < cutoff]

    def prune(
        self,
        retention_days: int,
        now: datetime | None = None,
        dry_run: bool = False,
    ) -> HistoryPruneResult:
        """Delete whole partitions older than the retention window.

        In dry-run mode, reports what would be removed without deleting.
        """
        result = HistoryPruneResult()
        for path in self.expired_partitions(retention_days, now):
            if dry_run:
                result.removed.append(path)
                continue
            try:
                path.unlink()
            except OSError as e:
                _logger.warning("history_prune_failed", partition=path.name, error=str(e))
                result.errors.append(f"{path.name}: {e}")
                continue
            result.removed.append(path)

        if result.removed and not dry_run:
            _logger.info("history_pruned", removed=len(result.removed))
        return result
