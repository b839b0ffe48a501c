"""Persisted data models for the LLKB store.

Every model serializes to the camelCase JSON layout of the on-disk files
(lessons.json, components.json, analytics.json) and accepts snake_case
names in Python. Timestamps are always timezone-aware UTC.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from llkb.core.constants import ANALYTICS_FILE_VERSION, SCHEMA_VERSION
from llkb.utils.time import ensure_utc, utc_now

UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]

SCOPE_PATTERN = r"^(universal|app-specific|framework:[a-z0-9][a-z0-9-]*)$"


def is_valid_scope(scope: str) -> bool:
    return re.fullmatch(SCOPE_PATTERN, scope) is not None


def invalid_scope_message(scope: str) -> str:
    return (
        f"invalid scope {scope!r}: expected universal, app-specific "
        f"or framework:<name>"
    )


class StoreModel(BaseModel):
    """Base for persisted models: camelCase on disk, snake_case in Python.

    Keys the model does not declare (fields written by other tools or older
    versions) are kept and written back unchanged on the next save.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="allow",
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


class Category(str, Enum):
    """What kind of problem a lesson or component addresses."""

    SELECTOR = "selector"
    TIMING = "timing"
    QUIRK = "quirk"
    AUTH = "auth"
    DATA = "data"
    ASSERTION = "assertion"
    NAVIGATION = "navigation"
    UI_INTERACTION = "ui-interaction"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConfidenceHistoryEntry(StoreModel):
    """One point in an entity's confidence time series."""

    date: UtcDatetime
    value: float = Field(ge=0.0, le=1.0)


# =============================================================================
# Lessons
# =============================================================================


class LessonMetrics(StoreModel):
    occurrences: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence_history: list[ConfidenceHistoryEntry] = Field(default_factory=list)
    first_seen: UtcDatetime = Field(default_factory=utc_now)
    last_applied: UtcDatetime | None = None
    last_success: UtcDatetime | None = None


class LessonSource(StoreModel):
    """Where a lesson was first discovered."""

    run_id: str | None = None
    file: str | None = None
    line: int | None = None


class LessonValidation(StoreModel):
    auto_validated: bool = False
    human_reviewed: bool = False
    reviewed_by: str | None = None
    reviewed_at: UtcDatetime | None = None


class Lesson(StoreModel):
    """A generalized "bad pattern -> good pattern" fix.

    Created on first discovery, its metrics are updated on every
    reapplication, and it is archived when it goes stale.
    """

    id: str
    title: str
    category: Category
    severity: Severity = Severity.MEDIUM
    scope: str = Field(default="app-specific", pattern=SCOPE_PATTERN)
    problem: str = ""
    solution: str = ""
    before_code: str | None = None
    after_code: str | None = None
    trigger: str = ""
    tags: list[str] = Field(default_factory=list)
    run_ids: list[str] = Field(default_factory=list)
    metrics: LessonMetrics = Field(default_factory=LessonMetrics)
    source: LessonSource = Field(default_factory=LessonSource)
    validation: LessonValidation = Field(default_factory=LessonValidation)
    override_count: int = Field(default=0, ge=0)
    flagged_for_review: bool = False
    archived: bool = False
    archived_at: UtcDatetime | None = None

    @property
    def code(self) -> str:
        """The snippet used for similarity matching: the fix, else the problem code."""
        return self.after_code or self.before_code or ""

    @property
    def human_reviewed(self) -> bool:
        return self.validation.human_reviewed

    @property
    def last_activity(self) -> datetime:
        """Most recent evidence the lesson is still in use."""
        return (
            self.metrics.last_success
            or self.metrics.last_applied
            or self.metrics.first_seen
        )


# =============================================================================
# Components
# =============================================================================


class ComponentMetrics(StoreModel):
    used_in: list[str] = Field(default_factory=list)
    total_uses: int = Field(default=0, ge=0)
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence_history: list[ConfidenceHistoryEntry] = Field(default_factory=list)
    created_at: UtcDatetime = Field(default_factory=utc_now)
    last_used: UtcDatetime | None = None
    last_success: UtcDatetime | None = None


class ComponentSource(StoreModel):
    """Provenance of an extracted component."""

    extracted_from: str
    extracted_by: str = "llkb"
    original_code: str
    extracted_at: UtcDatetime = Field(default_factory=utc_now)
    extraction_type: Literal["predictive", "reactive"] = "reactive"


class Component(StoreModel):
    """An extracted, reusable code unit replacing duplicated inline logic."""

    id: str
    name: str
    category: Category
    scope: str = Field(default="app-specific", pattern=SCOPE_PATTERN)
    description: str = ""
    module_path: str = ""
    import_path: str = ""
    signature: str = ""
    usage_examples: list[str] = Field(default_factory=list)
    metrics: ComponentMetrics = Field(default_factory=ComponentMetrics)
    source: ComponentSource
    related_lessons: list[str] = Field(default_factory=list)
    related_components: list[str] = Field(default_factory=list)
    human_reviewed: bool = False
    override_count: int = Field(default=0, ge=0)
    flagged_for_review: bool = False
    archived: bool = False
    archived_at: UtcDatetime | None = None

    @field_validator("category")
    @classmethod
    def _components_are_not_quirks(cls, value: Category) -> Category:
        if value is Category.QUIRK:
            raise ValueError("components cannot have category 'quirk'")
        return value

    @property
    def code(self) -> str:
        return self.source.original_code

    @property
    def last_activity(self) -> datetime:
        return self.metrics.last_used or self.metrics.created_at


class DeferredCandidate(StoreModel):
    """A predictive extraction held back by a rate limit, kept for a later pass."""

    id: str
    name: str | None = None
    code: str
    category: Category | None = None
    reason: str
    reason_code: str
    run_id: str
    deferred_at: UtcDatetime = Field(default_factory=utc_now)


# =============================================================================
# Quirks and rules
# =============================================================================


class AppQuirk(StoreModel):
    """Reproducible non-standard behavior of the application under test.

    Never auto-archived; closing one is a human decision.
    """

    id: str
    component: str
    description: str
    impact: str = ""
    workaround: str = ""
    permanent: bool = False
    issue_link: str | None = None
    affected_runs: list[str] = Field(default_factory=list)
    discovered_at: UtcDatetime = Field(default_factory=utc_now)
    resolved: bool = False


class GlobalRule(StoreModel):
    id: str
    description: str
    trigger: str = ""
    action: str = ""


# =============================================================================
# Collection files
# =============================================================================


class LessonsFile(StoreModel):
    """Contents of lessons.json."""

    version: str = SCHEMA_VERSION
    last_updated: UtcDatetime = Field(default_factory=utc_now)
    lessons: list[Lesson] = Field(default_factory=list)
    archived: list[Lesson] = Field(default_factory=list)
    global_rules: list[GlobalRule] = Field(default_factory=list)
    app_quirks: list[AppQuirk] = Field(default_factory=list)

    def active(self) -> list[Lesson]:
        return [lesson for lesson in self.lessons if not lesson.archived]

    def find(self, lesson_id: str) -> Lesson | None:
        """Find an active lesson by id."""
        for lesson in self.lessons:
            if lesson.id == lesson_id and not lesson.archived:
                return lesson
        return None

    def all_lessons(self) -> list[Lesson]:
        """Active and archived lessons together."""
        return [*self.lessons, *self.archived]


class ComponentsFile(StoreModel):
    """Contents of components.json."""

    version: str = SCHEMA_VERSION
    last_updated: UtcDatetime = Field(default_factory=utc_now)
    components: list[Component] = Field(default_factory=list)
    deferred: list[DeferredCandidate] = Field(default_factory=list)

    def active(self) -> list[Component]:
        return [c for c in self.components if not c.archived]

    def find(self, component_id: str) -> Component | None:
        """Find an active component by id."""
        for component in self.components:
            if component.id == component_id and not component.archived:
                return component
        return None


# =============================================================================
# Analytics
# =============================================================================


class EntityCounts(StoreModel):
    total: int = 0
    active: int = 0
    archived: int = 0


class AnalyticsOverview(StoreModel):
    lessons: EntityCounts = Field(default_factory=EntityCounts)
    components: EntityCounts = Field(default_factory=EntityCounts)
    app_quirks: int = 0
    deferred_candidates: int = 0


class LessonStats(StoreModel):
    by_category: dict[str, int] = Field(default_factory=dict)
    avg_confidence: float = 0.0
    avg_success_rate: float = 0.0


class ComponentStats(StoreModel):
    by_category: dict[str, int] = Field(default_factory=dict)
    by_scope: dict[str, int] = Field(default_factory=dict)
    total_reuses: int = 0
    avg_reuses_per_component: float = 0.0


class LessonPerformer(StoreModel):
    id: str
    title: str
    score: float


class ComponentPerformer(StoreModel):
    id: str
    name: str
    uses: int


class TopPerformers(StoreModel):
    lessons: list[LessonPerformer] = Field(default_factory=list)
    components: list[ComponentPerformer] = Field(default_factory=list)


class NeedsReview(StoreModel):
    """Ids of entities that deserve a human look."""

    low_confidence_lessons: list[str] = Field(default_factory=list)
    declining_lessons: list[str] = Field(default_factory=list)
    low_usage_components: list[str] = Field(default_factory=list)
    flagged_by_overrides: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.low_confidence_lessons)
            + len(self.declining_lessons)
            + len(self.low_usage_components)
            + len(self.flagged_by_overrides)
        )


class AnalyticsSnapshot(StoreModel):
    """Contents of analytics.json: derived, always fully recomputed."""

    version: str = ANALYTICS_FILE_VERSION
    last_updated: UtcDatetime = Field(default_factory=utc_now)
    overview: AnalyticsOverview = Field(default_factory=AnalyticsOverview)
    lesson_stats: LessonStats = Field(default_factory=LessonStats)
    component_stats: ComponentStats = Field(default_factory=ComponentStats)
    top_performers: TopPerformers = Field(default_factory=TopPerformers)
    needs_review: NeedsReview = Field(default_factory=NeedsReview)


def next_entity_id(prefix: str, existing_ids: Iterable[str], width: int = 3) -> str:
    """Next sequential id for a prefix, e.g. L001 -> L002.

    Ids that do not follow the <prefix><number> pattern are ignored.
    """
    highest = 0
    for entity_id in existing_ids:
        if entity_id.startswith(prefix) and entity_id[len(prefix):].isdigit():
            highest = max(highest, int(entity_id[len(prefix):]))
    return f"{prefix}{highest + 1:0{width}d}"
