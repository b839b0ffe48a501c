"""Learning API: the entry point for tools that use the knowledge base.

A calling tool queries for matching lessons and components before writing
code, then reports what happened:

    api = LearningAPI.from_root(Path(".artk/llkb"))
    run = RunContext(run_id="JRN-0042", tool="autogen")

    matches = api.query(QueryContext(text="submit button locator"))
    result = api.record_pattern_learned(
        PatternContext(title="Use role locator for submit", after_code=code),
        success=True,
        run=run,
    )

Failure policy:
- Invalid requests (a blank title, a malformed scope) fail with INVALID_INPUT
  before the store is touched.
- Store failures (lock timeout, corrupt data, failed save) end the requested
  operation and come back as a failed LearningResult with an error code.
- History and analytics failures are logged and never fail the operation.
- Rate limiting is a normal outcome with a readable reason.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from llkb.core.config import LLKBConfig, load_config
from llkb.core.constants import MIN_KEYWORD_RELEVANCE
from llkb.core.errors import (
    EntityNotFoundError,
    ErrorCode,
    InvalidInputError,
    LLKBError,
)
from llkb.core.logging import get_logger
from llkb.learning.analytics import AnalyticsAggregator
from llkb.learning.confidence import (
    ConfidenceConfig,
    ConfidenceModel,
    calculate_success_rate,
)
from llkb.learning.export import (
    ExportOptions,
    KnowledgeExporter,
    components_for_run,
    lessons_for_run,
)
from llkb.learning.history import (
    ComponentExtractedEvent,
    ComponentUsedEvent,
    HistoryLog,
    LessonAppliedEvent,
    LessonCreatedEvent,
    MetricsUpdatedEvent,
    OverrideEvent,
    QuirkDiscoveredEvent,
)
from llkb.learning.inference import infer_category
from llkb.learning.rate_limiter import (
    DecisionCode,
    ExtractionCandidate,
    ExtractionDecision,
    RateLimiter,
    RunContext,
)
from llkb.learning.similarity import (
    SimilarityMatch,
    find_near_duplicates,
    similarity,
    text_relevance,
)
from llkb.learning.store import (
    AnalyticsSnapshot,
    AppQuirk,
    Category,
    Collection,
    Component,
    ComponentMetrics,
    ComponentSource,
    ComponentsFile,
    KnowledgeStore,
    Lesson,
    LessonMetrics,
    LessonsFile,
    LessonSource,
    Severity,
    invalid_scope_message,
    is_valid_scope,
    next_entity_id,
)
from llkb.utils.time import days_between, utc_now

_logger = get_logger("api")

KEYWORD_WEIGHT = 0.4
CONFIDENCE_WEIGHT = 0.3
RECENCY_WEIGHT = 0.15
SUCCESS_WEIGHT = 0.15


# =============================================================================
# Request and result types
# =============================================================================


@dataclass
class PatternContext:
    """A fix discovered by the caller, to be recorded as a lesson."""

    title: str
    problem: str = ""
    solution: str = ""
    before_code: str | None = None
    after_code: str | None = None
    trigger: str = ""
    category: Category | None = None
    severity: Severity = Severity.MEDIUM
    scope: str = "app-specific"
    tags: list[str] = field(default_factory=list)
    file: str | None = None
    line: int | None = None

    @property
    def code(self) -> str:
        return self.after_code or self.before_code or ""

    def validate(self) -> None:
        if not self.title.strip():
            raise InvalidInputError("pattern title is empty")
        if not is_valid_scope(self.scope):
            raise InvalidInputError(invalid_scope_message(self.scope))


@dataclass
class UsageContext:
    """Optional details about where a lesson or component was applied."""

    file: str | None = None
    note: str = ""

    def to_metadata(self) -> dict[str, Any]:
        return {k: v for k, v in (("file", self.file), ("note", self.note)) if v}


@dataclass
class QuirkContext:
    component: str
    description: str
    impact: str = ""
    workaround: str = ""
    permanent: bool = False
    issue_link: str | None = None


@dataclass
class QueryContext:
    """What the caller is about to write.

    Attributes:
        text: Free-text description matched against titles, problems and tags.
        code: Draft code, matched by similarity.
        category: Restrict to one category.
        scope: Restrict to this scope (universal entries always qualify).
        include_lessons: Whether to return lessons.
        include_components: Whether to return components.
        min_confidence: Override extraction.confidenceThreshold.
    """

    text: str = ""
    code: str | None = None
    category: Category | None = None
    scope: str | None = None
    include_lessons: bool = True
    include_components: bool = True
    min_confidence: float | None = None


@dataclass
class LearningMetrics:
    confidence: float
    success_rate: float
    occurrences: int


@dataclass
class LearningResult:
    """Outcome of a Learning API mutation."""

    success: bool
    entity_id: str | None = None
    created: bool = False
    flagged_for_review: bool = False
    metrics: LearningMetrics | None = None
    error: str | None = None
    error_code: ErrorCode | None = None


@dataclass
class RankedMatch:
    kind: Literal["lesson", "component"]
    id: str
    title: str
    relevance: float
    confidence: float
    entity: Lesson | Component


@dataclass
class ExtractionOutcome:
    """Outcome of a component extraction attempt."""

    decision: ExtractionDecision | None
    component_id: str | None = None
    deferred_id: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None

    @property
    def extracted(self) -> bool:
        return self.component_id is not None


def _lesson_metrics(lesson: Lesson) -> LearningMetrics:
    return LearningMetrics(
        confidence=lesson.metrics.confidence,
        success_rate=lesson.metrics.success_rate,
        occurrences=lesson.metrics.occurrences,
    )


def _component_metrics(component: Component) -> LearningMetrics:
    return LearningMetrics(
        confidence=component.metrics.confidence,
        success_rate=component.metrics.success_rate,
        occurrences=component.metrics.total_uses,
    )


def _failure(error: LLKBError, operation: str) -> LearningResult:
    _logger.error(
        "operation_failed",
        operation=operation,
        error=str(error),
        code=error.code.value if error.code else None,
    )
    return LearningResult(success=False, error=str(error), error_code=error.code)


_DISABLED = LearningResult(
    success=False,
    error="LLKB is disabled in config",
    error_code=ErrorCode.LLKB_DISABLED,
)


# =============================================================================
# Learning API
# =============================================================================


class LearningAPI:
    """Records outcomes and answers queries against one knowledge base."""

    def __init__(
        self,
        store: KnowledgeStore,
        config: LLKBConfig | None = None,
        history: HistoryLog | None = None,
        confidence: ConfidenceModel | None = None,
    ) -> None:
        self.store = store
        self.config = config or LLKBConfig()
        self.history = history or HistoryLog(
            store.history_dir,
            locked_appends=self.config.history.locked_appends,
            locking=self.config.locking,
        )
        self.confidence = confidence or ConfidenceModel(
            ConfidenceConfig(
                min_component_uses=self.config.retention.min_component_uses,
                component_age_days=float(self.config.retention.archive_unused),
            )
        )
        self.rate_limiter = RateLimiter(store, self.history, self.config)
        self.analytics = AnalyticsAggregator(store, self.confidence, self.history)
        self.exporter = KnowledgeExporter(store, self.confidence.config.review_threshold)
        self._pending_mutations = 0

    @classmethod
    def from_root(cls, root: Path) -> LearningAPI:
        """Build an API for a knowledge base root, reading its config.yml."""
        config = load_config(root)
        return cls(KnowledgeStore(root, config.locking), config)

    # ─── Lessons ─────────────────────────────────────────────────────────

    def record_pattern_learned(
        self,
        context: PatternContext,
        success: bool,
        run: RunContext,
        now: datetime | None = None,
    ) -> LearningResult:
        """Record a fix: merge into a matching lesson or create a new one.

        A lesson matches when its code is a near-duplicate of the context's
        code, or, for code-less patterns, when its trigger (else title) is
        the same text.
        """
        if not self.config.enabled:
            return _DISABLED
        try:
            context.validate()
        except InvalidInputError as e:
            return _failure(e, "record_pattern_learned")
        now = now or utc_now()

        def apply(data: LessonsFile) -> tuple[Lesson, bool]:
            lesson = self._match_lesson(data, context)
            if lesson is not None:
                self._apply_lesson_outcome(lesson, success, run, now)
                return lesson, False

            lesson = Lesson(
                id=next_entity_id("L", (existing.id for existing in data.all_lessons())),
                title=context.title,
                category=context.category or infer_category(
                    " ".join([context.code, context.title, context.problem])
                ),
                severity=context.severity,
                scope=context.scope,
                problem=context.problem,
                solution=context.solution,
                before_code=context.before_code,
                after_code=context.after_code,
                trigger=context.trigger,
                tags=list(context.tags),
                run_ids=[run.run_id],
                metrics=LessonMetrics(
                    occurrences=1,
                    success_rate=1.0 if success else 0.0,
                    first_seen=now,
                    last_applied=now,
                    last_success=now if success else None,
                ),
                source=LessonSource(run_id=run.run_id, file=context.file, line=context.line),
            )
            self.confidence.refresh(lesson, now)
            data.lessons.append(lesson)
            return lesson, True

        try:
            lesson, created = self.store.update_with_lock(Collection.LESSONS, apply).value
        except LLKBError as e:
            return _failure(e, "record_pattern_learned")

        if created:
            _logger.info("lesson_created", lesson_id=lesson.id, category=lesson.category.value)
            self.history.append(
                LessonCreatedEvent(
                    entity_id=lesson.id,
                    run_id=run.run_id,
                    tool=run.tool,
                    summary=f"Created lesson {lesson.id}: {lesson.title}",
                    metadata={"category": lesson.category.value, "success": success},
                )
            )
        else:
            _logger.info(
                "lesson_merged", lesson_id=lesson.id, occurrences=lesson.metrics.occurrences
            )
            self.history.append(
                LessonAppliedEvent(
                    entity_id=lesson.id,
                    run_id=run.run_id,
                    tool=run.tool,
                    summary=f"Matched existing lesson {lesson.id}: {lesson.title}",
                    success=success,
                )
            )
        self._after_mutation(run)
        return LearningResult(
            success=True,
            entity_id=lesson.id,
            created=created,
            metrics=_lesson_metrics(lesson),
        )

    def record_lesson_applied(
        self,
        lesson_id: str,
        run: RunContext,
        success: bool,
        context: UsageContext | None = None,
        now: datetime | None = None,
    ) -> LearningResult:
        """Update a known lesson's counters directly, without similarity search."""
        if not self.config.enabled:
            return _DISABLED
        now = now or utc_now()

        def apply(data: LessonsFile) -> Lesson:
            lesson = data.find(lesson_id)
            if lesson is None:
                raise EntityNotFoundError("lesson", lesson_id)
            self._apply_lesson_outcome(lesson, success, run, now)
            return lesson

        try:
            lesson = self.store.update_with_lock(Collection.LESSONS, apply).value
        except LLKBError as e:
            return _failure(e, "record_lesson_applied")

        self.history.append(
            LessonAppliedEvent(
                entity_id=lesson.id,
                run_id=run.run_id,
                tool=run.tool,
                summary=f"Applied lesson {lesson.id} ({'success' if success else 'failure'})",
                success=success,
                metadata=context.to_metadata() if context else {},
            )
        )
        self._after_mutation(run)
        return LearningResult(success=True, entity_id=lesson.id, metrics=_lesson_metrics(lesson))

    def _match_lesson(self, data: LessonsFile, context: PatternContext) -> Lesson | None:
        active = data.active()
        if context.code:
            matches = find_near_duplicates(
                context.code,
                {lesson.id: lesson.code for lesson in active if lesson.code},
                self.config.extraction.similarity_threshold,
            )
            return data.find(matches[0].id) if matches else None

        key = (context.trigger or context.title).strip().lower()
        for lesson in active:
            if (lesson.trigger or lesson.title).strip().lower() == key:
                return lesson
        return None

    def _apply_lesson_outcome(
        self,
        lesson: Lesson,
        success: bool,
        run: RunContext,
        now: datetime,
    ) -> None:
        metrics = lesson.metrics
        metrics.success_rate = calculate_success_rate(
            metrics.success_rate, metrics.occurrences, success
        )
        metrics.occurrences += 1
        metrics.last_applied = now
        if success:
            metrics.last_success = now
        if run.run_id not in lesson.run_ids:
            lesson.run_ids.append(run.run_id)
        self.confidence.refresh(lesson, now)

    # ─── Components ──────────────────────────────────────────────────────

    def record_component_used(
        self,
        component_id: str,
        run: RunContext,
        success: bool,
        context: UsageContext | None = None,
        now: datetime | None = None,
    ) -> LearningResult:
        """Update usage metrics on an existing, active component."""
        if not self.config.enabled:
            return _DISABLED
        now = now or utc_now()

        def apply(data: ComponentsFile) -> Component:
            component = data.find(component_id)
            if component is None:
                raise EntityNotFoundError("component", component_id)
            metrics = component.metrics
            metrics.success_rate = calculate_success_rate(
                metrics.success_rate, metrics.total_uses, success
            )
            metrics.total_uses += 1
            metrics.last_used = now
            if success:
                metrics.last_success = now
            if run.run_id not in metrics.used_in:
                metrics.used_in.append(run.run_id)
            self.confidence.refresh(component, now)
            return component

        try:
            component = self.store.update_with_lock(Collection.COMPONENTS, apply).value
        except LLKBError as e:
            return _failure(e, "record_component_used")

        self.history.append(
            ComponentUsedEvent(
                entity_id=component.id,
                run_id=run.run_id,
                tool=run.tool,
                summary=f"Used component {component.name} ({'success' if success else 'failure'})",
                success=success,
                metadata=context.to_metadata() if context else {},
            )
        )
        self._after_mutation(run)
        return LearningResult(
            success=True,
            entity_id=component.id,
            metrics=_component_metrics(component),
        )

    def extract_component(
        self,
        candidate: ExtractionCandidate,
        run: RunContext,
        predictive: bool = True,
        now: datetime | None = None,
    ) -> ExtractionOutcome:
        """Create a component from a candidate if the rate limiter allows it.

        Rate-limited predictive candidates are deferred (tagged for a later
        pass). The duplicate check is repeated under the lock, so two runs
        racing on the same snippet cannot both create a component.
        """
        if not self.config.enabled:
            return ExtractionOutcome(
                decision=None, error=_DISABLED.error, error_code=_DISABLED.error_code
            )
        now = now or utc_now()
        threshold = self.config.extraction.similarity_threshold

        def create(data: ComponentsFile) -> Component | SimilarityMatch:
            matches = find_near_duplicates(
                candidate.code, {c.id: c.code for c in data.active()}, threshold
            )
            if matches:
                return matches[0]
            component_id = next_entity_id("COMP", (c.id for c in data.components))
            component = Component(
                id=component_id,
                name=candidate.name or f"extracted_{component_id.lower()}",
                category=candidate.category or infer_category(candidate.code),
                scope=candidate.scope,
                description=candidate.description,
                module_path=candidate.module_path,
                import_path=candidate.import_path,
                signature=candidate.signature,
                usage_examples=list(candidate.usage_examples),
                related_lessons=list(candidate.related_lessons),
                metrics=ComponentMetrics(created_at=now),
                source=ComponentSource(
                    extracted_from=run.run_id,
                    extracted_by=run.tool,
                    original_code=candidate.code,
                    extracted_at=now,
                    extraction_type="predictive" if predictive else "reactive",
                ),
            )
            self.confidence.refresh(component, now)
            data.components.append(component)
            data.deferred = [d for d in data.deferred if d.code != candidate.code]
            return component

        try:
            candidate.validate()
            components = self.store.load_components()
            decision = self.rate_limiter.check_candidate(
                candidate.code,
                run,
                predictive=predictive,
                components=components,
                now=now,
                occurrences=candidate.occurrences,
                distinct_runs=candidate.distinct_runs,
            )
            if not decision.extract:
                deferred = self.rate_limiter.defer(candidate, decision, run)
                _logger.info(
                    "extraction_skipped",
                    reason=decision.reason,
                    duplicate_of=decision.duplicate_of,
                    deferred_id=deferred.id if deferred else None,
                )
                return ExtractionOutcome(
                    decision=decision,
                    deferred_id=deferred.id if deferred else None,
                )
            created = self.store.update_with_lock(Collection.COMPONENTS, create).value
        except LLKBError as e:
            failed = _failure(e, "extract_component")
            return ExtractionOutcome(
                decision=None, error=failed.error, error_code=failed.error_code
            )

        if isinstance(created, SimilarityMatch):
            return ExtractionOutcome(
                decision=ExtractionDecision(
                    False,
                    f"near-duplicate of {created.id} (similarity {created.similarity:.2f})",
                    DecisionCode.DUPLICATE,
                    duplicate_of=created.id,
                    similarity=created.similarity,
                )
            )

        if predictive:
            run.record_extraction()
        _logger.info("component_extracted", component_id=created.id, predictive=predictive)
        self.history.append(
            ComponentExtractedEvent(
                entity_id=created.id,
                run_id=run.run_id,
                tool=run.tool,
                summary=f"Extracted component {created.name}",
                extraction_type="predictive" if predictive else "reactive",
                metadata={"warnings": decision.warnings} if decision.warnings else {},
            )
        )
        self._after_mutation(run)
        return ExtractionOutcome(decision=decision, component_id=created.id)

    def process_deferred(
        self,
        run: RunContext,
        now: datetime | None = None,
    ) -> list[ExtractionOutcome]:
        """Re-evaluate deferred candidates, extracting those now allowed.

        Stops at the first candidate that is rate limited again. Candidates
        rejected for good (duplicate, too small) are dropped from the list.
        """
        outcomes: list[ExtractionOutcome] = []
        rejected: set[str] = set()
        for deferred in self.rate_limiter.pending_deferred():
            outcome = self.extract_component(
                ExtractionCandidate(
                    code=deferred.code,
                    name=deferred.name,
                    category=deferred.category,
                ),
                run,
                predictive=True,
                now=now,
            )
            outcomes.append(outcome)
            if outcome.decision is None or outcome.decision.deferrable:
                break
            if not outcome.extracted:
                rejected.add(deferred.code)

        if rejected:
            def drop(data: ComponentsFile) -> None:
                data.deferred = [d for d in data.deferred if d.code not in rejected]

            try:
                self.store.update_with_lock(Collection.COMPONENTS, drop)
            except LLKBError as e:
                _logger.warning("deferred_cleanup_failed", error=str(e))
        return outcomes

    # ─── Quirks ──────────────────────────────────────────────────────────

    def record_quirk(
        self,
        context: QuirkContext,
        run: RunContext,
        now: datetime | None = None,
    ) -> LearningResult:
        """Record an app quirk, or add this run to an identical open one."""
        if not self.config.enabled:
            return _DISABLED
        now = now or utc_now()
        key = (context.component.strip().lower(), context.description.strip().lower())

        def apply(data: LessonsFile) -> tuple[AppQuirk, bool]:
            for quirk in data.app_quirks:
                if quirk.resolved:
                    continue
                if (quirk.component.strip().lower(), quirk.description.strip().lower()) == key:
                    if run.run_id not in quirk.affected_runs:
                        quirk.affected_runs.append(run.run_id)
                    return quirk, False
            quirk = AppQuirk(
                id=next_entity_id("Q", (q.id for q in data.app_quirks)),
                component=context.component,
                description=context.description,
                impact=context.impact,
                workaround=context.workaround,
                permanent=context.permanent,
                issue_link=context.issue_link,
                affected_runs=[run.run_id],
                discovered_at=now,
            )
            data.app_quirks.append(quirk)
            return quirk, True

        try:
            quirk, created = self.store.update_with_lock(Collection.LESSONS, apply).value
        except LLKBError as e:
            return _failure(e, "record_quirk")

        if created:
            self.history.append(
                QuirkDiscoveredEvent(
                    entity_id=quirk.id,
                    run_id=run.run_id,
                    tool=run.tool,
                    summary=f"Discovered quirk {quirk.id} in {quirk.component}",
                )
            )
        else:
            self.history.append(
                MetricsUpdatedEvent(
                    entity_id=quirk.id,
                    run_id=run.run_id,
                    tool=run.tool,
                    summary=f"Quirk {quirk.id} seen again ({len(quirk.affected_runs)} runs)",
                )
            )
        self._after_mutation(run)
        return LearningResult(success=True, entity_id=quirk.id, created=created)

    # ─── Overrides ───────────────────────────────────────────────────────

    def record_override(
        self,
        entity_id: str,
        run: RunContext,
        reason: str = "",
    ) -> LearningResult:
        """Record that a caller rejected a suggested lesson or component.

        After overrides.flagAfterOverrides overrides the entity is flagged for
        human review and no longer returned by query().
        """
        if not self.config.enabled:
            return _DISABLED
        overrides = self.config.overrides
        if not overrides.allow_user_override:
            return LearningResult(
                success=False,
                entity_id=entity_id,
                error="user overrides are disabled in config",
                error_code=ErrorCode.OVERRIDES_DISABLED,
            )

        def bump(entity: Lesson | Component | None) -> Lesson | Component:
            if entity is None:
                raise EntityNotFoundError("entity", entity_id)
            entity.override_count += 1
            if entity.override_count >= overrides.flag_after_overrides:
                entity.flagged_for_review = True
            return entity

        try:
            if self.store.load_lessons().find(entity_id) is not None:
                collection = Collection.LESSONS
            else:
                collection = Collection.COMPONENTS
            entity = self.store.update_with_lock(
                collection, lambda data: bump(data.find(entity_id))
            ).value
        except LLKBError as e:
            return _failure(e, "record_override")

        if entity.flagged_for_review:
            _logger.warning(
                "entity_flagged_for_review",
                entity_id=entity.id,
                override_count=entity.override_count,
            )
        if overrides.log_overrides:
            self.history.append(
                OverrideEvent(
                    entity_id=entity.id,
                    run_id=run.run_id,
                    tool=run.tool,
                    summary=f"Override #{entity.override_count} of {entity.id}",
                    reason=reason or "unspecified",
                )
            )
        self._after_mutation(run)
        return LearningResult(
            success=True,
            entity_id=entity.id,
            flagged_for_review=entity.flagged_for_review,
        )

    # ─── Query ───────────────────────────────────────────────────────────

    def query(
        self,
        context: QueryContext,
        now: datetime | None = None,
    ) -> list[RankedMatch]:
        """Rank lessons and components relevant to what the caller is writing.

        Returns every active, unflagged entity at or above the confidence
        threshold, ordered by relevance. There is no result cap.

        Raises:
            StoreError: If a collection cannot be read.
        """
        if not self.config.enabled:
            return []
        now = now or utc_now()
        threshold = (
            context.min_confidence
            if context.min_confidence is not None
            else self.config.extraction.confidence_threshold
        )

        entities: list[tuple[Literal["lesson", "component"], Lesson | Component, str, str]] = []
        if context.include_lessons:
            for lesson in self.store.load_lessons().active():
                text = " ".join(
                    [lesson.title, lesson.problem, lesson.solution, lesson.trigger, *lesson.tags]
                )
                entities.append(("lesson", lesson, lesson.title, text))
        if context.include_components:
            for component in self.store.load_components().active():
                text = " ".join([component.name, component.description, component.signature])
                entities.append(("component", component, component.name, text))

        matches: list[RankedMatch] = []
        for kind, entity, title, text in entities:
            if entity.flagged_for_review or entity.metrics.confidence < threshold:
                continue
            if context.category is not None and entity.category != context.category:
                continue
            if not self.config.scopes.allows(entity.scope):
                continue
            if context.scope and entity.scope not in (context.scope, "universal"):
                continue

            keyword = self._keyword_score(context, text, entity.code)
            if keyword is None:
                continue
            recency = 1.0 - min(
                days_between(entity.last_activity, now) / self.config.retention.max_lesson_age,
                1.0,
            )
            relevance = (
                KEYWORD_WEIGHT * keyword
                + CONFIDENCE_WEIGHT * entity.metrics.confidence
                + RECENCY_WEIGHT * recency
                + SUCCESS_WEIGHT * entity.metrics.success_rate
            )
            matches.append(
                RankedMatch(
                    kind=kind,
                    id=entity.id,
                    title=title,
                    relevance=round(relevance, 4),
                    confidence=entity.metrics.confidence,
                    entity=entity,
                )
            )

        if self.config.injection.prioritize_by_confidence:
            matches.sort(key=lambda m: (m.relevance, m.confidence), reverse=True)
        else:
            matches.sort(key=lambda m: m.relevance, reverse=True)
        return matches

    @staticmethod
    def _keyword_score(context: QueryContext, text: str, code: str) -> float | None:
        """Keyword overlap, raised by code similarity. None means not relevant."""
        if not context.text and not context.code:
            return 1.0
        score = text_relevance(context.text, text) if context.text else 0.0
        if context.code and code:
            score = max(score, similarity(context.code, code))
        if score <= MIN_KEYWORD_RELEVANCE:
            return None
        return score

    # ─── Runs and export ─────────────────────────────────────────────────

    def lessons_for_run(self, run_id: str) -> list[Lesson]:
        """Active lessons a run discovered or reapplied.

        Raises:
            StoreError: If lessons.json cannot be read.
        """
        return lessons_for_run(self.store.load_lessons(), run_id)

    def components_for_run(self, run_id: str) -> list[Component]:
        """Active components a run extracted or used.

        Raises:
            StoreError: If components.json cannot be read.
        """
        return components_for_run(self.store.load_components(), run_id)

    def export(self, options: ExportOptions, now: datetime | None = None) -> str:
        return self.exporter.export(options, now)

    def report(self, now: datetime | None = None) -> str:
        return self.exporter.report(now)

    # ─── Analytics ───────────────────────────────────────────────────────

    def refresh_analytics(self, run: RunContext | None = None) -> AnalyticsSnapshot | None:
        """Recompute analytics now. Failures are logged, never raised."""
        self._pending_mutations = 0
        try:
            return self.analytics.refresh(
                run_id=run.run_id if run else "maintenance",
                tool=run.tool if run else "llkb",
            )
        except LLKBError as e:
            _logger.warning("analytics_refresh_failed", error=str(e))
            return None

    def _after_mutation(self, run: RunContext) -> None:
        self._pending_mutations += 1
        if self._pending_mutations >= self.config.analytics.recompute_every:
            self.refresh_analytics(run)
