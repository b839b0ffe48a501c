"""Analytics snapshot aggregation.

The snapshot in analytics.json is derived data: it is always rebuilt in full
from lessons.json and components.json, never patched incrementally, so it
cannot drift from the collections it summarizes.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime

from llkb.core.constants import TOP_PERFORMERS_LIMIT
from llkb.core.logging import get_logger
from llkb.learning.confidence import ConfidenceModel
from llkb.learning.history import AnalyticsRecalculatedEvent, HistoryLog
from llkb.learning.store import (
    AnalyticsSnapshot,
    Collection,
    ComponentsFile,
    KnowledgeStore,
    LessonsFile,
)
from llkb.learning.store.models import (
    AnalyticsOverview,
    ComponentPerformer,
    ComponentStats,
    EntityCounts,
    LessonPerformer,
    LessonStats,
    NeedsReview,
    TopPerformers,
)
from llkb.utils.time import utc_now

_logger = get_logger("analytics")


def _average(values: list[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


class AnalyticsAggregator:
    """Recomputes and persists the analytics snapshot."""

    def __init__(
        self,
        store: KnowledgeStore,
        confidence: ConfidenceModel | None = None,
        history: HistoryLog | None = None,
    ) -> None:
        self.store = store
        self.confidence = confidence or ConfidenceModel()
        self.history = history

    def recompute(
        self,
        lessons_file: LessonsFile,
        components_file: ComponentsFile,
        now: datetime | None = None,
    ) -> AnalyticsSnapshot:
        """Build a fresh snapshot. Does not touch disk or mutate its inputs."""
        now = now or utc_now()
        active_lessons = lessons_file.active()
        archived_lessons = len(lessons_file.all_lessons()) - len(active_lessons)
        active_components = components_file.active()

        overview = AnalyticsOverview(
            lessons=EntityCounts(
                total=len(active_lessons) + archived_lessons,
                active=len(active_lessons),
                archived=archived_lessons,
            ),
            components=EntityCounts(
                total=len(components_file.components),
                active=len(active_components),
                archived=len(components_file.components) - len(active_components),
            ),
            app_quirks=len(lessons_file.app_quirks),
            deferred_candidates=len(components_file.deferred),
        )

        lesson_stats = LessonStats(
            by_category=dict(Counter(lesson.category.value for lesson in active_lessons)),
            avg_confidence=_average([lesson.metrics.confidence for lesson in active_lessons]),
            avg_success_rate=_average(
                [lesson.metrics.success_rate for lesson in active_lessons]
            ),
        )

        total_reuses = sum(c.metrics.total_uses for c in active_components)
        component_stats = ComponentStats(
            by_category=dict(Counter(c.category.value for c in active_components)),
            by_scope=dict(Counter(c.scope for c in active_components)),
            total_reuses=total_reuses,
            avg_reuses_per_component=(
                round(total_reuses / len(active_components), 2) if active_components else 0.0
            ),
        )

        ranked_lessons = sorted(
            active_lessons,
            key=lambda lesson: lesson.metrics.success_rate * lesson.metrics.occurrences,
            reverse=True,
        )
        ranked_components = sorted(
            active_components,
            key=lambda c: c.metrics.total_uses,
            reverse=True,
        )
        top_performers = TopPerformers(
            lessons=[
                LessonPerformer(
                    id=lesson.id,
                    title=lesson.title,
                    score=round(lesson.metrics.success_rate * lesson.metrics.occurrences, 2),
                )
                for lesson in ranked_lessons[:TOP_PERFORMERS_LIMIT]
            ],
            components=[
                ComponentPerformer(id=c.id, name=c.name, uses=c.metrics.total_uses)
                for c in ranked_components[:TOP_PERFORMERS_LIMIT]
            ],
        )

        review_threshold = self.confidence.config.review_threshold
        needs_review = NeedsReview(
            low_confidence_lessons=[
                lesson.id for lesson in active_lessons
                if lesson.metrics.confidence < review_threshold
            ],
            declining_lessons=[
                lesson.id for lesson in active_lessons
                if self.confidence.detect_declining(lesson)
            ],
            low_usage_components=[
                c.id for c in active_components
                if self.confidence.is_low_usage(c, now)
            ],
            flagged_by_overrides=[
                entity.id for entity in [*active_lessons, *active_components]
                if entity.flagged_for_review
            ],
        )

        return AnalyticsSnapshot(
            last_updated=now,
            overview=overview,
            lesson_stats=lesson_stats,
            component_stats=component_stats,
            top_performers=top_performers,
            needs_review=needs_review,
        )

    def refresh(
        self,
        run_id: str = "maintenance",
        tool: str = "llkb",
        now: datetime | None = None,
    ) -> AnalyticsSnapshot:
        """Load collections, recompute, and persist the snapshot.

        Raises:
            StoreError: If a collection is corrupt or the save fails.
        """
        snapshot = self.recompute(
            self.store.load_lessons(),
            self.store.load_components(),
            now,
        )
        self.store.save_atomic(Collection.ANALYTICS, snapshot)
        _logger.debug(
            "analytics_recalculated",
            lessons=snapshot.overview.lessons.active,
            components=snapshot.overview.components.active,
            needs_review=snapshot.needs_review.total,
        )
        if self.history is not None:
            self.history.append(
                AnalyticsRecalculatedEvent(
                    run_id=run_id,
                    tool=tool,
                    summary=(
                        f"Analytics recalculated: {snapshot.overview.lessons.active} lessons, "
                        f"{snapshot.overview.components.active} components"
                    ),
                )
            )
        return snapshot
