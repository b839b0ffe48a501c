"""Tests for analytics snapshot aggregation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from llkb.learning.analytics import AnalyticsAggregator
from llkb.learning.history import AnalyticsRecalculatedEvent, HistoryLog
from llkb.learning.store import (
    AppQuirk,
    Category,
    Collection,
    ComponentsFile,
    ConfidenceHistoryEntry,
    DeferredCandidate,
    KnowledgeStore,
    LessonsFile,
)
from llkb.utils.time import utc_now
from tests.helpers import make_component, make_lesson

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def _lessons() -> LessonsFile:
    declining = make_lesson("L003", title="Flaky wait", confidence=0.5, category=Category.TIMING)
    declining.metrics.confidence_history = [
        ConfidenceHistoryEntry(date=NOW - timedelta(days=3), value=0.9),
        ConfidenceHistoryEntry(date=NOW - timedelta(days=2), value=0.9),
        ConfidenceHistoryEntry(date=NOW - timedelta(days=1), value=0.5),
    ]
    return LessonsFile(
        lessons=[
            make_lesson("L001", occurrences=8, success_rate=1.0, confidence=0.8),
            make_lesson("L002", title="Old", occurrences=2, success_rate=0.5, confidence=0.2),
            declining,
            make_lesson("L004", title="Archived", archived=True),
        ],
        archived=[make_lesson("L000", title="Retired", archived=True)],
        app_quirks=[AppQuirk(id="Q001", component="DatePicker", description="Ignores typing")],
    )


def _components() -> ComponentsFile:
    return ComponentsFile(
        components=[
            make_component("COMP001", total_uses=6),
            make_component(
                "COMP002",
                name="openMenu",
                category=Category.NAVIGATION,
                scope="universal",
                total_uses=0,
                created_at=NOW - timedelta(days=60),
                flagged_for_review=True,
            ),
            make_component("COMP003", name="gone", archived=True),
        ],
        deferred=[
            DeferredCandidate(id="D001", code="x", reason="r", reason_code="run_limit", run_id="R")
        ],
    )


class TestRecompute:
    """Pure snapshot computation."""

    def test_overview_counts(self, store: KnowledgeStore) -> None:
        snapshot = AnalyticsAggregator(store).recompute(_lessons(), _components(), NOW)

        overview = snapshot.overview
        assert (overview.lessons.total, overview.lessons.active, overview.lessons.archived) == (
            5, 3, 2,
        )
        assert overview.components.active == 2
        assert overview.components.archived == 1
        assert overview.app_quirks == 1
        assert overview.deferred_candidates == 1

    def test_lesson_and_component_stats(self, store: KnowledgeStore) -> None:
        snapshot = AnalyticsAggregator(store).recompute(_lessons(), _components(), NOW)

        assert snapshot.lesson_stats.by_category == {"selector": 2, "timing": 1}
        assert snapshot.lesson_stats.avg_confidence == 0.5
        assert snapshot.component_stats.by_scope == {"app-specific": 1, "universal": 1}
        assert snapshot.component_stats.total_reuses == 6
        assert snapshot.component_stats.avg_reuses_per_component == 3.0

    def test_top_performers(self, store: KnowledgeStore) -> None:
        snapshot = AnalyticsAggregator(store).recompute(_lessons(), _components(), NOW)

        assert [p.id for p in snapshot.top_performers.lessons] == ["L001", "L003", "L002"]
        assert snapshot.top_performers.lessons[0].score == 8.0
        assert [p.id for p in snapshot.top_performers.components] == ["COMP001", "COMP002"]

    def test_needs_review(self, store: KnowledgeStore) -> None:
        snapshot = AnalyticsAggregator(store).recompute(_lessons(), _components(), NOW)

        review = snapshot.needs_review
        assert review.low_confidence_lessons == ["L002"]
        assert review.declining_lessons == ["L003"]
        assert review.low_usage_components == ["COMP002"]
        assert review.flagged_by_overrides == ["COMP002"]
        assert review.total == 4

    def test_empty_store(self, store: KnowledgeStore) -> None:
        snapshot = AnalyticsAggregator(store).recompute(LessonsFile(), ComponentsFile(), NOW)

        assert snapshot.lesson_stats.avg_confidence == 0.0
        assert snapshot.component_stats.avg_reuses_per_component == 0.0
        assert snapshot.needs_review.total == 0

    def test_inputs_are_not_mutated(self, store: KnowledgeStore) -> None:
        lessons = _lessons()
        before = lessons.model_copy(deep=True)

        AnalyticsAggregator(store).recompute(lessons, _components(), NOW)

        assert lessons == before


class TestRefresh:
    """Persisting the snapshot."""

    def test_saves_snapshot_and_logs_event(
        self, store: KnowledgeStore, history: HistoryLog
    ) -> None:
        store.save_atomic(Collection.LESSONS, _lessons())
        store.save_atomic(Collection.COMPONENTS, _components())

        snapshot = AnalyticsAggregator(store, history=history).refresh(run_id="R1", now=NOW)

        assert store.load_analytics() == snapshot
        events = history.read_events(utc_now().date())
        assert isinstance(events[-1], AnalyticsRecalculatedEvent)
        assert events[-1].entity_id == "analytics"
