"""Tests for the Learning API."""

from __future__ import annotations

from datetime import datetime

import pytest
from structlog.testing import capture_logs

from llkb.core.config import LLKBConfig
from llkb.core.errors import ErrorCode
from llkb.learning.api import (
    LearningAPI,
    PatternContext,
    QueryContext,
    QuirkContext,
    UsageContext,
)
from llkb.learning.history import (
    ComponentUsedEvent,
    LessonAppliedEvent,
    LessonCreatedEvent,
    OverrideEvent,
)
from llkb.learning.rate_limiter import DecisionCode, ExtractionCandidate, RunContext
from llkb.learning.store import (
    Category,
    Collection,
    ComponentsFile,
    DeferredCandidate,
    KnowledgeStore,
    LessonsFile,
)
from llkb.utils.time import utc_now
from tests.helpers import make_component, make_lesson

SAVE_CLICK = "await page.getByRole('button', { name: 'Save' }).click();"
CANCEL_CLICK = "await page.getByRole('button', { name: 'Cancel' }).click();"

CANDIDATE = (
    "await page.getByLabel('Search').fill(term);\n"
    "await page.keyboard.press('Enter');\n"
    "await expect(page.getByRole('table')).toBeVisible();"
)

LOGIN_VARIANT = (
    "await page.fill('#email', user);\n"
    "await page.fill('#secret', pass);\n"
    "await page.click('#go');"
)


@pytest.fixture
def api(store: KnowledgeStore, config: LLKBConfig) -> LearningAPI:
    return LearningAPI(store, config)


def _api_with(store: KnowledgeStore, **sections: object) -> LearningAPI:
    return LearningAPI(store, LLKBConfig.model_validate(sections))


def _today_events(api: LearningAPI, kind: type) -> list:
    return [e for e in api.history.read_events(utc_now().date()) if isinstance(e, kind)]


class TestRecordPatternLearned:
    """Creating and merging lessons."""

    def test_new_pattern_creates_lesson(self, api: LearningAPI, run: RunContext) -> None:
        result = api.record_pattern_learned(
            PatternContext(title="Use role locator for save", after_code=SAVE_CLICK),
            success=True,
            run=run,
        )

        assert result.success is True
        assert result.created is True
        assert result.entity_id == "L001"
        assert result.metrics is not None
        assert result.metrics.confidence == 0.1
        assert result.metrics.occurrences == 1

        lesson = api.store.load_lessons().find("L001")
        assert lesson is not None
        assert lesson.run_ids == ["JRN-0001"]
        assert lesson.source.run_id == "JRN-0001"
        assert len(_today_events(api, LessonCreatedEvent)) == 1

    def test_refreshes_analytics_after_mutation(
        self, api: LearningAPI, run: RunContext
    ) -> None:
        api.record_pattern_learned(
            PatternContext(title="Use role locator", after_code=SAVE_CLICK), True, run
        )

        snapshot = api.store.load_analytics()
        assert snapshot.overview.lessons.active == 1

    def test_same_shape_with_different_literals_merges(
        self, api: LearningAPI, run: RunContext
    ) -> None:
        api.record_pattern_learned(
            PatternContext(title="Use role locator", after_code=SAVE_CLICK), True, run
        )

        result = api.record_pattern_learned(
            PatternContext(title="Role locator for cancel", after_code=CANCEL_CLICK),
            True,
            RunContext(run_id="JRN-0002"),
        )

        assert result.created is False
        assert result.entity_id == "L001"
        assert result.metrics is not None
        assert result.metrics.occurrences == 2
        assert result.metrics.confidence == 0.2
        lessons = api.store.load_lessons()
        assert len(lessons.lessons) == 1
        assert lessons.lessons[0].run_ids == ["JRN-0001", "JRN-0002"]
        assert len(_today_events(api, LessonAppliedEvent)) == 1

    def test_failed_merge_lowers_success_rate(
        self, api: LearningAPI, run: RunContext
    ) -> None:
        api.record_pattern_learned(PatternContext(title="T", after_code=SAVE_CLICK), True, run)

        result = api.record_pattern_learned(
            PatternContext(title="T", after_code=CANCEL_CLICK), False, run
        )

        assert result.metrics is not None
        assert result.metrics.success_rate == 0.5

    def test_code_less_patterns_match_on_trigger(
        self, api: LearningAPI, run: RunContext
    ) -> None:
        first = api.record_pattern_learned(
            PatternContext(title="Dismiss cookie banner", trigger="Cookie banner visible"),
            True,
            run,
        )
        second = api.record_pattern_learned(
            PatternContext(title="Close the banner", trigger="cookie banner visible "),
            True,
            run,
        )

        assert first.created is True
        assert second.created is False
        assert second.entity_id == first.entity_id

    def test_category_inferred_when_missing(
        self, api: LearningAPI, run: RunContext
    ) -> None:
        api.record_pattern_learned(
            PatternContext(title="Give it time", after_code="await page.waitForTimeout(500);"),
            True,
            run,
        )

        lesson = api.store.load_lessons().find("L001")
        assert lesson is not None
        assert lesson.category is Category.TIMING

    def test_archived_ids_are_not_reused(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.save_atomic(
            Collection.LESSONS,
            LessonsFile(archived=[make_lesson("L007", code="retired()", archived=True)]),
        )

        result = api.record_pattern_learned(
            PatternContext(title="New", after_code=SAVE_CLICK), True, run
        )

        assert result.entity_id == "L008"

    def test_disabled_config_writes_nothing(
        self, store: KnowledgeStore, run: RunContext
    ) -> None:
        api = _api_with(store, enabled=False)

        result = api.record_pattern_learned(
            PatternContext(title="T", after_code=SAVE_CLICK), True, run
        )

        assert result.success is False
        assert result.error_code is ErrorCode.LLKB_DISABLED
        assert not store.exists(Collection.LESSONS)
        assert api.query(QueryContext()) == []

    def test_corrupt_store_returns_failure(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        (store.root / "lessons.json").write_text("{not json", encoding="utf-8")

        with capture_logs() as logs:
            result = api.record_pattern_learned(
                PatternContext(title="T", after_code=SAVE_CLICK), True, run
            )

        assert result.success is False
        assert result.error_code is ErrorCode.CORRUPT_DATA
        assert any(e["event"] == "operation_failed" for e in logs)

    def test_invalid_scope_is_rejected_before_writing(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        result = api.record_pattern_learned(
            PatternContext(title="T", after_code=SAVE_CLICK, scope="global"), True, run
        )

        assert result.success is False
        assert result.error_code is ErrorCode.INVALID_INPUT
        assert result.error is not None
        assert "global" in result.error
        assert not store.exists(Collection.LESSONS)
        assert _today_events(api, LessonCreatedEvent) == []

    def test_blank_title_is_rejected(self, api: LearningAPI, run: RunContext) -> None:
        result = api.record_pattern_learned(
            PatternContext(title="  ", after_code=SAVE_CLICK), True, run
        )

        assert result.success is False
        assert result.error_code is ErrorCode.INVALID_INPUT


class TestDegradedSideEffects:
    """History and analytics failures never fail the operation."""

    def test_unwritable_history_still_records_lesson(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.history_dir.write_text("not a directory", encoding="utf-8")

        with capture_logs() as logs:
            result = api.record_pattern_learned(
                PatternContext(title="T", after_code=SAVE_CLICK), True, run
            )

        assert result.success is True
        assert result.created is True
        assert store.load_lessons().find("L001") is not None
        assert any(e["event"] == "history_write_failed" for e in logs)

    def test_failed_analytics_save_still_records_lesson(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        (store.root / "analytics.json").mkdir()

        with capture_logs() as logs:
            result = api.record_pattern_learned(
                PatternContext(title="T", after_code=SAVE_CLICK), True, run
            )

        assert result.success is True
        assert store.load_lessons().find("L001") is not None
        assert any(e["event"] == "analytics_refresh_failed" for e in logs)

    def test_unwritable_history_still_extracts_component(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.history_dir.write_text("not a directory", encoding="utf-8")

        outcome = api.extract_component(ExtractionCandidate(code=CANDIDATE), run)

        assert outcome.extracted is True
        assert store.load_components().find("COMP001") is not None


class TestRecordApplied:
    """Direct counter updates by id."""

    def test_lesson_applied_updates_metrics(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.save_atomic(Collection.LESSONS, LessonsFile(lessons=[make_lesson()]))

        result = api.record_lesson_applied(
            "L001", run, success=False, context=UsageContext(file="login.spec.ts")
        )

        assert result.success is True
        assert result.metrics is not None
        assert result.metrics.occurrences == 6
        assert result.metrics.success_rate == 0.83
        event = _today_events(api, LessonAppliedEvent)[-1]
        assert event.success is False
        assert event.metadata == {"file": "login.spec.ts"}

    def test_unknown_lesson(self, api: LearningAPI, run: RunContext) -> None:
        result = api.record_lesson_applied("L999", run, success=True)

        assert result.success is False
        assert result.error_code is ErrorCode.ENTITY_NOT_FOUND
        assert result.error == "Lesson not found: L999"

    def test_component_used(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.save_atomic(Collection.COMPONENTS, ComponentsFile(components=[make_component()]))

        result = api.record_component_used("COMP001", run, success=True)

        assert result.success is True
        assert result.metrics is not None
        assert result.metrics.occurrences == 5
        component = store.load_components().find("COMP001")
        assert component is not None
        assert component.metrics.used_in == ["JRN-0001"]
        assert component.metrics.last_used is not None
        assert len(_today_events(api, ComponentUsedEvent)) == 1

    def test_archived_component_is_not_found(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.save_atomic(
            Collection.COMPONENTS,
            ComponentsFile(components=[make_component(archived=True)]),
        )

        result = api.record_component_used("COMP001", run, success=True)

        assert result.error_code is ErrorCode.ENTITY_NOT_FOUND


class TestOverrides:
    """Override counting and review flags."""

    def test_flagged_after_threshold_and_hidden_from_query(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.save_atomic(Collection.LESSONS, LessonsFile(lessons=[make_lesson()]))
        assert [m.id for m in api.query(QueryContext(text="submit"))] == ["L001"]

        first = api.record_override("L001", run, reason="brittle")
        second = api.record_override("L001", run)
        with capture_logs() as logs:
            third = api.record_override("L001", run)

        assert (first.flagged_for_review, second.flagged_for_review) == (False, False)
        assert third.flagged_for_review is True
        assert any(e["event"] == "entity_flagged_for_review" for e in logs)
        assert api.query(QueryContext(text="submit")) == []
        overrides = _today_events(api, OverrideEvent)
        assert [e.reason for e in overrides] == ["brittle", "unspecified", "unspecified"]

    def test_components_can_be_overridden(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.save_atomic(Collection.COMPONENTS, ComponentsFile(components=[make_component()]))

        result = api.record_override("COMP001", run)

        assert result.success is True
        component = store.load_components().find("COMP001")
        assert component is not None
        assert component.override_count == 1

    def test_unknown_entity(self, api: LearningAPI, run: RunContext) -> None:
        result = api.record_override("X1", run)

        assert result.error_code is ErrorCode.ENTITY_NOT_FOUND

    def test_disabled_overrides(self, store: KnowledgeStore, run: RunContext) -> None:
        store.save_atomic(Collection.LESSONS, LessonsFile(lessons=[make_lesson()]))
        api = _api_with(store, overrides={"allowUserOverride": False})

        result = api.record_override("L001", run)

        assert result.success is False
        assert result.error_code is ErrorCode.OVERRIDES_DISABLED
        lesson = store.load_lessons().find("L001")
        assert lesson is not None
        assert lesson.override_count == 0

    def test_log_overrides_off_skips_history(
        self, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.save_atomic(Collection.LESSONS, LessonsFile(lessons=[make_lesson()]))
        api = _api_with(store, overrides={"logOverrides": False})

        api.record_override("L001", run)

        assert _today_events(api, OverrideEvent) == []


class TestExtractComponent:
    """Extraction, deferral and deferred processing."""

    def test_extracts_fresh_candidate(self, api: LearningAPI, run: RunContext) -> None:
        outcome = api.extract_component(
            ExtractionCandidate(code=CANDIDATE, name="searchTable"), run
        )

        assert outcome.extracted is True
        assert outcome.component_id == "COMP001"
        assert run.predictive_extractions == 1
        component = api.store.load_components().find("COMP001")
        assert component is not None
        assert component.name == "searchTable"
        assert component.source.extraction_type == "predictive"
        assert component.source.extracted_from == "JRN-0001"

    def test_rate_limited_candidate_is_deferred(self, api: LearningAPI) -> None:
        exhausted = RunContext(run_id="R1", predictive_extractions=3)

        outcome = api.extract_component(ExtractionCandidate(code=CANDIDATE), exhausted)

        assert outcome.extracted is False
        assert outcome.decision is not None
        assert outcome.decision.code is DecisionCode.RUN_LIMIT
        assert outcome.deferred_id == "D001"
        assert api.store.load_components().components == []

    def test_duplicate_suggests_existing(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.save_atomic(Collection.COMPONENTS, ComponentsFile(components=[make_component()]))

        outcome = api.extract_component(ExtractionCandidate(code=LOGIN_VARIANT), run)

        assert outcome.extracted is False
        assert outcome.decision is not None
        assert outcome.decision.duplicate_of == "COMP001"
        assert outcome.deferred_id is None

    def test_reactive_ignores_rate_limits(self, api: LearningAPI) -> None:
        exhausted = RunContext(run_id="R1", predictive_extractions=3)

        outcome = api.extract_component(
            ExtractionCandidate(code=CANDIDATE, occurrences=2, distinct_runs=2),
            exhausted,
            predictive=False,
        )

        assert outcome.extracted is True
        assert exhausted.predictive_extractions == 3
        component = api.store.load_components().find("COMP001")
        assert component is not None
        assert component.source.extraction_type == "reactive"
        assert component.name == "extracted_comp001"

    def test_invalid_candidate_is_rejected(self, api: LearningAPI, run: RunContext) -> None:
        outcome = api.extract_component(
            ExtractionCandidate(code=CANDIDATE, scope="Framework:React"), run
        )

        assert outcome.extracted is False
        assert outcome.decision is None
        assert outcome.error_code is ErrorCode.INVALID_INPUT
        assert run.predictive_extractions == 0
        assert not api.store.exists(Collection.COMPONENTS)

    def test_reactive_single_sighting_is_skipped(self, api: LearningAPI) -> None:
        outcome = api.extract_component(
            ExtractionCandidate(code=CANDIDATE), RunContext(run_id="R1"), predictive=False
        )

        assert outcome.extracted is False
        assert outcome.decision is not None
        assert outcome.decision.code is DecisionCode.TOO_FEW_OCCURRENCES
        assert outcome.deferred_id is None
        assert api.store.load_components().components == []

    def test_process_deferred_extracts_when_allowed(self, api: LearningAPI) -> None:
        api.extract_component(
            ExtractionCandidate(code=CANDIDATE, name="searchTable"),
            RunContext(run_id="R1", predictive_extractions=3),
        )

        outcomes = api.process_deferred(RunContext(run_id="R2"))

        assert [o.extracted for o in outcomes] == [True]
        components = api.store.load_components()
        assert [c.name for c in components.components] == ["searchTable"]
        assert components.deferred == []

    def test_process_deferred_drops_rejected(
        self, api: LearningAPI, store: KnowledgeStore, run: RunContext
    ) -> None:
        store.save_atomic(
            Collection.COMPONENTS,
            ComponentsFile(
                components=[make_component()],
                deferred=[
                    DeferredCandidate(
                        id="D001",
                        code=LOGIN_VARIANT,
                        reason="per-run limit reached (3/3)",
                        reason_code="run_limit",
                        run_id="R0",
                    )
                ],
            ),
        )

        outcomes = api.process_deferred(run)

        assert len(outcomes) == 1
        assert outcomes[0].decision is not None
        assert outcomes[0].decision.code is DecisionCode.DUPLICATE
        assert store.load_components().deferred == []

    def test_process_deferred_stops_when_limited_again(self, api: LearningAPI) -> None:
        exhausted = RunContext(run_id="R1", predictive_extractions=3)
        api.extract_component(ExtractionCandidate(code=CANDIDATE), exhausted)

        outcomes = api.process_deferred(exhausted)

        assert len(outcomes) == 1
        assert outcomes[0].extracted is False
        assert len(api.store.load_components().deferred) == 1


class TestRecordQuirk:
    """App quirks."""

    def test_same_quirk_is_recorded_once(self, api: LearningAPI, run: RunContext) -> None:
        first = api.record_quirk(
            QuirkContext(component="DatePicker", description="Ignores typed dates"), run
        )
        second = api.record_quirk(
            QuirkContext(component="datepicker", description="ignores typed dates"),
            RunContext(run_id="JRN-0002"),
        )
        other = api.record_quirk(
            QuirkContext(component="DatePicker", description="Closes on scroll"), run
        )

        assert (first.entity_id, first.created) == ("Q001", True)
        assert (second.entity_id, second.created) == ("Q001", False)
        assert other.entity_id == "Q002"
        quirks = api.store.load_lessons().app_quirks
        assert quirks[0].affected_runs == ["JRN-0001", "JRN-0002"]


class TestQuery:
    """Ranking and filtering."""

    @pytest.fixture
    def seeded(self, store: KnowledgeStore) -> KnowledgeStore:
        store.save_atomic(
            Collection.LESSONS,
            LessonsFile(
                lessons=[
                    make_lesson("L001", title="Use role locator for submit", confidence=0.8),
                    make_lesson(
                        "L002",
                        title="Wait for spinner to disappear",
                        code="await page.waitForSelector('.spinner', { state: 'detached' });",
                        category=Category.TIMING,
                        confidence=0.9,
                    ),
                    make_lesson("L003", title="Submit via keyboard", confidence=0.5),
                    make_lesson(
                        "L004",
                        title="Submit in framework",
                        scope="framework:playwright",
                        confidence=0.9,
                    ),
                ]
            ),
        )
        store.save_atomic(
            Collection.COMPONENTS,
            ComponentsFile(components=[make_component(scope="universal", confidence=0.75)]),
        )
        return store

    def test_ranks_by_relevance(
        self, seeded: KnowledgeStore, config: LLKBConfig, now: datetime
    ) -> None:
        api = LearningAPI(seeded, config)

        matches = api.query(QueryContext(include_components=False), now=now)

        assert [m.id for m in matches] == ["L002", "L004", "L001"]
        assert matches[0].relevance > matches[-1].relevance

    def test_text_filters_irrelevant(
        self, seeded: KnowledgeStore, config: LLKBConfig, now: datetime
    ) -> None:
        api = LearningAPI(seeded, config)

        matches = api.query(QueryContext(text="submit", scope="app-specific"), now=now)

        assert [m.id for m in matches] == ["L001"]

    def test_min_confidence_override(
        self, seeded: KnowledgeStore, config: LLKBConfig, now: datetime
    ) -> None:
        api = LearningAPI(seeded, config)

        matches = api.query(
            QueryContext(text="submit", scope="app-specific", min_confidence=0.4), now=now
        )

        assert {m.id for m in matches} == {"L001", "L003"}

    def test_category_filter(
        self, seeded: KnowledgeStore, config: LLKBConfig, now: datetime
    ) -> None:
        api = LearningAPI(seeded, config)

        matches = api.query(QueryContext(category=Category.TIMING), now=now)

        assert [m.id for m in matches] == ["L002"]

    def test_code_similarity_finds_components(
        self, seeded: KnowledgeStore, config: LLKBConfig, now: datetime
    ) -> None:
        api = LearningAPI(seeded, config)

        matches = api.query(
            QueryContext(code=LOGIN_VARIANT, scope="app-specific", include_lessons=False),
            now=now,
        )

        assert [(m.kind, m.id) for m in matches] == [("component", "COMP001")]

    def test_scope_switch_hides_framework_entries(
        self, seeded: KnowledgeStore, now: datetime
    ) -> None:
        api = _api_with(seeded, scopes={"frameworkSpecific": False})

        matches = api.query(QueryContext(include_components=False), now=now)

        assert "L004" not in {m.id for m in matches}
