"""Tests for health checks, stats and pruning."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from llkb.core.errors import CorruptDataError
from llkb.learning.history import EntityArchivedEvent, HistoryLog, LessonCreatedEvent
from llkb.learning.maintenance import get_stats, prune, run_health_check
from llkb.learning.store import (
    AppQuirk,
    Collection,
    ComponentsFile,
    KnowledgeStore,
    LessonsFile,
)
from llkb.utils.time import utc_now
from tests.helpers import make_component, make_lesson

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def _check(report, name: str):
    return next(c for c in report.checks if c.name == name)


class TestHealthCheck:
    """Overall status and individual checks."""

    def test_initialized_root_is_healthy(self, store: KnowledgeStore) -> None:
        store.initialize()

        report = run_health_check(store.root)

        assert report.status == "healthy"
        assert report.summary == "LLKB is healthy"
        assert [c.name for c in report.checks] == [
            "Directory exists",
            "Config file",
            "lessons.json",
            "components.json",
            "analytics.json",
            "History directory",
            "Lesson health",
        ]

    def test_missing_root_is_an_error(self, tmp_path: Path) -> None:
        report = run_health_check(tmp_path / "absent")

        assert report.status == "error"
        assert report.summary == "LLKB has errors: 1 failed checks"
        assert _check(report, "Directory exists").status == "fail"
        assert _check(report, "lessons.json").status == "warn"

    def test_missing_files_are_warnings(self, kb_root: Path) -> None:
        report = run_health_check(kb_root)

        assert report.status == "warning"
        assert report.summary == "LLKB has warnings: 5 warnings"
        assert _check(report, "Config file").message == "config.yml not found - using defaults"

    def test_corrupt_collection_fails(self, store: KnowledgeStore) -> None:
        store.initialize()
        (store.root / "lessons.json").write_text("[1, 2", encoding="utf-8")

        report = run_health_check(store.root)

        assert report.status == "error"
        check = _check(report, "lessons.json")
        assert check.status == "fail"
        assert check.details
        assert "Lesson health" not in {c.name for c in report.checks}

    def test_invalid_config_warns(self, store: KnowledgeStore) -> None:
        store.initialize()
        (store.root / "config.yml").write_text("extraction: [oops\n", encoding="utf-8")

        report = run_health_check(store.root)

        assert report.status == "warning"
        assert _check(report, "Config file").message == "config.yml is invalid - using defaults"

    def test_low_confidence_lessons_warn(self, store: KnowledgeStore) -> None:
        store.initialize()
        store.save_atomic(
            Collection.LESSONS,
            LessonsFile(lessons=[make_lesson(), make_lesson("L002", confidence=0.1)]),
        )

        report = run_health_check(store.root)

        check = _check(report, "Lesson health")
        assert check.status == "warn"
        assert check.message == "1 low confidence, 0 declining"
        assert check.details == "Low confidence: L002 (0.1)"

    def test_to_dict(self, store: KnowledgeStore) -> None:
        store.initialize()

        data = run_health_check(store.root).to_dict()

        assert data["status"] == "healthy"
        assert data["checks"][0]["name"] == "Directory exists"


class TestStats:
    def test_reports_snapshot_and_history(self, store: KnowledgeStore) -> None:
        store.initialize()
        HistoryLog(store.history_dir).append(
            LessonCreatedEvent(timestamp=NOW, entity_id="L001", run_id="R1")
        )

        stats = get_stats(store.root, now=NOW)

        assert stats.analytics.overview.lessons.total == 0
        assert stats.history.file_count == 1
        assert stats.history.today_events == 1

    def test_corrupt_analytics_raises(self, store: KnowledgeStore) -> None:
        store.initialize()
        (store.root / "analytics.json").write_text("nope", encoding="utf-8")

        with pytest.raises(CorruptDataError):
            get_stats(store.root)


class TestPrune:
    """History retention and inactivity archiving."""

    @pytest.fixture
    def seeded(self, store: KnowledgeStore) -> KnowledgeStore:
        store.initialize()
        history = HistoryLog(store.history_dir)
        for days_ago in (0, 400):
            history.append(
                LessonCreatedEvent(
                    timestamp=NOW - timedelta(days=days_ago), entity_id="L1", run_id="R"
                )
            )
        store.save_atomic(
            Collection.LESSONS,
            LessonsFile(
                lessons=[
                    make_lesson("L001"),
                    make_lesson("L002", title="Stale", first_seen=NOW - timedelta(days=100)),
                ]
            ),
        )
        store.save_atomic(
            Collection.COMPONENTS,
            ComponentsFile(
                components=[
                    make_component("COMP001", created_at=NOW - timedelta(days=100)),
                    make_component("COMP002", name="openMenu", last_used=NOW),
                ]
            ),
        )
        return store

    def test_dry_run_changes_nothing(self, seeded: KnowledgeStore) -> None:
        before = sorted(p.name for p in seeded.history_dir.iterdir())

        report = prune(seeded.root, archive_inactive_days=60, now=NOW)

        assert report.dry_run is True
        assert [p.name for p in report.history_files] == ["2025-02-08.jsonl"]
        assert report.archived_lessons == ["L002"]
        assert report.archived_components == ["COMP001"]
        assert sorted(p.name for p in seeded.history_dir.iterdir()) == before
        assert seeded.load_lessons().find("L002") is not None

    def test_force_applies(self, seeded: KnowledgeStore) -> None:
        report = prune(seeded.root, force=True, archive_inactive_days=60, now=NOW)

        assert report.errors == []
        assert not (seeded.history_dir / "2025-02-08.jsonl").exists()
        lessons = seeded.load_lessons()
        assert [lesson.id for lesson in lessons.lessons] == ["L001"]
        assert [lesson.id for lesson in lessons.archived] == ["L002"]
        assert lessons.archived[0].archived is True
        assert lessons.archived[0].archived_at == NOW
        component = seeded.load_components().components[0]
        assert component.archived is True
        assert seeded.load_analytics().overview.lessons.archived == 1

        archived_events = [
            e for e in HistoryLog(seeded.history_dir).read_events(utc_now().date())
            if isinstance(e, EntityArchivedEvent)
        ]
        assert {(e.entity_id, e.entity_kind) for e in archived_events} == {
            ("L002", "lesson"),
            ("COMP001", "component"),
        }

    def test_inactivity_window_is_opt_in(self, seeded: KnowledgeStore) -> None:
        report = prune(seeded.root, force=True, now=NOW)

        assert report.archived_lessons == ["L002"]
        assert report.reasons["L002"] == "no success in 90 days"
        assert report.archived_components == []
        assert [c.id for c in seeded.load_components().active()] == ["COMP001", "COMP002"]

    def test_history_days_override(self, seeded: KnowledgeStore) -> None:
        report = prune(seeded.root, history_retention_days=1000, now=NOW)

        assert report.history_files == []

    def test_to_dict_uses_camel_case(self, seeded: KnowledgeStore) -> None:
        data = prune(seeded.root, now=NOW).to_dict()

        assert data["dryRun"] is True
        assert data["historyFiles"] == ["2025-02-08.jsonl"]
        assert data["reasons"] == {"L002": "no success in 90 days"}


class TestRetentionPolicy:
    """Archiving driven by the retention section of config.yml."""

    @pytest.fixture
    def initialized(self, store: KnowledgeStore) -> KnowledgeStore:
        store.initialize()
        return store

    def test_low_success_rate_archived(self, initialized: KnowledgeStore) -> None:
        initialized.save_atomic(
            Collection.LESSONS,
            LessonsFile(
                lessons=[
                    make_lesson(
                        "L001",
                        success_rate=0.1,
                        last_success=NOW - timedelta(days=1),
                    ),
                    make_lesson(
                        "L002",
                        title="Too new to judge",
                        occurrences=2,
                        success_rate=0.0,
                        last_success=NOW - timedelta(days=1),
                    ),
                ]
            ),
        )

        report = prune(initialized.root, force=True, now=NOW)

        assert report.archived_lessons == ["L001"]
        assert report.reasons["L001"] == "success rate 0.10 below 0.60"
        lessons = initialized.load_lessons()
        assert [lesson.id for lesson in lessons.archived] == ["L001"]
        assert [lesson.id for lesson in lessons.active()] == ["L002"]

    def test_stale_success_archived(self, initialized: KnowledgeStore) -> None:
        initialized.save_atomic(
            Collection.LESSONS,
            LessonsFile(
                lessons=[
                    make_lesson(
                        "L001",
                        success_rate=0.1,
                        first_seen=datetime(2024, 6, 1, tzinfo=UTC),
                        last_success=datetime(2025, 1, 1, tzinfo=UTC),
                    ),
                    make_lesson("L002", last_success=NOW - timedelta(days=89)),
                ]
            ),
        )

        report = prune(initialized.root, force=True, now=NOW)

        assert report.archived_lessons == ["L001"]
        assert report.reasons["L001"] == "no success in 90 days"

    def test_low_usage_component_archived(self, initialized: KnowledgeStore) -> None:
        initialized.save_atomic(
            Collection.COMPONENTS,
            ComponentsFile(
                components=[
                    make_component(
                        "COMP001", total_uses=1, created_at=NOW - timedelta(days=40)
                    ),
                    make_component(
                        "COMP002",
                        name="openMenu",
                        total_uses=1,
                        created_at=NOW - timedelta(days=10),
                    ),
                ]
            ),
        )

        report = prune(initialized.root, force=True, now=NOW)

        assert report.archived_components == ["COMP001"]
        assert report.reasons["COMP001"] == "fewer than 2 uses after 30 days"
        components = initialized.load_components()
        assert [c.id for c in components.active()] == ["COMP002"]

    def test_config_thresholds_apply(self, initialized: KnowledgeStore) -> None:
        (initialized.root / "config.yml").write_text(
            "retention:\n  maxLessonAge: 200\n  minSuccessRate: 0.05\n",
            encoding="utf-8",
        )
        initialized.save_atomic(
            Collection.LESSONS,
            LessonsFile(
                lessons=[
                    make_lesson(
                        "L001",
                        success_rate=0.1,
                        last_success=NOW - timedelta(days=120),
                    ),
                ]
            ),
        )

        report = prune(initialized.root, force=True, now=NOW)

        assert report.archived_lessons == []
        assert initialized.load_lessons().find("L001") is not None

    def test_app_quirks_never_archived(self, initialized: KnowledgeStore) -> None:
        initialized.save_atomic(
            Collection.LESSONS,
            LessonsFile(
                app_quirks=[
                    AppQuirk(
                        id="Q001",
                        component="date picker",
                        description="Ignores typed input",
                        discovered_at=datetime(2024, 1, 1, tzinfo=UTC),
                    )
                ]
            ),
        )

        prune(initialized.root, force=True, archive_inactive_days=1, now=NOW)

        assert [q.id for q in initialized.load_lessons().app_quirks] == ["Q001"]
