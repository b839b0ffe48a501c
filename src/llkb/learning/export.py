"""Export and reporting over the knowledge base.

Produces a full dump of lessons and components (JSON, or markdown grouped
by category) and a markdown status report, plus the per-run lookups used
to see what a single run contributed.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from llkb.core.constants import LOW_CONFIDENCE_THRESHOLD, TOP_PERFORMERS_LIMIT
from llkb.learning.store import (
    Category,
    Component,
    ComponentsFile,
    KnowledgeStore,
    Lesson,
    LessonsFile,
)
from llkb.utils.time import utc_now


class ExportFormat(str, Enum):
    JSON = "json"
    MARKDOWN = "markdown"


@dataclass
class ExportOptions:
    """What to include in an export.

    Attributes:
        format: Output format.
        include_archived: Also export archived lessons and components.
        include_metrics: Add metrics blocks to markdown output.
        include_source: Add each component's original code to markdown output.
        categories: Only export these categories (all when empty).
        scopes: Only export these scopes (all when empty).
    """

    format: ExportFormat = ExportFormat.JSON
    include_archived: bool = False
    include_metrics: bool = False
    include_source: bool = False
    categories: list[Category] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)

    def selects(self, entity: Lesson | Component) -> bool:
        if self.categories and entity.category not in self.categories:
            return False
        return not self.scopes or entity.scope in self.scopes


def lessons_for_run(lessons_file: LessonsFile, run_id: str) -> list[Lesson]:
    """Active lessons the run discovered or reapplied."""
    return [lesson for lesson in lessons_file.active() if run_id in lesson.run_ids]


def components_for_run(components_file: ComponentsFile, run_id: str) -> list[Component]:
    """Active components the run extracted or used."""
    return [
        c for c in components_file.active()
        if c.source.extracted_from == run_id or run_id in c.metrics.used_in
    ]


def _percent(value: float, digits: int = 1) -> str:
    return f"{value * 100:.{digits}f}%"


def _heading(category: Category) -> str:
    return category.value.replace("-", " ").capitalize()


def _by_category(entities: list[Any]) -> dict[Category, list[Any]]:
    grouped: dict[Category, list[Any]] = {}
    for entity in entities:
        grouped.setdefault(entity.category, []).append(entity)
    return grouped


class KnowledgeExporter:
    """Renders the store's collections for people and other tools.

    Supports two export formats:
    - JSON with the on-disk camelCase field names
    - Markdown grouped by category
    """

    def __init__(
        self,
        store: KnowledgeStore,
        review_threshold: float = LOW_CONFIDENCE_THRESHOLD,
    ):
        self.store = store
        self.review_threshold = review_threshold

    def _select(self, options: ExportOptions) -> tuple[list[Lesson], list[Component]]:
        lessons_file = self.store.load_lessons()
        components_file = self.store.load_components()
        if options.include_archived:
            lessons = lessons_file.all_lessons()
            components = list(components_file.components)
        else:
            lessons = lessons_file.active()
            components = components_file.active()
        return (
            [lesson for lesson in lessons if options.selects(lesson)],
            [c for c in components if options.selects(c)],
        )

    def export(self, options: ExportOptions, now: datetime | None = None) -> str:
        """Export the selected entities.

        Raises:
            StoreError: If a collection file is corrupt.
        """
        lessons, components = self._select(options)
        if options.format is ExportFormat.MARKDOWN:
            return "\n\n".join([
                self._lessons_markdown(lessons, options.include_metrics),
                self._components_markdown(
                    components, options.include_metrics, options.include_source
                ),
            ])
        payload = {
            "exported": (now or utc_now()).isoformat(),
            "lessons": [lesson.to_json_dict() for lesson in lessons],
            "components": [c.to_json_dict() for c in components],
        }
        return json.dumps(payload, indent=2)

    def _lessons_markdown(self, lessons: list[Lesson], include_metrics: bool) -> str:
        lines = ["# Lessons", ""]
        for category, grouped in _by_category(lessons).items():
            lines += [f"## {_heading(category)}", ""]
            for lesson in grouped:
                lines += [f"### {lesson.id}: {lesson.title}", ""]
                if lesson.trigger:
                    lines += [f"**Trigger:** {lesson.trigger}", ""]
                if lesson.problem:
                    lines += [f"**Problem:** {lesson.problem}", ""]
                if lesson.solution:
                    lines += [f"**Solution:** {lesson.solution}", ""]
                lines += [f"**Scope:** {lesson.scope}", ""]
                if include_metrics:
                    lines += [
                        "**Metrics:**",
                        f"- Occurrences: {lesson.metrics.occurrences}",
                        f"- Success Rate: {_percent(lesson.metrics.success_rate)}",
                        f"- Confidence: {_percent(lesson.metrics.confidence)}",
                        "",
                    ]
                lines += ["---", ""]
        return "\n".join(lines)

    def _components_markdown(
        self,
        components: list[Component],
        include_metrics: bool,
        include_source: bool,
    ) -> str:
        lines = ["# Components", ""]
        for category, grouped in _by_category(components).items():
            lines += [f"## {_heading(category)}", ""]
            for component in grouped:
                lines += [f"### {component.id}: {component.name}", ""]
                if component.description:
                    lines += [component.description, ""]
                if component.module_path:
                    lines += [f"**Module:** `{component.module_path}`", ""]
                lines += [f"**Scope:** {component.scope}", ""]
                if include_metrics:
                    lines += [
                        "**Metrics:**",
                        f"- Total Uses: {component.metrics.total_uses}",
                        f"- Success Rate: {_percent(component.metrics.success_rate)}",
                        "",
                    ]
                if include_source:
                    lines += [
                        "**Original Code:**",
                        "",
                        "```typescript",
                        component.source.original_code,
                        "```",
                        "",
                    ]
                lines += ["---", ""]
        return "\n".join(lines)

    def report(self, now: datetime | None = None) -> str:
        """Markdown status report over active entities.

        Raises:
            StoreError: If a collection file is corrupt.
        """
        lessons_file = self.store.load_lessons()
        components_file = self.store.load_components()
        lessons = lessons_file.active()
        components = components_file.active()
        archived_lessons = len(lessons_file.all_lessons()) - len(lessons)
        archived_components = len(components_file.components) - len(components)

        avg_confidence = (
            sum(lesson.metrics.confidence for lesson in lessons) / len(lessons)
            if lessons else 0.0
        )
        avg_success = (
            sum(lesson.metrics.success_rate for lesson in lessons) / len(lessons)
            if lessons else 0.0
        )
        total_uses = sum(c.metrics.total_uses for c in components)

        lines = [
            "# LLKB Status Report",
            "",
            f"**Generated:** {(now or utc_now()).isoformat()}",
            "",
            "## Overview",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Active Lessons | {len(lessons)} |",
            f"| Archived Lessons | {archived_lessons} |",
            f"| Active Components | {len(components)} |",
            f"| Archived Components | {archived_components} |",
            f"| App Quirks | {len(lessons_file.app_quirks)} |",
            f"| Avg. Lesson Confidence | {_percent(avg_confidence)} |",
            f"| Avg. Lesson Success Rate | {_percent(avg_success)} |",
            f"| Total Component Uses | {total_uses} |",
            "",
        ]
        for title, counts in (
            ("Lessons by Category", Counter(lesson.category.value for lesson in lessons)),
            ("Components by Category", Counter(c.category.value for c in components)),
        ):
            lines += [f"## {title}", "", "| Category | Count |", "|----------|-------|"]
            lines += [f"| {name} | {count} |" for name, count in counts.most_common()]
            lines.append("")

        top_lessons = sorted(lessons, key=lambda lesson: lesson.metrics.confidence, reverse=True)
        if top_lessons:
            lines += ["## Top Lessons (by Confidence)", ""]
            lines += [
                f"- **{lesson.id}** - {lesson.title} "
                f"({_percent(lesson.metrics.confidence, 0)})"
                for lesson in top_lessons[:TOP_PERFORMERS_LIMIT]
            ]
            lines.append("")

        top_components = sorted(components, key=lambda c: c.metrics.total_uses, reverse=True)
        if top_components:
            lines += ["## Most Used Components", ""]
            lines += [
                f"- **{c.id}** - {c.name} ({c.metrics.total_uses} uses)"
                for c in top_components[:TOP_PERFORMERS_LIMIT]
            ]
            lines.append("")

        low_confidence = [
            lesson for lesson in lessons
            if lesson.metrics.confidence < self.review_threshold
        ]
        if low_confidence:
            lines += ["## Needs Review (Low Confidence)", ""]
            lines += [
                f"- **{lesson.id}** - {lesson.title} "
                f"({_percent(lesson.metrics.confidence, 0)})"
                for lesson in low_confidence[:TOP_PERFORMERS_LIMIT]
            ]
            lines.append("")

        return "\n".join(lines)
