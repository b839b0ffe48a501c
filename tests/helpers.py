"""Shared builders for LLKB tests."""

from datetime import UTC, datetime

from llkb.learning.store import (
    Category,
    Component,
    ComponentMetrics,
    ComponentSource,
    Lesson,
    LessonMetrics,
)


def make_lesson(
    lesson_id: str = "L001",
    *,
    title: str = "Use role locator for submit",
    code: str = "await page.getByRole('button', { name: 'Submit' }).click();",
    category: Category = Category.SELECTOR,
    occurrences: int = 5,
    success_rate: float = 1.0,
    confidence: float = 0.8,
    first_seen: datetime | None = None,
    last_success: datetime | None = None,
    **kwargs: object,
) -> Lesson:
    """Build a lesson with sensible metrics for tests."""
    first_seen = first_seen or datetime(2026, 3, 1, tzinfo=UTC)
    return Lesson(
        id=lesson_id,
        title=title,
        category=category,
        after_code=code,
        metrics=LessonMetrics(
            occurrences=occurrences,
            success_rate=success_rate,
            confidence=confidence,
            first_seen=first_seen,
            last_applied=last_success,
            last_success=last_success,
        ),
        **kwargs,
    )


def make_component(
    component_id: str = "COMP001",
    *,
    name: str = "fillLoginForm",
    code: str = (
        "await page.fill('#user', user);\n"
        "await page.fill('#pass', pass);\n"
        "await page.click('#login');"
    ),
    category: Category = Category.AUTH,
    total_uses: int = 4,
    confidence: float = 0.8,
    created_at: datetime | None = None,
    last_used: datetime | None = None,
    **kwargs: object,
) -> Component:
    """Build a component with sensible metrics for tests."""
    created_at = created_at or datetime(2026, 3, 1, tzinfo=UTC)
    return Component(
        id=component_id,
        name=name,
        category=category,
        metrics=ComponentMetrics(
            total_uses=total_uses,
            confidence=confidence,
            created_at=created_at,
            last_used=last_used,
        ),
        source=ComponentSource(
            extracted_from="JRN-0000",
            original_code=code,
            extracted_at=created_at,
        ),
        **kwargs,
    )
