"""Tests for keyword category inference."""

from __future__ import annotations

import pytest

from llkb.learning.inference import infer_category, score_categories
from llkb.learning.store import Category


class TestInferCategory:
    """Best-guess categories for snippets."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("await page.getByRole('button').click()", Category.SELECTOR),
            ("await page.waitForTimeout(500)", Category.TIMING),
            ("await expect(heading).toBeVisible()", Category.ASSERTION),
            ("await page.goto('/settings')", Category.NAVIGATION),
            ("await page.fill('#password', secret); login()", Category.AUTH),
            ("const response = await request.post('/api/items')", Category.DATA),
        ],
    )
    def test_keyword_categories(self, text: str, expected: Category) -> None:
        assert infer_category(text) is expected

    def test_defaults_to_ui_interaction(self) -> None:
        assert infer_category("doSomethingUnrelated()") is Category.UI_INTERACTION

    def test_never_infers_quirk(self) -> None:
        assert Category.QUIRK not in score_categories("quirk workaround flaky")

    def test_scores_are_case_insensitive(self) -> None:
        assert score_categories("WAITFOR")[Category.TIMING] == 2
