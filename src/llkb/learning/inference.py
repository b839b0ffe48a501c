"""Keyword-based category inference for snippets and lessons.

Used when a caller records a pattern or extracts a component without naming
its category. Each category has a keyword list; the category with the most
keyword hits wins, ties going to the earlier category in CATEGORY_PRIORITY.
"""

from __future__ import annotations

from llkb.learning.store.models import Category

CATEGORY_KEYWORDS: dict[Category, tuple[str, ...]] = {
    Category.NAVIGATION: (
        "goto", "navigate", "route", "url", "path", "sidebar", "menu",
        "breadcrumb", "nav", "link", "href", "router",
    ),
    Category.AUTH: (
        "login", "logout", "auth", "password", "credential", "session", "token",
        "user", "signin", "signout", "authenticate", "authorization",
    ),
    Category.ASSERTION: (
        "expect", "assert", "verify", "should", "tobevisible", "tohavetext",
        "tobehidden", "tocontain", "tohaveattribute", "tobeenabled",
        "tobedisabled", "tohavevalue",
    ),
    Category.DATA: (
        "api", "fetch", "response", "request", "json", "payload", "data",
        "post", "get", "put", "delete", "endpoint", "graphql", "rest",
    ),
    Category.SELECTOR: (
        "locator", "getby", "selector", "testid", "data-testid",
        "queryselector", "findby", "getbyrole", "getbylabel", "getbytext",
        "getbyplaceholder",
    ),
    Category.TIMING: (
        "wait", "timeout", "delay", "sleep", "settimeout", "poll", "retry",
        "interval", "waitfor", "waituntil",
    ),
    Category.UI_INTERACTION: (
        "click", "fill", "type", "select", "check", "uncheck", "upload", "drag",
        "drop", "hover", "focus", "blur", "press", "scroll", "dblclick",
    ),
}

CATEGORY_PRIORITY: tuple[Category, ...] = (
    Category.AUTH,
    Category.NAVIGATION,
    Category.ASSERTION,
    Category.DATA,
    Category.TIMING,
    Category.SELECTOR,
    Category.UI_INTERACTION,
)

DEFAULT_CATEGORY = Category.UI_INTERACTION


def score_categories(text: str) -> dict[Category, int]:
    """Count keyword hits per category (substring matches, case-insensitive)."""
    lowered = text.lower()
    return {
        category: sum(1 for keyword in keywords if keyword in lowered)
        for category, keywords in CATEGORY_KEYWORDS.items()
    }


def infer_category(text: str) -> Category:
    """Best-guess category for a snippet; ui-interaction when nothing matches."""
    scores = score_categories(text)
    best = DEFAULT_CATEGORY
    best_score = 0
    for category in CATEGORY_PRIORITY:
        if scores[category] > best_score:
            best = category
            best_score = scores[category]
    return best
