"""Rich output formatting for the LLKB CLI."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

# Commands print human output through this console; --json output bypasses it.
console = Console()


class StatusColors:
    """Color mappings for status values."""

    HEALTH_STATUS: dict[str, str] = {
        "healthy": "green",
        "warning": "yellow",
        "error": "red",
    }

    CHECK_STATUS: dict[str, str] = {
        "pass": "green",
        "warn": "yellow",
        "fail": "red",
    }

    CHECK_ICONS: dict[str, str] = {
        "pass": "✓",
        "warn": "!",
        "fail": "✗",
    }

    @classmethod
    def get_health_color(cls, status: str) -> str:
        return cls.HEALTH_STATUS.get(status, "white")

    @classmethod
    def get_check_color(cls, status: str) -> str:
        return cls.CHECK_STATUS.get(status, "white")


def confidence_color(value: float) -> str:
    """Green for trusted, yellow for middling, red for review-worthy confidence."""
    if value >= 0.7:
        return "green"
    if value >= 0.4:
        return "yellow"
    return "red"


def format_confidence(value: float) -> str:
    return f"[{confidence_color(value)}]{value:.2f}[/]"


def create_entity_table(title: str | None = None) -> Table:
    """Table with the columns shared by lesson, component and match listings."""
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Kind", style="dim")
    table.add_column("Title")
    table.add_column("Relevance", justify="right")
    table.add_column("Confidence", justify="right")
    return table
