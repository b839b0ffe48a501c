"""Export commands: dump, summarize, and trace what a run contributed.

- `export`: write lessons and components as JSON or markdown
- `report`: markdown status report
- `run`: lessons and components tied to one run
"""

from __future__ import annotations

from pathlib import Path

import typer

from llkb.core.errors import StoreError
from llkb.learning.api import LearningAPI
from llkb.learning.export import ExportFormat, ExportOptions
from llkb.learning.store import Category

from ..helpers import emit_json, get_root
from ..output import console, create_entity_table, format_confidence


def _write_or_echo(content: str, output: Path | None, what: str) -> None:
    if output is None:
        typer.echo(content)
        return
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(content, encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Cannot write {what}:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"[green]Wrote {what} to[/green] {output}")


# =============================================================================
# export command
# =============================================================================


def export(
    export_format: ExportFormat = typer.Option(
        ExportFormat.JSON, "--format", "-f", help="json or markdown"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", dir_okay=False, help="Write to this file instead of stdout"
    ),
    include_archived: bool = typer.Option(
        False, "--include-archived", help="Also export archived entries"
    ),
    metrics: bool = typer.Option(False, "--metrics", help="Add metrics to markdown output"),
    source: bool = typer.Option(
        False, "--source", help="Add component source code to markdown output"
    ),
    category: list[Category] = typer.Option(
        [], "--category", help="Only this category (repeatable)"
    ),
    scope: list[str] = typer.Option([], "--scope", help="Only this scope (repeatable)"),
) -> None:
    """Export lessons and components.

    Examples:
        llkb export --format markdown --metrics -o llkb-export.md
        llkb export --category selector --scope universal
    """
    api = LearningAPI.from_root(get_root())
    options = ExportOptions(
        format=export_format,
        include_archived=include_archived,
        include_metrics=metrics,
        include_source=source,
        categories=list(category),
        scopes=list(scope),
    )
    try:
        content = api.export(options)
    except StoreError as e:
        console.print(f"[red]Export failed:[/red] {e}")
        raise typer.Exit(1) from None
    _write_or_echo(content, output, "export")


# =============================================================================
# report command
# =============================================================================


def report(
    output: Path | None = typer.Option(
        None, "--output", "-o", dir_okay=False, help="Write to this file instead of stdout"
    ),
) -> None:
    """Print a markdown status report of the knowledge base."""
    api = LearningAPI.from_root(get_root())
    try:
        content = api.report()
    except StoreError as e:
        console.print(f"[red]Report failed:[/red] {e}")
        raise typer.Exit(1) from None
    _write_or_echo(content, output, "report")


# =============================================================================
# run command
# =============================================================================


def run(
    run_id: str = typer.Argument(..., help="Run (journey) id"),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show the lessons and components a run discovered, applied or extracted.

    Examples:
        llkb run JRN-0042
    """
    api = LearningAPI.from_root(get_root())
    try:
        lessons = api.lessons_for_run(run_id)
        components = api.components_for_run(run_id)
    except StoreError as e:
        console.print(f"[red]Lookup failed:[/red] {e}")
        raise typer.Exit(1) from None

    if json_output:
        emit_json({
            "runId": run_id,
            "lessons": [lesson.to_json_dict() for lesson in lessons],
            "components": [c.to_json_dict() for c in components],
        })
        return

    if not lessons and not components:
        console.print(f"[yellow]No lessons or components for run {run_id}.[/yellow]")
        return

    table = create_entity_table(title=f"Run {run_id}")
    for lesson in lessons:
        table.add_row(
            lesson.id, "lesson", lesson.title, "-", format_confidence(lesson.metrics.confidence)
        )
    for component in components:
        table.add_row(
            component.id,
            "component",
            component.name,
            "-",
            format_confidence(component.metrics.confidence),
        )
    console.print(table)
