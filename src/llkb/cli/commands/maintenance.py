"""Knowledge base maintenance commands.

- `health`: verify directory layout, file integrity and lesson health
- `stats`: show the analytics snapshot and history statistics
- `prune`: apply the retention policy (dry run unless --force)
"""

from __future__ import annotations

import typer
from rich.table import Table

from llkb.core.errors import StoreError
from llkb.learning.maintenance import get_stats, prune as run_prune, run_health_check

from ..helpers import emit_json, get_root
from ..output import StatusColors, console, format_confidence

# =============================================================================
# health command
# =============================================================================


def health(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Check the knowledge base for missing or corrupt files.

    Exits with code 1 if any check fails.

    Examples:
        llkb health
        llkb --root ./kb health --json
    """
    report = run_health_check(get_root())

    if json_output:
        emit_json(report.to_dict())
    else:
        table = Table(show_header=False, box=None)
        table.add_column("Status", width=3)
        table.add_column("Check", style="bold")
        table.add_column("Message")
        for check in report.checks:
            color = StatusColors.get_check_color(check.status)
            icon = StatusColors.CHECK_ICONS[check.status]
            table.add_row(f"[{color}]{icon}[/]", check.name, check.message)
            if check.details:
                table.add_row("", "", f"[dim]{check.details}[/dim]")
        console.print(table)
        color = StatusColors.get_health_color(report.status)
        console.print(f"\n[{color}]{report.summary}[/]")

    if report.status == "error":
        raise typer.Exit(1)


# =============================================================================
# stats command
# =============================================================================


def stats(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show knowledge base statistics.

    Reads the analytics snapshot; it is refreshed by every Learning API
    mutation and by prune.
    """
    try:
        report = get_stats(get_root())
    except StoreError as e:
        console.print(f"[red]Cannot read statistics:[/red] {e}")
        raise typer.Exit(1) from None

    snapshot = report.analytics
    history = report.history

    if json_output:
        output = snapshot.to_json_dict()
        output["history"] = {
            "todayEvents": history.today_events,
            "fileCount": history.file_count,
            "oldest": history.oldest.isoformat() if history.oldest else None,
            "newest": history.newest.isoformat() if history.newest else None,
        }
        emit_json(output)
        return

    overview = snapshot.overview
    console.print("[bold]LLKB Statistics[/bold]\n")

    console.print("[bold cyan]Lessons[/bold cyan]")
    console.print(
        f"  Active: [green]{overview.lessons.active}[/green]  "
        f"Archived: [dim]{overview.lessons.archived}[/dim]"
    )
    console.print(f"  Avg confidence: {format_confidence(snapshot.lesson_stats.avg_confidence)}")
    console.print(f"  Avg success rate: {snapshot.lesson_stats.avg_success_rate:.0%}")
    if snapshot.lesson_stats.by_category:
        categories = ", ".join(
            f"{name}={count}" for name, count in sorted(snapshot.lesson_stats.by_category.items())
        )
        console.print(f"  By category: {categories}")

    console.print("\n[bold cyan]Components[/bold cyan]")
    console.print(
        f"  Active: [green]{overview.components.active}[/green]  "
        f"Archived: [dim]{overview.components.archived}[/dim]"
    )
    console.print(f"  Total reuses: {snapshot.component_stats.total_reuses}")
    console.print(f"  Deferred candidates: {overview.deferred_candidates}")

    console.print("\n[bold cyan]App quirks[/bold cyan]")
    console.print(f"  Recorded: {overview.app_quirks}")

    top = snapshot.top_performers
    if top.lessons or top.components:
        console.print("\n[bold cyan]Top performers[/bold cyan]")
        for lesson in top.lessons:
            console.print(f"  [cyan]{lesson.id}[/cyan] {lesson.title} (score {lesson.score})")
        for component in top.components:
            console.print(f"  [cyan]{component.id}[/cyan] {component.name} ({component.uses} uses)")

    review = snapshot.needs_review
    if review.total:
        console.print("\n[bold yellow]Needs review[/bold yellow]")
        for label, ids in (
            ("Low confidence", review.low_confidence_lessons),
            ("Declining", review.declining_lessons),
            ("Low usage", review.low_usage_components),
            ("Flagged by overrides", review.flagged_by_overrides),
        ):
            if ids:
                console.print(f"  {label}: {', '.join(ids)}")

    console.print("\n[bold cyan]History[/bold cyan]")
    console.print(f"  Events today: {history.today_events}")
    console.print(f"  Partition files: {history.file_count}")
    if history.oldest:
        console.print(f"  Range: {history.oldest} to {history.newest}")


# =============================================================================
# prune command
# =============================================================================


def prune(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Apply the changes (default is a dry run)",
    ),
    history_days: int | None = typer.Option(
        None,
        "--history-days",
        min=1,
        help="Keep this many days of history (overrides history.retentionDays)",
    ),
    archive_inactive: int | None = typer.Option(
        None,
        "--archive-inactive",
        min=1,
        help="Also archive lessons and components inactive for this many days",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Delete expired history and archive stale lessons and components.

    Lessons without a recent success or with a low success rate, and
    components that never found enough uses, are archived per the
    retention section of config.yml.

    Without --force, lists what would change and leaves files untouched.

    Examples:
        llkb prune                         # Dry run
        llkb prune --force --history-days 30
        llkb prune --force --archive-inactive 180
    """
    report = run_prune(
        get_root(),
        force=force,
        history_retention_days=history_days,
        archive_inactive_days=archive_inactive,
    )

    if json_output:
        emit_json(report.to_dict())
    else:
        verb = "Would remove" if report.dry_run else "Removed"
        console.print(f"{verb} {len(report.history_files)} history file(s)")
        for path in report.history_files:
            console.print(f"  [dim]{path.name}[/dim]")
        verb = "Would archive" if report.dry_run else "Archived"
        console.print(
            f"{verb} {len(report.archived_lessons)} lesson(s) and "
            f"{len(report.archived_components)} component(s)"
        )
        for entity_id in [*report.archived_lessons, *report.archived_components]:
            console.print(f"  [cyan]{entity_id}[/cyan] [dim]{report.reasons[entity_id]}[/dim]")
        for error in report.errors:
            console.print(f"[red]Error:[/red] {error}")
        if report.dry_run:
            console.print("\n[dim]Dry run. Use --force to apply.[/dim]")

    if report.errors:
        raise typer.Exit(1)
