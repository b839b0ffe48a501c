"""Learning commands: record patterns and query the knowledge base.

- `learn`: record a discovered fix through the Learning API
- `query`: rank lessons and components relevant to a description
- `deferred`: list (or process) rate-limited extraction candidates
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from llkb.core.errors import StoreError
from llkb.core.logging import RunLogContext, with_context
from llkb.learning.api import LearningAPI, PatternContext, QueryContext
from llkb.learning.rate_limiter import RunContext
from llkb.learning.store import (
    Category,
    KnowledgeStore,
    Severity,
    invalid_scope_message,
    is_valid_scope,
)

from ..helpers import emit_json, get_root
from ..output import console, create_entity_table, format_confidence


def _read_code(code: str | None, code_file: Path | None) -> str | None:
    if code_file is not None:
        return code_file.read_text(encoding="utf-8")
    return code


# =============================================================================
# learn command
# =============================================================================


def learn(
    title: str = typer.Option(..., "--title", "-t", help="Short name for the fix"),
    problem: str = typer.Option("", "--problem", help="What went wrong"),
    solution: str = typer.Option("", "--solution", help="How it was fixed"),
    code: str | None = typer.Option(None, "--code", "-c", help="Fixed code snippet"),
    code_file: Path | None = typer.Option(
        None,
        "--code-file",
        exists=True,
        dir_okay=False,
        help="Read the fixed code snippet from a file",
    ),
    before: str | None = typer.Option(None, "--before", help="Code before the fix"),
    trigger: str = typer.Option("", "--trigger", help="Situation the fix applies to"),
    category: Category | None = typer.Option(
        None, "--category", help="Category (inferred from the code if omitted)"
    ),
    severity: Severity = typer.Option(Severity.MEDIUM, "--severity"),
    scope: str = typer.Option(
        "app-specific",
        "--scope",
        help="universal, app-specific or framework:<name>",
    ),
    run_id: str = typer.Option("cli", "--run-id", help="Run the outcome belongs to"),
    failed: bool = typer.Option(False, "--failed", help="Record the fix as unsuccessful"),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Record a learned pattern, merging it into a matching lesson if one exists.

    Examples:
        llkb learn --title "Use role locator" --code "await page.getByRole('button').click();"
        llkb learn --title "Wait for toast" --code-file fix.ts --category timing
    """
    if not is_valid_scope(scope):
        console.print(f"[red]Error:[/red] {invalid_scope_message(scope)}")
        raise typer.Exit(1)

    api = LearningAPI.from_root(get_root())
    run = RunContext(run_id=run_id, tool="llkb-cli")
    with with_context(RunLogContext(run_id=run.run_id, tool=run.tool)):
        result = api.record_pattern_learned(
            PatternContext(
                title=title,
                problem=problem,
                solution=solution,
                before_code=before,
                after_code=_read_code(code, code_file),
                trigger=trigger,
                category=category,
                severity=severity,
                scope=scope,
            ),
            success=not failed,
            run=run,
        )

    if json_output:
        emit_json({
            "success": result.success,
            "entityId": result.entity_id,
            "created": result.created,
            "error": result.error,
            "errorCode": result.error_code.value if result.error_code else None,
            "metrics": (
                {
                    "confidence": result.metrics.confidence,
                    "successRate": result.metrics.success_rate,
                    "occurrences": result.metrics.occurrences,
                }
                if result.metrics
                else None
            ),
        })
    elif result.success and result.metrics:
        action = "Created" if result.created else "Updated"
        console.print(f"[green]{action} lesson[/green] [cyan]{result.entity_id}[/cyan]")
        console.print(
            f"  Occurrences: {result.metrics.occurrences}  "
            f"Success rate: {result.metrics.success_rate:.0%}  "
            f"Confidence: {format_confidence(result.metrics.confidence)}"
        )
    else:
        console.print(f"[red]Failed to record pattern:[/red] {result.error}")

    if not result.success:
        raise typer.Exit(1)


# =============================================================================
# query command
# =============================================================================


def query(
    text: str = typer.Argument("", help="Description of the code about to be written"),
    code: str | None = typer.Option(None, "--code", "-c", help="Draft code to match"),
    category: Category | None = typer.Option(None, "--category"),
    scope: str | None = typer.Option(None, "--scope"),
    min_confidence: float | None = typer.Option(
        None,
        "--min-confidence",
        min=0.0,
        max=1.0,
        help="Override extraction.confidenceThreshold",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show lessons and components relevant to a description, best first.

    Examples:
        llkb query "click submit button"
        llkb query --code "await page.click('#save')" --json
    """
    api = LearningAPI.from_root(get_root())
    try:
        matches = api.query(
            QueryContext(
                text=text,
                code=code,
                category=category,
                scope=scope,
                min_confidence=min_confidence,
            )
        )
    except StoreError as e:
        console.print(f"[red]Query failed:[/red] {e}")
        raise typer.Exit(1) from None

    if json_output:
        emit_json([
            {
                "kind": m.kind,
                "id": m.id,
                "title": m.title,
                "relevance": m.relevance,
                "confidence": m.confidence,
                "entity": m.entity.to_json_dict(),
            }
            for m in matches
        ])
        return

    if not matches:
        console.print("[yellow]No matching lessons or components.[/yellow]")
        return

    table = create_entity_table(title="Matches")
    for m in matches:
        table.add_row(
            m.id,
            m.kind,
            m.title,
            f"{m.relevance:.2f}",
            format_confidence(m.confidence),
        )
    console.print(table)


# =============================================================================
# deferred command
# =============================================================================


def deferred(
    process: bool = typer.Option(
        False,
        "--process",
        help="Try to extract deferred candidates now",
    ),
    run_id: str = typer.Option("deferred-batch", "--run-id"),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """List extraction candidates held back by rate limits.

    With --process, re-evaluates them and extracts those now allowed.
    """
    root = get_root()

    if process:
        api = LearningAPI.from_root(root)
        run = RunContext(run_id=run_id, tool="llkb-cli")
        with with_context(RunLogContext(run_id=run.run_id, tool=run.tool)):
            outcomes = api.process_deferred(run)
        if json_output:
            emit_json([
                {
                    "extracted": o.extracted,
                    "componentId": o.component_id,
                    "reason": o.decision.reason if o.decision else o.error,
                }
                for o in outcomes
            ])
            return
        extracted = [o.component_id for o in outcomes if o.extracted]
        console.print(f"Extracted {len(extracted)} of {len(outcomes)} candidate(s)")
        for outcome in outcomes:
            if not outcome.extracted:
                reason = outcome.decision.reason if outcome.decision else outcome.error
                console.print(f"  [yellow]Skipped:[/yellow] {reason}")
        return

    try:
        pending = KnowledgeStore(root).load_components().deferred
    except StoreError as e:
        console.print(f"[red]Cannot read components:[/red] {e}")
        raise typer.Exit(1) from None

    if json_output:
        emit_json([candidate.to_json_dict() for candidate in pending])
        return

    if not pending:
        console.print("[dim]No deferred candidates.[/dim]")
        return

    table = Table(title="Deferred candidates")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Reason", style="yellow")
    table.add_column("Run", style="dim")
    table.add_column("Deferred at", style="dim")
    for candidate in pending:
        table.add_row(
            candidate.id,
            candidate.name or "-",
            candidate.reason,
            candidate.run_id,
            candidate.deferred_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
