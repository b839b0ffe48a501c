"""LLKB command-line interface.

    llkb [--root DIR] [--log-level LEVEL] [--log-file PATH] COMMAND

Commands:
    health      Check layout and file integrity
    stats       Show the analytics snapshot and history statistics
    prune       Apply the retention policy (dry run unless --force)
    learn       Record a learned pattern
    query       Rank lessons and components for a description
    deferred    List or process rate-limited extraction candidates
    export      Export lessons and components as JSON or markdown
    report      Print a markdown status report
    run         Show what one run discovered, applied or extracted
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from llkb import __version__
from llkb.core.constants import DEFAULT_ROOT

from . import helpers as helpers
from .commands import deferred, export, health, learn, prune, query, report, run, stats
from .output import console

app = typer.Typer(
    name="llkb",
    help="Lessons Learned Knowledge Base for test-generation runs",
    add_completion=False,
    no_args_is_help=True,
)


def _show_version(value: bool) -> None:
    if value:
        console.print(f"llkb v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=_show_version,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
    root: Annotated[
        Path,
        typer.Option("--root", "-r", envvar="LLKB_ROOT", help="Knowledge base root directory"),
    ] = Path(DEFAULT_ROOT),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            envvar="LLKB_LOG_LEVEL",
            help="DEBUG, INFO, WARNING (default) or ERROR",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", envvar="LLKB_LOG_FILE", help="Also write logs to this file"),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            envvar="LLKB_LOG_FORMAT",
            help="console, json or both (json by default when --log-file is set)",
        ),
    ] = None,
) -> None:
    """LLKB - learn reusable patterns across test-generation runs."""
    helpers.apply_global_options(
        console,
        root=root,
        log_level=log_level,
        log_file=log_file,
        log_format=log_format,
    )


for command in (health, stats, prune, learn, query, deferred, export, report, run):
    app.command()(command)


__all__ = ["app", "main"]
