"""Shared state and utilities for LLKB CLI commands.

The app callback parses the global options (--root and the --log-* flags)
into one CliState before any command runs. Commands read the root from
here instead of each re-declaring the option.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, get_args

import typer
from rich.console import Console

from llkb.core.constants import DEFAULT_ROOT
from llkb.core.logging import LogFormat, LogLevel, configure_logging


@dataclass
class CliState:
    """Global options for the current invocation.

    Attributes:
        root: Knowledge base root directory.
        log_level: Minimum log level.
        log_file: Optional log file; JSON lines go there by default.
        log_format: Explicit log format, or None to pick from log_file.
    """

    root: Path = Path(DEFAULT_ROOT)
    log_level: str = "WARNING"
    log_file: Path | None = None
    log_format: str | None = None

    @property
    def effective_log_format(self) -> str:
        """Log format to use. A log file defaults to JSON so logs never mix with output."""
        if self.log_format:
            return self.log_format
        return "json" if self.log_file else "console"


_state = CliState()


def get_state() -> CliState:
    return _state


def get_root() -> Path:
    """Knowledge base root selected by --root (or LLKB_ROOT)."""
    return _state.root


def apply_global_options(
    console: Console,
    root: Path,
    log_level: str | None = None,
    log_file: Path | None = None,
    log_format: str | None = None,
) -> CliState:
    """Record the global options and configure logging from them.

    Raises:
        typer.Exit: If the logging options are invalid.
    """
    global _state
    _state = CliState(
        root=root,
        log_level=(log_level or "WARNING").upper(),
        log_file=log_file,
        log_format=log_format.lower() if log_format else None,
    )

    level = _state.log_level
    fmt = _state.effective_log_format
    if level not in get_args(LogLevel):
        console.print(f"[red]Unknown log level:[/red] {log_level}")
        raise typer.Exit(1)
    if fmt not in get_args(LogFormat):
        console.print(f"[red]Unknown log format:[/red] {log_format}")
        raise typer.Exit(1)

    try:
        configure_logging(level=level, format=fmt, file_path=log_file)  # type: ignore[arg-type]
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None
    return _state


def reset_state() -> None:
    """Forget the global options (for tests)."""
    global _state
    _state = CliState()


def emit_json(data: Any) -> None:
    """Write machine-readable output to stdout, unwrapped and unstyled."""
    typer.echo(json.dumps(data, indent=2, default=str))
