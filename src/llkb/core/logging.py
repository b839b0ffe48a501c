"""Structured logging for LLKB.

All modules log through structlog with snake_case event names and keyword
fields. Nothing is printed until the application (usually the CLI) calls
configure_logging(); before that, structlog's defaults apply.

    from llkb.core.logging import configure_logging, get_logger, with_context

    configure_logging(level="DEBUG", format="console")
    logger = get_logger("store")

    with with_context(RunLogContext(run_id="JRN-0042", tool="autogen")):
        logger.info("collection_saved", collection="lessons")  # adds run_id, tool
"""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

LogFormat = Literal["json", "console", "both"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

REDACTED = "[REDACTED]"

# Field-name fragments whose values never reach a log sink
SENSITIVE_PATTERNS = frozenset({
    "password",
    "secret",
    "token",
    "credential",
    "authorization",
    "api_key",
    "apikey",
})


# =============================================================================
# Run context
# =============================================================================


@dataclass(frozen=True)
class RunLogContext:
    """Identifies the run a block of work belongs to.

    Attributes:
        run_id: Run identifier supplied by the calling tool.
        tool: Name of the calling tool.
        component: Optional LLKB component doing the work.
    """

    run_id: str
    tool: str = "llkb"
    component: str | None = None

    def with_component(self, component: str) -> RunLogContext:
        return replace(self, component=component)

    def to_dict(self) -> dict[str, Any]:
        fields: dict[str, Any] = {"run_id": self.run_id, "tool": self.tool}
        if self.component is not None:
            fields["component"] = self.component
        return fields


_run_context: ContextVar[RunLogContext | None] = ContextVar("llkb_run_context", default=None)


def get_current_context() -> RunLogContext | None:
    return _run_context.get()


@contextmanager
def with_context(ctx: RunLogContext) -> Iterator[RunLogContext]:
    """Attach a run context to every log line emitted inside the block.

    Fields bound explicitly on a logger win over the context's fields.
    """
    token = _run_context.set(ctx)
    try:
        with structlog.contextvars.bound_contextvars(**ctx.to_dict()):
            yield ctx
    finally:
        _run_context.reset(token)


# =============================================================================
# Processors and handlers
# =============================================================================


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in SENSITIVE_PATTERNS)


def redact_sensitive_fields(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Replace values of sensitive keys, including keys of nested mappings."""
    for key, value in list(event_dict.items()):
        if _is_sensitive(key):
            event_dict[key] = REDACTED
        elif isinstance(value, Mapping):
            event_dict[key] = {
                k: REDACTED if _is_sensitive(str(k)) else v for k, v in value.items()
            }
    return event_dict


def _gzip_namer(name: str) -> str:
    return f"{name}.gz"


def _gzip_rotator(source: str, dest: str) -> None:
    """Compress the rotated file; keep it uncompressed if compression fails."""
    try:
        with open(source, "rb") as f_in, gzip.open(dest, "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
    except OSError:
        if os.path.exists(dest):
            os.remove(dest)
        os.replace(source, dest.removesuffix(".gz"))
        return
    os.remove(source)


def gzip_rotating_handler(
    path: Path,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
) -> RotatingFileHandler:
    """Size-rotated log file whose backups are gzipped (llkb.log.1.gz, ...)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.namer = _gzip_namer
    handler.rotator = _gzip_rotator
    return handler


def _build_handlers(
    format: LogFormat,  # noqa: A002
    file_path: Path | None,
    max_bytes: int,
    backup_count: int,
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if format in ("console", "both"):
        handlers.append(logging.StreamHandler(sys.stderr))
    if format in ("json", "both"):
        if file_path is not None:
            handlers.append(gzip_rotating_handler(file_path, max_bytes, backup_count))
        else:
            handlers.append(logging.StreamHandler(sys.stdout))
    return handlers


# =============================================================================
# Configuration
# =============================================================================


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 10,
    backup_count: int = 3,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Route structlog through the stdlib root logger.

    Args:
        level: Minimum level written to any sink.
        format: "console" renders for humans on stderr; "json" writes JSON
            lines to file_path (stdout without one); "both" does both, with
            file_path required.
        file_path: Log file, rotated at max_file_size_mb.
        max_file_size_mb: Size at which the log file rotates.
        backup_count: Gzipped backups kept after rotation.
        include_timestamps: Add an ISO-8601 UTC "timestamp" field.
        include_context: Merge fields from with_context() blocks.

    Raises:
        ValueError: If format is "both" and no file_path is given.
        AttributeError: If level is not a logging level name.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    numeric_level: int = getattr(logging, level)
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    for handler in _build_handlers(
        format, file_path, max_file_size_mb * 1024 * 1024, backup_count
    ):
        handler.setLevel(numeric_level)
        root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
    ]
    if include_context:
        processors.append(structlog.contextvars.merge_contextvars)
    processors.append(redact_sensitive_fields)
    if include_timestamps:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Module-level loggers must see configuration done after import
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> Any:
    """Logger for an LLKB component.

    Returns structlog's lazy proxy, so loggers created at import time pick up
    configure_logging() calls made later.
    """
    return structlog.get_logger(component=component, **initial_context)


__all__ = [
    "REDACTED",
    "RunLogContext",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "gzip_rotating_handler",
    "redact_sensitive_fields",
    "with_context",
]
