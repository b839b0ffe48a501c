"""Pytest fixtures for LLKB tests."""

import logging
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import structlog

from llkb.core.config import LLKBConfig
from llkb.learning.history import HistoryLog
from llkb.learning.rate_limiter import RunContext
from llkb.learning.store import KnowledgeStore


@pytest.fixture(autouse=True)
def reset_cli_state() -> Generator[None, None, None]:
    """Reset CLI state, structlog and root handlers around each test."""
    import llkb.cli.helpers as helpers

    helpers.reset_state()
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    helpers.reset_state()
    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def kb_root(tmp_path: Path) -> Path:
    """An empty knowledge base root directory."""
    root = tmp_path / "llkb"
    root.mkdir()
    return root


@pytest.fixture
def store(kb_root: Path) -> KnowledgeStore:
    return KnowledgeStore(kb_root)


@pytest.fixture
def history(store: KnowledgeStore) -> HistoryLog:
    return HistoryLog(store.history_dir)


@pytest.fixture
def config() -> LLKBConfig:
    return LLKBConfig()


@pytest.fixture
def run() -> RunContext:
    return RunContext(run_id="JRN-0001", tool="pytest")


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
