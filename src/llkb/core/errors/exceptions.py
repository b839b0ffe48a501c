"""Exception hierarchy for LLKB.

All LLKB exceptions inherit from LLKBError, enabling callers to catch broad
(LLKBError) or narrow (e.g., LockTimeoutError). Each carries an ErrorCode so
the Learning API can report failures without losing their classification.
"""

from __future__ import annotations

from pathlib import Path

from llkb.core.errors.codes import ErrorCode


class LLKBError(Exception):
    """Base exception for all LLKB errors."""

    code: ErrorCode | None = None

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class StoreError(LLKBError):
    """Base for failures in the JSON collection store.

    Store errors are fatal to the operation that requested them.
    """


class LockTimeoutError(StoreError):
    """Raised when the advisory lock is not acquired within the wait budget.

    The caller must retry or abort; the update was not applied.
    """

    code = ErrorCode.LOCK_TIMEOUT

    def __init__(self, path: Path, waited_seconds: float) -> None:
        self.path = path
        self.waited_seconds = waited_seconds
        super().__init__(
            f"Timed out after {waited_seconds:.1f}s waiting for lock on {path}"
        )


class CorruptDataError(StoreError):
    """Raised when a collection file cannot be parsed or fails validation.

    Never treated as an empty collection, since saving over it would
    destroy user data.
    """

    code = ErrorCode.CORRUPT_DATA

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Corrupt data in {path}: {detail}")


class StoreWriteError(StoreError):
    """Raised when an atomic save fails. The destination is left untouched."""

    code = ErrorCode.STORE_WRITE_FAILED


class ConfigInvalidError(LLKBError):
    """Raised by strict config loading when config.yml is malformed or invalid.

    load_config() catches this and falls back to defaults with a warning.
    """

    code = ErrorCode.CONFIG_INVALID


class HistoryWriteError(LLKBError):
    """Raised by strict history appends when an event cannot be written."""

    code = ErrorCode.HISTORY_WRITE_FAILED


class EntityNotFoundError(LLKBError):
    """Raised when no active lesson or component has the requested id."""

    code = ErrorCode.ENTITY_NOT_FOUND

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} not found: {entity_id}")


class InvalidInputError(LLKBError):
    """Raised before any store access when a request field cannot be stored."""

    code = ErrorCode.INVALID_INPUT
