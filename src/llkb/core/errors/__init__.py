"""Error codes and exception hierarchy for LLKB.

Store failures (lock timeout, corrupt data, failed writes) are fatal to the
operation that requested them. Configuration and history failures degrade
to warnings at their call sites.
"""

from llkb.core.errors.codes import ErrorCode
from llkb.core.errors.exceptions import (
    ConfigInvalidError,
    CorruptDataError,
    EntityNotFoundError,
    HistoryWriteError,
    InvalidInputError,
    LLKBError,
    LockTimeoutError,
    StoreError,
    StoreWriteError,
)

__all__ = [
    "ConfigInvalidError",
    "CorruptDataError",
    "EntityNotFoundError",
    "ErrorCode",
    "HistoryWriteError",
    "InvalidInputError",
    "LLKBError",
    "LockTimeoutError",
    "StoreError",
    "StoreWriteError",
]
