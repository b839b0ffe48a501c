"""JSON collection store for LLKB.

The store owns lessons.json, components.json and analytics.json under the
knowledge base root. Everything else goes through KnowledgeStore:

- load(collection): validated model, or an empty one if the file is absent
- save_atomic(collection, data): temp file + rename
- update_with_lock(collection, update_fn): locked read-modify-write

Usage:
    from llkb.learning.store import Collection, KnowledgeStore

    store = KnowledgeStore(Path(".artk/llkb"))
    store.update_with_lock(Collection.LESSONS, lambda data: data.lessons.clear())
"""

from llkb.learning.store.base import Collection, KnowledgeStore, UpdateResult
from llkb.learning.store.locking import FileLock, lock_path_for
from llkb.learning.store.models import (
    AnalyticsSnapshot,
    AppQuirk,
    Category,
    Component,
    ComponentMetrics,
    ComponentSource,
    ComponentsFile,
    ConfidenceHistoryEntry,
    DeferredCandidate,
    GlobalRule,
    Lesson,
    LessonMetrics,
    LessonsFile,
    LessonSource,
    LessonValidation,
    NeedsReview,
    Severity,
    invalid_scope_message,
    is_valid_scope,
    next_entity_id,
)

__all__ = [
    "AnalyticsSnapshot",
    "AppQuirk",
    "Category",
    "Collection",
    "Component",
    "ComponentMetrics",
    "ComponentSource",
    "ComponentsFile",
    "ConfidenceHistoryEntry",
    "DeferredCandidate",
    "FileLock",
    "GlobalRule",
    "KnowledgeStore",
    "Lesson",
    "LessonMetrics",
    "LessonSource",
    "LessonValidation",
    "LessonsFile",
    "NeedsReview",
    "Severity",
    "UpdateResult",
    "invalid_scope_message",
    "is_valid_scope",
    "lock_path_for",
    "next_entity_id",
]
