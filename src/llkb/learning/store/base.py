"""JSON collection store with atomic saves and locked updates.

The store is the only code that touches lessons.json, components.json and
analytics.json. Other modules receive validated models, never file paths.

Guarantees:
- Saves write a temp file in the destination directory, fsync it, then
  os.replace() it over the target, so readers see old or new content only.
- update_with_lock() holds the collection's advisory lock across
  load -> update_fn -> save, and releases it on every exit path.
- Malformed files raise CorruptDataError instead of loading as empty.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from llkb.core.config import LLKBConfig, LockingConfig
from llkb.core.constants import (
    CONFIG_FILENAME,
    HISTORY_DIRNAME,
    PATTERNS_DIRNAME,
)
from llkb.core.errors import CorruptDataError, StoreError, StoreWriteError
from llkb.core.logging import get_logger
from llkb.learning.store.locking import FileLock
from llkb.learning.store.models import (
    AnalyticsSnapshot,
    ComponentsFile,
    LessonsFile,
    StoreModel,
)
from llkb.utils.time import utc_now

_logger = get_logger("store")


class Collection(str, Enum):
    """Named JSON collections owned by the store."""

    LESSONS = "lessons"
    COMPONENTS = "components"
    ANALYTICS = "analytics"

    @property
    def filename(self) -> str:
        return f"{self.value}.json"

    @property
    def model(self) -> type[StoreModel]:
        return _COLLECTION_MODELS[self]


_COLLECTION_MODELS: dict[Collection, type[StoreModel]] = {
    Collection.LESSONS: LessonsFile,
    Collection.COMPONENTS: ComponentsFile,
    Collection.ANALYTICS: AnalyticsSnapshot,
}


@dataclass
class UpdateResult:
    """Outcome of a successful locked update.

    Attributes:
        data: The collection as saved.
        value: Whatever update_fn returned (None if it only mutated).
        retries_needed: Polls spent waiting for the lock.
    """

    data: Any
    value: Any = None
    retries_needed: int = 0


class KnowledgeStore:
    """File-backed store for the LLKB collections under a root directory.

    Example:
        store = KnowledgeStore(Path(".artk/llkb"))
        lessons = store.load_lessons()

        def add_tag(data: LessonsFile) -> None:
            data.lessons[0].tags.append("flaky")

        store.update_with_lock(Collection.LESSONS, add_tag)
    """

    def __init__(self, root: Path, locking: LockingConfig | None = None) -> None:
        self._root = root
        self._locking = locking or LockingConfig()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def history_dir(self) -> Path:
        """Directory owned by the history log."""
        return self._root / HISTORY_DIRNAME

    @property
    def locking(self) -> LockingConfig:
        return self._locking

    def _path(self, collection: Collection) -> Path:
        return self._root / collection.filename

    def exists(self, collection: Collection) -> bool:
        return self._path(collection).exists()

    def new_lock(self, target: Path) -> FileLock:
        """Build a lock on target using the store's timing settings."""
        return FileLock(
            target,
            timeout=self._locking.timeout_seconds,
            stale_after=self._locking.stale_after_seconds,
            poll_interval=self._locking.poll_interval_seconds,
        )

    # ─── Load ────────────────────────────────────────────────────────────

    def load(self, collection: Collection) -> Any:
        """Read and validate a collection.

        Returns:
            The collection model, or an empty one if the file is absent.

        Raises:
            CorruptDataError: If the file is not valid JSON or fails validation.
        """
        path = self._path(collection)
        model = collection.model
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return model()
        except OSError as e:
            raise StoreError(f"Cannot read {path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptDataError(path, f"invalid JSON: {e}") from e

        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise CorruptDataError(
                path, f"schema validation failed ({e.error_count()} errors)"
            ) from e

    def load_lessons(self) -> LessonsFile:
        result: LessonsFile = self.load(Collection.LESSONS)
        return result

    def load_components(self) -> ComponentsFile:
        result: ComponentsFile = self.load(Collection.COMPONENTS)
        return result

    def load_analytics(self) -> AnalyticsSnapshot:
        result: AnalyticsSnapshot = self.load(Collection.ANALYTICS)
        return result

    def load_patterns(self) -> dict[str, Any]:
        """Load the read-only pattern catalogues, keyed by file stem.

        Raises:
            CorruptDataError: If a catalogue is not valid JSON.
        """
        patterns_dir = self._root / PATTERNS_DIRNAME
        if not patterns_dir.is_dir():
            return {}
        catalogues: dict[str, Any] = {}
        for path in sorted(patterns_dir.glob("*.json")):
            try:
                catalogues[path.stem] = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise CorruptDataError(path, f"invalid JSON: {e}") from e
        return catalogues

    # ─── Save ────────────────────────────────────────────────────────────

    def save_atomic(self, collection: Collection, data: StoreModel) -> None:
        """Persist a collection via temp file + rename.

        Raises:
            StoreWriteError: If writing or renaming fails. The destination is
                untouched and the temp file is removed.
        """
        if not isinstance(data, collection.model):
            raise TypeError(
                f"{collection.value} expects {collection.model.__name__}, "
                f"got {type(data).__name__}"
            )
        path = self._path(collection)
        path.parent.mkdir(parents=True, exist_ok=True)

        temp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f"{path.name}.tmp.",
                delete=False,
            ) as f:
                temp_path = Path(f.name)
                json.dump(data.to_json_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(path)
        except OSError as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            _logger.error("save_failed", collection=collection.value, error=str(e))
            raise StoreWriteError(f"Failed to save {path}: {e}") from e

        _logger.debug("collection_saved", collection=collection.value)

    # ─── Locked update ───────────────────────────────────────────────────

    def update_with_lock(
        self,
        collection: Collection,
        update_fn: Callable[[Any], Any],
    ) -> UpdateResult:
        """Run load -> update_fn -> save_atomic while holding the collection lock.

        update_fn receives the loaded model and mutates it in place. If it
        returns a model of the collection's type, that model is saved instead.
        Any other return value is passed back as UpdateResult.value.

        Raises:
            LockTimeoutError: If the lock is not acquired in time. Nothing
                was changed.
            CorruptDataError: If the current file is malformed.
            StoreWriteError: If the save fails.
            Exception: Whatever update_fn raises; nothing is saved.
        """
        with self.new_lock(self._path(collection)) as lock:
            data = self.load(collection)
            value = update_fn(data)
            if isinstance(value, collection.model):
                data = value
            data.last_updated = utc_now()
            self.save_atomic(collection, data)

        if lock.retries_needed:
            _logger.debug(
                "lock_contended",
                collection=collection.value,
                retries=lock.retries_needed,
            )
        return UpdateResult(data=data, value=value, retries_needed=lock.retries_needed)

    # ─── Layout ──────────────────────────────────────────────────────────

    def initialize(self) -> list[Path]:
        """Create the root layout and any missing collection files.

        Existing files are left untouched.

        Returns:
            Paths that were created.
        """
        created: list[Path] = []
        for directory in (self._root, self.history_dir, self._root / PATTERNS_DIRNAME):
            if not directory.exists():
                directory.mkdir(parents=True)
                created.append(directory)

        for collection in Collection:
            if not self.exists(collection):
                self.save_atomic(collection, collection.model())
                created.append(self._path(collection))

        config_path = self._root / CONFIG_FILENAME
        if not config_path.exists():
            config_path.write_text(LLKBConfig().to_yaml(), encoding="utf-8")
            created.append(config_path)

        _logger.info("store_initialized", root=str(self._root), created=len(created))
        return created
