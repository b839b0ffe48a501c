"""Advisory file locking for cross-process read-modify-write.

A lock is a sibling ``<file>.lock`` created with O_EXCL, holding the
acquisition timestamp and pid. Waiters poll until the file disappears or the
wait budget runs out. A lock older than the stale threshold is assumed to
belong to a crashed holder and is removed with a warning.
"""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from types import TracebackType

from llkb.core.constants import LOCK_SUFFIX
from llkb.core.errors import LockTimeoutError
from llkb.core.logging import get_logger
from llkb.utils.time import utc_now

_logger = get_logger("store.lock")

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0
DEFAULT_STALE_LOCK_SECONDS = 30.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.1


def lock_path_for(target: Path) -> Path:
    """Lock file guarding a target file."""
    return target.with_name(target.name + LOCK_SUFFIX)


class FileLock:
    """Exclusive advisory lock on a file, usable as a context manager.

    Example:
        with FileLock(path) as lock:
            ...  # lock.retries_needed polls were needed to get here
    """

    def __init__(
        self,
        target: Path,
        timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        stale_after: float = DEFAULT_STALE_LOCK_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.target = target
        self.path = lock_path_for(target)
        self.timeout = timeout
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self.retries_needed = 0
        self._held = False
        self._owner: dict[str, object] | None = None

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> int:
        """Block until the lock is held.

        Returns:
            Number of polls that found the lock taken.

        Raises:
            LockTimeoutError: If the lock is still held by someone else when
                the timeout expires.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        start = time.monotonic()
        retries = 0
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._release_if_stale():
                    continue
                waited = time.monotonic() - start
                if waited >= self.timeout:
                    _logger.warning(
                        "lock_timeout",
                        lock=str(self.path),
                        waited_seconds=round(waited, 2),
                        retries=retries,
                    )
                    raise LockTimeoutError(self.path, waited) from None
                retries += 1
                time.sleep(self.poll_interval)
                continue

            owner = {"timestamp": utc_now().isoformat(), "pid": os.getpid()}
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(owner, f)
            self._owner = owner
            self._held = True
            self.retries_needed = retries
            return retries

    def release(self) -> None:
        """Remove the lock file if this instance still owns it.

        A holder that overran the stale threshold may find the file replaced
        by another process's lock; that file is left in place.
        """
        if not self._held:
            return
        self._held = False
        owner, self._owner = self._owner, None
        try:
            current = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            # Another process judged us stale and removed it
            _logger.warning("lock_already_released", lock=str(self.path))
            return
        except (OSError, ValueError):
            current = None
        if current != owner:
            _logger.warning(
                "lock_lost",
                lock=str(self.path),
                holder_pid=current.get("pid") if isinstance(current, dict) else None,
            )
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            _logger.warning("lock_already_released", lock=str(self.path))

    def _release_if_stale(self) -> bool:
        """Remove the lock file if it is older than the stale threshold.

        Returns:
            True if the caller should retry acquisition immediately.
        """
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return True
        if age <= self.stale_after:
            return False
        _logger.warning(
            "lock_stale_released",
            lock=str(self.path),
            age_seconds=round(age, 1),
            threshold_seconds=self.stale_after,
        )
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        return True

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
