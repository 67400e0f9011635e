"""Cross-process lock files guarding cache writes."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

from .errors import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"
STALE_SUFFIX = ".stale"
DEFAULT_LOCK_TIMEOUT_SECONDS = 15 * 60


@dataclass(frozen=True)
class LockHandle:
    """An acquired lock. Release it through the LockManager that issued it."""

    path: Path  # The .lock file itself
    acquired_at: float


class LockManager:
    """
    Mutual exclusion over a cache path using an exclusively created lock file.

    At most one holder per path across every process sharing the filesystem,
    as long as the filesystem implements O_EXCL atomically. There is no
    heartbeat: a holder that crashes leaves its lock file behind until it is
    removed by hand, or until it ages past stale_after_seconds when that is set.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        initial_delay_seconds: float = 0.1,
        max_delay_seconds: float = 5.0,
        stale_after_seconds: float | None = None,
    ):
        """
        Initialize lock manager.

        Args:
            timeout_seconds: Default time to wait for a lock
            initial_delay_seconds: First backoff delay (doubles each retry)
            max_delay_seconds: Backoff delay cap
            stale_after_seconds: Break lock files older than this
                (None never breaks locks)
        """
        self._timeout = timeout_seconds
        self._initial_delay = initial_delay_seconds
        self._max_delay = max_delay_seconds
        self._stale_after = stale_after_seconds

    async def acquire(self, path: Path, timeout: float | None = None) -> LockHandle:
        """
        Acquire the lock for a cache path.

        Args:
            path: Cache path to lock (the lock file is {path}.lock)
            timeout: Seconds to wait (default: manager timeout)

        Returns:
            LockHandle to pass to release()

        Raises:
            LockTimeoutError: If the lock is still held after timeout
        """
        lock_path = path.with_name(path.name + LOCK_SUFFIX)
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        timeout = self._timeout if timeout is None else timeout
        start = time.monotonic()
        delay = self._initial_delay
        waited = False

        while True:
            if self._try_create(lock_path):
                if waited:
                    logger.debug(
                        f"Acquired {lock_path} after {time.monotonic() - start:.1f}s"
                    )
                return LockHandle(path=lock_path, acquired_at=time.time())

            if self._break_if_stale(lock_path):
                continue

            elapsed = time.monotonic() - start
            if elapsed >= timeout:
                raise LockTimeoutError(
                    f"Timed out after {elapsed:.0f}s waiting for {lock_path}. "
                    f"Another process may be downloading this file; if none is, "
                    f"delete the lock file."
                )

            if not waited:
                logger.info(f"Waiting for lock {lock_path}")
                waited = True

            await asyncio.sleep(min(delay, timeout - elapsed))
            delay = min(delay * 2, self._max_delay)

    def release(self, handle: LockHandle) -> None:
        """Release a lock. Failures are logged, never raised."""
        try:
            handle.path.unlink()
        except OSError as e:
            logger.warning(f"Failed to remove lock file {handle.path}: {e}")

    @contextlib.asynccontextmanager
    async def locked(
        self, path: Path, timeout: float | None = None
    ) -> AsyncIterator[LockHandle]:
        """
        Hold the lock for a cache path for the duration of the block.

        Released on normal exit, on error and on cancellation.
        """
        handle = await self.acquire(path, timeout)
        try:
            yield handle
        finally:
            self.release(handle)

    @staticmethod
    def _try_create(lock_path: Path) -> bool:
        """Atomically create the lock file. False if it already exists."""
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        try:
            owner = {"pid": os.getpid(), "acquired_at": time.time()}
            os.write(fd, json.dumps(owner).encode())
        finally:
            os.close(fd)
        return True

    def _break_if_stale(self, lock_path: Path) -> bool:
        """
        Remove the lock file if it is older than the stale threshold.

        The file is claimed by renaming it to a unique name before it is
        deleted. If what got renamed is not the file that was judged stale
        (another waiter broke it and took a fresh lock in between), it is
        linked back into place and left alone.

        Returns:
            True if the caller should retry creating the lock right away
        """
        if self._stale_after is None:
            return False
        try:
            observed = lock_path.stat()
        except FileNotFoundError:
            # Released between our create attempt and now
            return True
        age = time.time() - observed.st_mtime
        if age < self._stale_after:
            return False

        claimed = lock_path.with_name(f"{lock_path.name}{STALE_SUFFIX}.{uuid.uuid4().hex}")
        try:
            os.rename(lock_path, claimed)
        except FileNotFoundError:
            # Another waiter broke it first
            return True

        try:
            moved = claimed.stat()
            if (moved.st_ino, moved.st_mtime_ns) != (observed.st_ino, observed.st_mtime_ns):
                self._restore(claimed, lock_path)
                return False
        finally:
            claimed.unlink(missing_ok=True)

        logger.warning(f"Broke stale lock {lock_path} (age {age:.0f}s)")
        return True

    @staticmethod
    def _restore(claimed: Path, lock_path: Path) -> None:
        """Put back a live lock that was renamed away by mistake."""
        try:
            os.link(claimed, lock_path)
        except FileExistsError:
            logger.warning(
                f"Lock {lock_path} was re-created before a live lock could be restored"
            )
