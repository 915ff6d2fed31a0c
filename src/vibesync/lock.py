"""File lock that keeps hook-triggered runs from overlapping."""

from __future__ import annotations

import json
import logging
import os
import socket
import time
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from vibesync.config import get_app_dir
from vibesync.models import LockInfo

logger = logging.getLogger(__name__)

# Locks older than this are considered abandoned
LOCK_TIMEOUT_MS = 60_000


def _now_ms() -> int:
    return int(time.time() * 1000)


def get_lock_path() -> Path:
    """Default lock file location."""
    return get_app_dir() / "hook.lock"


class HookLock:
    """Advisory lock file holding ``{pid, timestamp, host}`` as JSON.

    The check and the write are not atomic, so two processes racing within
    the same instant may both acquire. Hooks fire seconds apart and the
    server deduplicates uploads, so this is acceptable.
    """

    def __init__(
        self,
        lock_path: Path | None = None,
        timeout_ms: int = LOCK_TIMEOUT_MS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the lock.

        Args:
            lock_path: Lock file. Defaults to ~/.vibesync/hook.lock.
            timeout_ms: Age after which an existing lock is stale.
            clock: Returns the current time in epoch milliseconds.
        """
        self._path = lock_path or get_lock_path()
        self._timeout_ms = timeout_ms
        self._clock = clock or _now_ms

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> LockInfo | None:
        """Current lock holder, or None if the file is missing or unreadable."""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return LockInfo.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError):
            return None

    def acquire(self) -> bool:
        """Try to take the lock.

        A missing, unreadable or stale lock is replaced. Never raises.

        Returns:
            True if the lock was acquired, False if a fresh lock is held.
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)

            current = self.read()
            if current is not None:
                age = self._clock() - current.timestamp
                if age < self._timeout_ms:
                    logger.debug("Hook execution already in progress (pid=%s, age=%dms)", current.pid, age)
                    return False
                logger.debug("Removing stale lock (pid=%s, age=%dms)", current.pid, age)

            info = LockInfo(pid=os.getpid(), timestamp=self._clock(), host=socket.gethostname() or "unknown")
            self._path.write_text(info.model_dump_json(), encoding="utf-8")
            logger.debug("Hook lock acquired by pid %s", info.pid)
            return True
        except OSError as e:
            logger.error("Failed to acquire hook lock: %s", e)
            return False

    def release(self) -> None:
        """Remove the lock file. A missing file is not an error."""
        try:
            self._path.unlink()
            logger.debug("Hook lock released")
        except OSError as e:
            logger.debug("Failed to release hook lock: %s", e)

    def force_clear(self) -> bool:
        """Remove any lock regardless of its holder.

        Returns:
            True if a lock file was removed.
        """
        try:
            self._path.unlink()
        except FileNotFoundError:
            logger.debug("No lock to clear")
            return False
        logger.info("Hook lock forcefully cleared")
        return True
