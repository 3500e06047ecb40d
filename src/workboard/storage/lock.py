"""Directory-based mutual exclusion for the registry file.

``mkdir`` either creates the directory or fails, indivisibly, so the lock
directory doubles as the lock marker. A marker older than ``stale_after``
seconds is assumed to belong to a crashed writer and is removed.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import socket
import time
from contextlib import AbstractContextManager
from pathlib import Path
from types import TracebackType
from typing import Callable

logger = logging.getLogger(__name__)

LOCK_INFO_FILENAME = "lock_info.json"


def lock_dir_for(path: Path) -> Path:
    """Return the lock directory guarding ``path`` (``work.json`` -> ``work.lock``)."""

    path = Path(path)
    if path.suffix:
        return path.with_suffix(".lock")
    return path.with_name(f"{path.name}.lock")


class DirectoryLock(AbstractContextManager["DirectoryLock"]):
    """Best-effort lock that gives up after ``timeout`` seconds instead of blocking."""

    def __init__(
        self,
        lock_dir: Path,
        *,
        timeout: float = 3.0,
        poll_interval: float = 0.05,
        stale_after: float = 10.0,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._lock_dir = Path(lock_dir)
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._stale_after = stale_after
        self._clock = clock or time.time
        self._sleep = sleep or time.sleep
        self._held = False

    @property
    def path(self) -> Path:
        return self._lock_dir

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        """Try to take the lock; return False once the wait budget is spent."""

        if self._held:
            return True

        self._lock_dir.parent.mkdir(parents=True, exist_ok=True)
        deadline = self._clock() + self._timeout
        while True:
            try:
                self._lock_dir.mkdir()
            except FileExistsError:
                reclaimed = self._remove_if_stale()
                if self._clock() >= deadline:
                    logger.warning(
                        "Timed out waiting for registry lock",
                        extra={"lock_dir": str(self._lock_dir), "timeout": self._timeout},
                    )
                    return False
                if not reclaimed:
                    self._sleep(self._poll_interval)
                continue

            self._held = True
            self._write_lock_info()
            return True

    def release(self) -> None:
        """Release the lock if held. Safe to call repeatedly."""

        if not self._held:
            return
        shutil.rmtree(self._lock_dir, ignore_errors=True)
        self._held = False

    def __enter__(self) -> "DirectoryLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def age(self) -> float | None:
        """Seconds since the lock marker was created, or None if absent."""

        try:
            return self._clock() - self._lock_dir.stat().st_mtime
        except FileNotFoundError:
            return None

    def _remove_if_stale(self) -> bool:
        age = self.age()
        if age is None:
            # Released between our mkdir and stat; retry straight away.
            return True
        if age <= self._stale_after:
            return False
        logger.warning(
            "Removing stale registry lock",
            extra={"lock_dir": str(self._lock_dir), "age_seconds": round(age, 3)},
        )
        try:
            if self._lock_dir.is_dir() and not self._lock_dir.is_symlink():
                shutil.rmtree(self._lock_dir)
            else:
                self._lock_dir.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning(
                "Could not remove stale registry lock",
                extra={"lock_dir": str(self._lock_dir), "error": str(exc)},
            )
        return not os.path.lexists(self._lock_dir)

    def _write_lock_info(self) -> None:
        info = {
            "pid": os.getpid(),
            "timestamp": self._clock(),
            "host": socket.gethostname(),
        }
        try:
            (self._lock_dir / LOCK_INFO_FILENAME).write_text(json.dumps(info), encoding="utf-8")
        except OSError:
            logger.debug("Could not write lock info", extra={"lock_dir": str(self._lock_dir)})


__all__ = ["DirectoryLock", "LOCK_INFO_FILENAME", "lock_dir_for"]
