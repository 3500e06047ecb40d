"""Durable JSON store for the work session registry."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, TypeVar

from .lock import DirectoryLock, lock_dir_for
from .models import Registry
from .retention import DEFAULT_COMPLETE_TTL, DEFAULT_STALE_TTL, collect_garbage

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RegistryError(RuntimeError):
    """Raised when the registry document cannot be read or written."""


class RegistryCorruptError(RegistryError):
    """Raised when the registry document exists but cannot be decoded."""


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to path atomically (temp file + rename)."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.",
        suffix=".tmp",
        text=True,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, target)
    except BaseException:
        try:
            os.unlink(temp_name)
        except OSError:
            pass
        raise


def atomic_write_json(path: Path, payload: Mapping[str, Any]) -> None:
    atomic_write_text(path, json.dumps(payload, indent=2) + "\n")


def backup_path_for(path: Path) -> Path:
    path = Path(path)
    return path.with_name(f"{path.name}.bak")


class RegistryStore:
    """Owns the registry file: locked read-modify-write, backup and pruning."""

    def __init__(
        self,
        path: Path,
        *,
        lock_timeout: float = 3.0,
        lock_poll_interval: float = 0.05,
        lock_stale_after: float = 10.0,
        complete_ttl: timedelta = DEFAULT_COMPLETE_TTL,
        stale_ttl: timedelta = DEFAULT_STALE_TTL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._backup_path = backup_path_for(self._path)
        self._lock_timeout = lock_timeout
        self._lock_poll_interval = lock_poll_interval
        self._lock_stale_after = lock_stale_after
        self._complete_ttl = complete_ttl
        self._stale_ttl = stale_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, settings, *, clock: Callable[[], datetime] | None = None) -> "RegistryStore":
        return cls(
            settings.registry_path,
            lock_timeout=settings.lock_timeout,
            lock_poll_interval=settings.lock_poll_interval,
            lock_stale_after=settings.lock_stale_after,
            complete_ttl=timedelta(hours=settings.complete_ttl_hours),
            stale_ttl=timedelta(days=settings.stale_ttl_days),
            clock=clock,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_path(self) -> Path:
        return self._backup_path

    @property
    def complete_ttl(self) -> timedelta:
        return self._complete_ttl

    @property
    def stale_ttl(self) -> timedelta:
        return self._stale_ttl

    def now(self) -> datetime:
        return self._clock()

    def lock(self) -> DirectoryLock:
        return DirectoryLock(
            lock_dir_for(self._path),
            timeout=self._lock_timeout,
            poll_interval=self._lock_poll_interval,
            stale_after=self._lock_stale_after,
        )

    def read(self) -> Registry:
        """Load the registry; a corrupt primary falls back to the backup copy."""

        try:
            return self._load(self._path)
        except FileNotFoundError:
            return Registry()
        except RegistryError as exc:
            logger.warning(
                "Registry unreadable; trying backup",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return self._load_backup()

    def read_with_backup_fallback(self) -> Registry:
        """Consumer read: falls back to the backup even when the primary is missing."""

        try:
            return self._load(self._path)
        except (FileNotFoundError, RegistryError):
            return self._load_backup()

    def write(self, registry: Registry) -> list[str]:
        """Prune, back up the current document and atomically replace it.

        Returns the slugs removed by retention.
        """

        removed = collect_garbage(
            registry,
            now=self._clock(),
            complete_ttl=self._complete_ttl,
            stale_ttl=self._stale_ttl,
        )
        self._backup_current()
        try:
            atomic_write_json(self._path, registry.to_payload())
        except OSError as exc:
            raise RegistryError(f"Failed to write registry at {self._path}: {exc}") from exc
        return removed

    @contextmanager
    def edit(self) -> Iterator[Registry]:
        """Lock, reload (so we operate on latest), yield, then save atomically.

        When the lock cannot be taken in time the edit proceeds unlocked.
        """

        lock = self.lock()
        if not lock.acquire():
            logger.warning("Proceeding without registry lock", extra={"lock_dir": str(lock.path)})
        try:
            registry = self.read()
            yield registry
            self.write(registry)
        finally:
            lock.release()

    def read_modify_write(self, fn: Callable[[Registry], T]) -> T:
        with self.edit() as registry:
            return fn(registry)

    def _load(self, path: Path) -> Registry:
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise RegistryError(f"Cannot read registry at {path}: {exc}") from exc
        try:
            return Registry.from_payload(json.loads(data.decode("utf-8")))
        except ValueError as exc:
            raise RegistryCorruptError(f"Invalid registry JSON at {path}: {exc}") from exc

    def _load_backup(self) -> Registry:
        try:
            return self._load(self._backup_path)
        except FileNotFoundError:
            return Registry()
        except RegistryError as exc:
            logger.warning(
                "Registry backup unusable; starting empty",
                extra={"path": str(self._backup_path), "error": str(exc)},
            )
            return Registry()

    def _backup_current(self) -> None:
        # A corrupt primary must never replace a good backup.
        try:
            raw = self._path.read_text(encoding="utf-8")
            json.loads(raw)
        except FileNotFoundError:
            return
        except (OSError, ValueError):
            logger.debug("Skipping backup of undecodable registry", extra={"path": str(self._path)})
            return
        try:
            atomic_write_text(self._backup_path, raw)
        except OSError as exc:
            logger.debug("Registry backup failed", extra={"path": str(self._backup_path), "error": str(exc)})


__all__ = [
    "RegistryCorruptError",
    "RegistryError",
    "RegistryStore",
    "atomic_write_json",
    "atomic_write_text",
    "backup_path_for",
]
