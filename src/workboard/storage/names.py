"""Session display-name registry keyed by session UUID."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from .lock import DirectoryLock, lock_dir_for
from .registry import atomic_write_json

logger = logging.getLogger(__name__)


class NameRegistry:
    """Maps a host session UUID to its best known display name."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load_all(self) -> dict[str, str]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Name registry unreadable", extra={"path": str(self._path), "error": str(exc)})
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(key): value.strip() for key, value in data.items() if isinstance(value, str) and value.strip()}

    def lookup(self, session_uuid: str | None) -> str | None:
        if not session_uuid:
            return None
        return self.load_all().get(session_uuid)

    def record(self, session_uuid: str, name: str) -> bool:
        """Store ``name`` for ``session_uuid``. Returns False when nothing changed."""

        name = name.strip()
        if not session_uuid or not name:
            return False
        with DirectoryLock(lock_dir_for(self._path)):
            names = self.load_all()
            if names.get(session_uuid) == name:
                return False
            names[session_uuid] = name
            atomic_write_json(self._path, names)
        return True


__all__ = ["NameRegistry"]
