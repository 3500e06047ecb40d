"""Storage abstractions for Workboard."""

from .lock import DirectoryLock, lock_dir_for
from .models import Criterion, Mode, Phase, PhaseEntry, Registry, SessionRecord
from .names import NameRegistry
from .registry import RegistryCorruptError, RegistryError, RegistryStore
from .retention import collect_garbage

__all__ = [
    "Criterion",
    "DirectoryLock",
    "Mode",
    "NameRegistry",
    "Phase",
    "PhaseEntry",
    "Registry",
    "RegistryCorruptError",
    "RegistryError",
    "RegistryStore",
    "SessionRecord",
    "collect_garbage",
    "lock_dir_for",
]
