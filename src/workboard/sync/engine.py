"""Merge logic that reconciles producer events into registry records."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from ..prd import PRDDocument, PRDFrontmatter, parse_criteria
from ..prd.parser import split_frontmatter
from ..storage import NameRegistry, Registry, RegistryStore, SessionRecord
from ..storage.models import Mode, Phase, PhaseEntry, epoch_ms, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

_SLUG_SEPARATOR_RE = re.compile(r"[^a-z0-9]+")
SLUG_FRAGMENT_MAX = 40
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class SyncError(RuntimeError):
    """Raised when an update request cannot be mapped onto a registry record."""


@dataclass(slots=True)
class SyncOutcome:
    """Result of one engine operation."""

    slug: str | None
    action: str
    merged: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return self.action != "noop"


def slugify(text: str, *, max_length: int = SLUG_FRAGMENT_MAX) -> str:
    fragment = _SLUG_SEPARATOR_RE.sub("-", (text or "").lower()).strip("-")
    return fragment[:max_length].rstrip("-")


def make_slug(moment: datetime, text: str) -> str:
    """``20250101-0900_fix-login`` style key from a timestamp and free text."""

    return f"{moment.strftime('%Y%m%d-%H%M')}_{slugify(text) or 'session'}"


def _most_recent(candidates: Iterable[tuple[str, SessionRecord]]) -> tuple[str, SessionRecord] | None:
    # Equal timestamps resolve to the entry inserted last.
    best: tuple[str, SessionRecord] | None = None
    best_key: tuple[datetime, int] | None = None
    for index, (slug, record) in enumerate(candidates):
        key = (record.updated_at_datetime() or _EPOCH, index)
        if best_key is None or key >= best_key:
            best, best_key = (slug, record), key
    return best


class SessionSyncEngine:
    """Upserts, authoritative syncs and renames against a ``RegistryStore``."""

    def __init__(
        self,
        store: RegistryStore,
        names: NameRegistry,
        *,
        work_dir: Path | None = None,
        task_max_length: int = 200,
    ) -> None:
        self._store = store
        self._names = names
        self._work_dir = Path(work_dir) if work_dir is not None else None
        self._task_max_length = task_max_length

    @classmethod
    def from_settings(cls, settings, *, clock: Callable[[], datetime] | None = None) -> "SessionSyncEngine":
        return cls(
            RegistryStore.from_settings(settings, clock=clock),
            NameRegistry(settings.names_path),
            work_dir=settings.work_dir,
            task_max_length=settings.task_max_length,
        )

    @property
    def store(self) -> RegistryStore:
        return self._store

    @property
    def names(self) -> NameRegistry:
        return self._names

    def upsert(
        self,
        session_uuid: str,
        display_name: str | None = None,
        task: str | None = None,
        mode: str | None = Mode.NATIVE.value,
    ) -> SyncOutcome:
        """Record first activity for a session, creating a placeholder if needed."""

        if not session_uuid:
            raise SyncError("A session UUID is required to upsert")
        name = (display_name or "").strip()
        task_text = self._cap(task)
        seeded = Mode.NATIVE.value if (mode or "").strip().lower() == Mode.NATIVE.value else Mode.STARTING.value

        def apply(registry: Registry) -> SyncOutcome:
            now = self._store.now()
            match = self._find_placeholder(registry, session_uuid) or self._find_promoted(registry, session_uuid)
            if match is not None:
                slug, record = match
                self._touch(record, now)
                if name:
                    record.session_name = name
                logger.debug("Refreshed session record", extra={"slug": slug, "session_uuid": session_uuid})
                return SyncOutcome(slug, "updated")

            slug = self._unique_slug(registry, make_slug(now, task_text or name))
            stamp = format_timestamp(now)
            registry.sessions[slug] = SessionRecord(
                task=task_text or self._cap(name),
                session_name=name or None,
                session_uuid=session_uuid,
                phase=seeded,
                mode=seeded,
                started=stamp,
                updated_at=stamp,
            )
            logger.info("Created session placeholder", extra={"slug": slug, "session_uuid": session_uuid})
            return SyncOutcome(slug, "created")

        return self._store.read_modify_write(apply)

    def sync_from_authoritative(
        self,
        frontmatter: PRDFrontmatter | Mapping[str, Any] | None,
        file_path: str | Path | None,
        content: str,
        session_uuid: str | None,
    ) -> SyncOutcome:
        """Merge a freshly written work document into its registry record.

        Placeholders for the same session under other keys are folded into the
        authoritative record in the same write.
        """

        if isinstance(frontmatter, PRDFrontmatter):
            header = frontmatter
        else:
            header = PRDFrontmatter.model_validate(dict(frontmatter or {}))

        slug = header.slug or self._slug_from_path(file_path)
        if not slug:
            raise SyncError("Cannot determine a registry key for the work document")

        parts = split_frontmatter(content or "")
        body = parts[1] if parts else (content or "")
        document = PRDDocument(frontmatter=header, criteria=parse_criteria(body), body=body)
        registered_name = self._names.lookup(session_uuid)
        prd_path = self._relative_prd(file_path)

        def apply(registry: Registry) -> SyncOutcome:
            now = self._store.now()
            merged: list[SessionRecord] = []
            merged_slugs: list[str] = []
            if session_uuid:
                for other_slug, other in list(registry.records_for(session_uuid)):
                    if other_slug != slug and other.is_placeholder:
                        merged_slugs.append(other_slug)
                        merged.append(other)
            for other_slug in merged_slugs:
                del registry.sessions[other_slug]

            existing = registry.sessions.get(slug)
            record = existing.model_copy(deep=True) if existing is not None else SessionRecord()
            placeholder = _most_recent((s, r) for s, r in zip(merged_slugs, merged))
            placeholder_record = placeholder[1] if placeholder else None

            if existing is not None and not existing.is_placeholder:
                fallback_phase, fallback_mode = existing.phase, existing.mode
            else:
                fallback_phase, fallback_mode = Phase.OBSERVE.value, Mode.INTERACTIVE.value
            phase = header.phase or fallback_phase
            mode = header.mode or fallback_mode

            record.session_uuid = session_uuid or record.session_uuid
            record.session_name = (
                registered_name
                or record.session_name
                or (placeholder_record.session_name if placeholder_record else None)
                or header.task
            )
            record.task = self._cap(header.task or record.task)
            record.prd = prd_path or record.prd
            record.phase = phase
            record.mode = mode
            record.progress = document.progress
            record.effort = header.effort or record.effort
            if header.iteration is not None:
                record.iteration = header.iteration
            record.criteria = list(document.criteria)
            if not record.started:
                record.started = (
                    header.started
                    or (placeholder_record.started if placeholder_record else None)
                    or format_timestamp(now)
                )
            self._advance_phase(record, phase, epoch_ms(now), len(document.criteria))
            self._touch(record, now)

            registry.unparsed.pop(slug, None)
            registry.sessions[slug] = record
            action = "created" if existing is None else "updated"
            logger.info(
                "Synced work document",
                extra={"slug": slug, "phase": phase, "action": action, "merged": merged_slugs},
            )
            return SyncOutcome(slug, action, tuple(merged_slugs))

        return self._store.read_modify_write(apply)

    def update_display_name(self, session_uuid: str, name: str | None) -> SyncOutcome:
        """Rename the most recently active, non-complete record of a session."""

        name = (name or "").strip()
        if not session_uuid or not name:
            return SyncOutcome(None, "noop")

        def apply(registry: Registry) -> SyncOutcome:
            candidates = [
                (slug, record)
                for slug, record in registry.records_for(session_uuid)
                if not record.is_complete
            ]
            target = _most_recent(candidates)
            if target is None:
                return SyncOutcome(None, "noop")
            slug, record = target
            if record.session_name == name:
                return SyncOutcome(slug, "noop")
            record.session_name = name
            logger.debug("Renamed session", extra={"slug": slug, "session_uuid": session_uuid})
            return SyncOutcome(slug, "updated")

        return self._store.read_modify_write(apply)

    @staticmethod
    def _advance_phase(record: SessionRecord, phase: str, now_ms: int, criteria_count: int) -> None:
        history = record.phase_history
        last = history[-1] if history else None
        if last is not None and last.phase == phase.upper():
            return
        if last is not None and last.completed_at is None:
            last.completed_at = now_ms
        history.append(
            PhaseEntry(phase=phase, started_at=now_ms, criteria_count=criteria_count, agent_count=0)
        )

    @staticmethod
    def _touch(record: SessionRecord, now: datetime) -> None:
        previous = parse_timestamp(record.updated_at)
        if previous is not None and previous > now:
            return
        record.updated_at = format_timestamp(now)

    @staticmethod
    def _find_placeholder(registry: Registry, session_uuid: str) -> tuple[str, SessionRecord] | None:
        return _most_recent(
            (slug, record) for slug, record in registry.records_for(session_uuid) if record.is_placeholder
        )

    @staticmethod
    def _find_promoted(registry: Registry, session_uuid: str) -> tuple[str, SessionRecord] | None:
        return _most_recent(
            (slug, record)
            for slug, record in registry.records_for(session_uuid)
            if not record.is_placeholder and not record.is_complete
        )

    @staticmethod
    def _unique_slug(registry: Registry, base: str) -> str:
        slug = base
        counter = 2
        while registry.has_slug(slug):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    @staticmethod
    def _slug_from_path(file_path: str | Path | None) -> str | None:
        if not file_path:
            return None
        path = Path(file_path)
        if path.stem.upper() in {"PRD", "README"} and path.parent.name:
            return path.parent.name
        return path.stem or None

    def _relative_prd(self, file_path: str | Path | None) -> str | None:
        if not file_path:
            return None
        path = Path(file_path)
        if self._work_dir is not None:
            try:
                return path.relative_to(self._work_dir).as_posix()
            except ValueError:
                pass
        return path.as_posix()

    def _cap(self, text: str | None) -> str:
        text = " ".join((text or "").split())
        if len(text) <= self._task_max_length:
            return text
        return text[: self._task_max_length - 3].rstrip() + "..."


__all__ = ["SessionSyncEngine", "SyncError", "SyncOutcome", "make_slug", "slugify"]
