"""Data models for the work session registry document."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    NATIVE = "native"
    STARTING = "starting"
    OBSERVE = "observe"
    THINK = "think"
    PLAN = "plan"
    BUILD = "build"
    EXECUTE = "execute"
    VERIFY = "verify"
    LEARN = "learn"
    COMPLETE = "complete"


class Mode(str, Enum):
    NATIVE = "native"
    STARTING = "starting"
    INTERACTIVE = "interactive"
    LOOP = "loop"


PLACEHOLDER_MODES = frozenset({Mode.NATIVE.value, Mode.STARTING.value})


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as a UTC ISO-8601 string with millisecond precision."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string into an aware datetime; None when unparseable."""

    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class _DocumentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Criterion(_DocumentModel):
    """One success (or anti-success) criterion parsed from a work document."""

    id: str
    description: str = ""
    type: str = "criterion"
    status: str = "pending"

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return "anti-criterion" if str(value).strip().lower() == "anti-criterion" else "criterion"

    @field_validator("status")
    @classmethod
    def _normalize_status(cls, value: str) -> str:
        return "completed" if str(value).strip().lower() == "completed" else "pending"


class PhaseEntry(_DocumentModel):
    """A single span in a record's phase history."""

    phase: str
    started_at: int = Field(alias="startedAt")
    completed_at: int | None = Field(default=None, alias="completedAt")
    criteria_count: int = Field(default=0, alias="criteriaCount")
    agent_count: int = Field(default=0, alias="agentCount")

    @field_validator("phase")
    @classmethod
    def _uppercase_phase(cls, value: str) -> str:
        return str(value).strip().upper()


class SessionRecord(_DocumentModel):
    """Registry entry describing one unit of active work."""

    prd: str | None = None
    task: str = ""
    session_name: str | None = Field(default=None, alias="sessionName")
    session_uuid: str | None = Field(default=None, alias="sessionUUID")
    phase: str = Phase.STARTING.value
    progress: str = "0/0"
    effort: str | None = None
    mode: str = Mode.STARTING.value
    started: str | None = None
    updated_at: str | None = Field(default=None, alias="updatedAt")
    criteria: list[Criterion] = Field(default_factory=list)
    phase_history: list[PhaseEntry] = Field(default_factory=list, alias="phaseHistory")
    iteration: int | None = None

    @field_validator("phase", "mode")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return str(value).strip().lower()

    @property
    def is_placeholder(self) -> bool:
        return self.mode in PLACEHOLDER_MODES

    @property
    def is_complete(self) -> bool:
        return self.phase == Phase.COMPLETE.value

    def updated_at_datetime(self) -> datetime | None:
        """Last activity time, falling back to the start time."""

        return parse_timestamp(self.updated_at) or parse_timestamp(self.started)


class Registry(_DocumentModel):
    """The whole on-disk registry document."""

    sessions: dict[str, SessionRecord] = Field(default_factory=dict)
    _unparsed: dict[str, Any] = PrivateAttr(default_factory=dict)

    @property
    def unparsed(self) -> dict[str, Any]:
        """Entries from other producers that do not fit ``SessionRecord``, kept verbatim."""

        return self._unparsed

    def has_slug(self, slug: str) -> bool:
        return slug in self.sessions or slug in self._unparsed

    def records_for(self, session_uuid: str) -> Iterator[tuple[str, SessionRecord]]:
        for slug, record in self.sessions.items():
            if record.session_uuid == session_uuid:
                yield slug, record

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        for slug, raw in self._unparsed.items():
            payload["sessions"].setdefault(slug, raw)
        return payload

    @classmethod
    def from_payload(cls, data: Any) -> "Registry":
        """Build a registry from decoded JSON.

        Raises ``ValueError`` when the document shape is wrong. Individual
        session entries that fail validation are kept verbatim in
        ``unparsed`` and written back unchanged.
        """

        if not isinstance(data, dict):
            raise ValueError("Registry document must be a JSON object")
        raw_sessions = data.get("sessions") or {}
        if not isinstance(raw_sessions, dict):
            raise ValueError("Registry 'sessions' must be a JSON object")

        sessions: dict[str, SessionRecord] = {}
        unparsed: dict[str, Any] = {}
        for slug, raw in raw_sessions.items():
            try:
                sessions[str(slug)] = SessionRecord.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Keeping unparseable registry entry as-is", extra={"slug": slug, "error": str(exc)})
                unparsed[str(slug)] = raw

        extras = {key: value for key, value in data.items() if key != "sessions"}
        registry = cls(sessions=sessions, **extras)
        registry._unparsed = unparsed
        return registry


__all__ = [
    "Criterion",
    "Mode",
    "PLACEHOLDER_MODES",
    "Phase",
    "PhaseEntry",
    "Registry",
    "SessionRecord",
    "epoch_ms",
    "format_timestamp",
    "parse_timestamp",
]
