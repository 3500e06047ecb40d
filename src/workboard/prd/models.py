"""Models for authoritative work documents (PRD files)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..storage.models import Criterion, format_timestamp


class PRDFrontmatter(BaseModel):
    """Structured header of a work document."""

    model_config = ConfigDict(extra="allow")

    slug: str | None = Field(default=None, description="Registry key for the work item.")
    task: str | None = Field(default=None, description="One-line description of the work.")
    phase: str | None = Field(default=None, description="Current algorithm phase.")
    progress: str | None = Field(default=None, description="Checked/total criteria.")
    effort: str | None = Field(default=None, description="Effort tier label.")
    mode: str | None = Field(default=None, description="interactive or loop.")
    started: str | None = Field(default=None, description="ISO-8601 start time.")
    iteration: int | None = Field(default=None, description="Loop iteration counter.")

    @field_validator("slug", "task", "phase", "progress", "effort", "mode", "started", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, datetime):
            return format_timestamp(value)
        if isinstance(value, date):
            return value.isoformat()
        text = str(value).strip()
        return text or None

    @field_validator("phase", "mode")
    @classmethod
    def _lowercase(cls, value: str | None) -> str | None:
        return value.lower() if value else value

    @field_validator("iteration", mode="before")
    @classmethod
    def _coerce_iteration(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return value


@dataclass(slots=True)
class PRDDocument:
    """A parsed work document: frontmatter, criteria and remaining body."""

    frontmatter: PRDFrontmatter
    criteria: list[Criterion] = field(default_factory=list)
    body: str = ""

    @property
    def completed_count(self) -> int:
        return sum(1 for item in self.criteria if item.status == "completed")

    @property
    def progress(self) -> str:
        if self.frontmatter.progress:
            return self.frontmatter.progress
        return f"{self.completed_count}/{len(self.criteria)}"


__all__ = ["PRDDocument", "PRDFrontmatter"]
