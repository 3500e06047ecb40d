"""Configuration management for Workboard."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkboardSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    state_dir: Path = Field(
        default=Path("~/.claude/MEMORY/STATE"), validation_alias="WORKBOARD_STATE_DIR"
    )
    registry_path: Path | None = Field(default=None, validation_alias="WORKBOARD_REGISTRY_PATH")
    names_path: Path | None = Field(default=None, validation_alias="WORKBOARD_NAMES_PATH")
    work_dir: Path = Field(
        default=Path("~/.claude/MEMORY/WORK"), validation_alias="WORKBOARD_WORK_DIR"
    )
    lock_timeout: float = Field(default=3.0, validation_alias="WORKBOARD_LOCK_TIMEOUT")
    lock_poll_interval: float = Field(default=0.05, validation_alias="WORKBOARD_LOCK_POLL_INTERVAL")
    lock_stale_after: float = Field(default=10.0, validation_alias="WORKBOARD_LOCK_STALE_AFTER")
    complete_ttl_hours: float = Field(default=24.0, validation_alias="WORKBOARD_COMPLETE_TTL_HOURS")
    stale_ttl_days: float = Field(default=7.0, validation_alias="WORKBOARD_STALE_TTL_DAYS")
    task_max_length: int = Field(default=200, validation_alias="WORKBOARD_TASK_MAX_LENGTH")
    log_level: str = Field(default="INFO", validation_alias="WORKBOARD_LOG_LEVEL")
    log_path: Path | None = Field(default=None, validation_alias="WORKBOARD_LOG_PATH")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "WORKBOARD_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator(
        "lock_timeout",
        "lock_poll_interval",
        "lock_stale_after",
        "complete_ttl_hours",
        "stale_ttl_days",
    )
    @classmethod
    def _require_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Lock timings and retention windows must be > 0")
        return value

    @field_validator("task_max_length")
    @classmethod
    def _validate_task_max_length(cls, value: int) -> int:
        if value < 8:
            raise ValueError("WORKBOARD_TASK_MAX_LENGTH must be >= 8")
        return value

    @model_validator(mode="after")
    def _derive_state_files(self) -> "WorkboardSettings":
        if self.registry_path is None:
            self.registry_path = self.state_dir / "work.json"
        if self.names_path is None:
            self.names_path = self.state_dir / "session-names.json"
        return self

    def resolved(self) -> "WorkboardSettings":
        """Return a copy with every path expanded and made absolute."""

        def _resolve(path: Path | None) -> Path | None:
            return path.expanduser().resolve() if path is not None else None

        return self.model_copy(
            update={
                "state_dir": _resolve(self.state_dir),
                "registry_path": _resolve(self.registry_path),
                "names_path": _resolve(self.names_path),
                "work_dir": _resolve(self.work_dir),
                "log_path": _resolve(self.log_path),
            }
        )


@lru_cache(maxsize=1)
def get_settings() -> WorkboardSettings:
    """Return cached settings instance."""

    return WorkboardSettings().resolved()


__all__ = ["WorkboardSettings", "get_settings"]
