from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from workboard.config import WorkboardSettings, get_settings


def test_state_files_derive_from_state_dir(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("WORKBOARD_STATE_DIR", str(tmp_path))

    settings = WorkboardSettings()

    assert settings.registry_path == tmp_path / "work.json"
    assert settings.names_path == tmp_path / "session-names.json"
    assert settings.lock_timeout == 3.0
    assert settings.complete_ttl_hours == 24
    assert settings.stale_ttl_days == 7


def test_explicit_registry_path_overrides_default(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("WORKBOARD_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("WORKBOARD_REGISTRY_PATH", str(tmp_path / "elsewhere" / "reg.json"))

    assert WorkboardSettings().registry_path == tmp_path / "elsewhere" / "reg.json"


def test_resolved_expands_user_paths(monkeypatch) -> None:
    monkeypatch.setenv("WORKBOARD_STATE_DIR", "~/state")

    settings = WorkboardSettings().resolved()

    assert settings.state_dir.is_absolute()
    assert "~" not in str(settings.registry_path)


def test_log_level_is_normalized(monkeypatch) -> None:
    monkeypatch.setenv("WORKBOARD_LOG_LEVEL", "debug")
    assert WorkboardSettings().log_level == "DEBUG"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("WORKBOARD_LOG_LEVEL", "LOUD"),
        ("WORKBOARD_LOCK_TIMEOUT", "0"),
        ("WORKBOARD_STALE_TTL_DAYS", "-1"),
        ("WORKBOARD_TASK_MAX_LENGTH", "3"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        WorkboardSettings()


def test_get_settings_is_cached(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("WORKBOARD_STATE_DIR", str(tmp_path))
    assert get_settings() is get_settings()
