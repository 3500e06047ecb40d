from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from workboard.storage import Registry, RegistryError, RegistryStore, SessionRecord
from workboard.storage import registry as registry_module
from workboard.storage.models import format_timestamp


def _seed(path: Path, sessions: dict) -> None:
    path.write_text(json.dumps({"sessions": sessions}), encoding="utf-8")


def test_missing_registry_reads_as_empty(tmp_path: Path, clock) -> None:
    store = RegistryStore(tmp_path / "work.json", clock=clock)
    assert store.read().sessions == {}
    assert store.read_with_backup_fallback().sessions == {}


def test_edit_round_trips_through_disk(tmp_path: Path, clock) -> None:
    path = tmp_path / "state" / "work.json"
    store = RegistryStore(path, clock=clock)

    with store.edit() as registry:
        registry.sessions["20250101-0900_demo"] = SessionRecord(
            task="demo",
            session_uuid="uuid-1",
            updated_at=format_timestamp(clock()),
        )

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    record = on_disk["sessions"]["20250101-0900_demo"]
    assert record["sessionUUID"] == "uuid-1"
    assert record["updatedAt"] == "2025-01-01T09:00:00.000Z"
    assert "sessionName" not in record
    assert store.read().sessions["20250101-0900_demo"].task == "demo"
    assert not (tmp_path / "state" / "work.lock").exists()


def test_read_modify_write_returns_callback_result(tmp_path: Path, clock) -> None:
    store = RegistryStore(tmp_path / "work.json", clock=clock)

    def add(registry: Registry) -> int:
        registry.sessions["a"] = SessionRecord(task="a", updated_at=format_timestamp(clock()))
        return len(registry.sessions)

    assert store.read_modify_write(add) == 1
    assert list(store.read().sessions) == ["a"]


def test_write_keeps_previous_document_as_backup(tmp_path: Path, clock) -> None:
    store = RegistryStore(tmp_path / "work.json", clock=clock)
    stamp = format_timestamp(clock())

    with store.edit() as registry:
        registry.sessions["first"] = SessionRecord(task="first", updated_at=stamp)
    with store.edit() as registry:
        registry.sessions["second"] = SessionRecord(task="second", updated_at=stamp)

    backup = json.loads(store.backup_path.read_text(encoding="utf-8"))
    assert list(backup["sessions"]) == ["first"]
    assert store.backup_path == tmp_path / "work.json.bak"


def test_corrupt_primary_falls_back_to_backup(tmp_path: Path, clock) -> None:
    path = tmp_path / "work.json"
    store = RegistryStore(path, clock=clock)
    _seed(store.backup_path, {"kept": {"task": "from backup", "updatedAt": format_timestamp(clock())}})
    path.write_text("{not json", encoding="utf-8")

    registry = store.read()

    assert registry.sessions["kept"].task == "from backup"


def test_corrupt_primary_without_backup_reads_as_empty(tmp_path: Path, clock) -> None:
    path = tmp_path / "work.json"
    path.write_text('{"sessions": [1, 2]}', encoding="utf-8")
    store = RegistryStore(path, clock=clock)

    assert store.read().sessions == {}


def test_corrupt_primary_never_replaces_backup(tmp_path: Path, clock) -> None:
    path = tmp_path / "work.json"
    store = RegistryStore(path, clock=clock)
    good = json.dumps({"sessions": {"kept": {"task": "good"}}})
    store.backup_path.write_text(good, encoding="utf-8")
    path.write_text("{truncated", encoding="utf-8")

    with store.edit() as registry:
        registry.sessions["new"] = SessionRecord(task="new", updated_at=format_timestamp(clock()))

    assert store.backup_path.read_text(encoding="utf-8") == good
    assert set(json.loads(path.read_text(encoding="utf-8"))["sessions"]) == {"kept", "new"}


def test_missing_primary_uses_backup_for_consumers_only(tmp_path: Path, clock) -> None:
    store = RegistryStore(tmp_path / "work.json", clock=clock)
    _seed(store.backup_path, {"kept": {"task": "from backup"}})

    assert store.read().sessions == {}
    assert list(store.read_with_backup_fallback().sessions) == ["kept"]


def test_failed_rename_leaves_primary_intact(tmp_path: Path, clock, monkeypatch) -> None:
    path = tmp_path / "work.json"
    store = RegistryStore(path, clock=clock)
    with store.edit() as registry:
        registry.sessions["stable"] = SessionRecord(task="stable", updated_at=format_timestamp(clock()))
    before = path.read_text(encoding="utf-8")

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(registry_module.os, "replace", failing_replace)

    registry = store.read()
    registry.sessions["lost"] = SessionRecord(task="lost", updated_at=format_timestamp(clock()))
    with pytest.raises(RegistryError):
        store.write(registry)

    assert path.read_text(encoding="utf-8") == before
    assert list(tmp_path.glob(".work.json.*.tmp")) == []


def test_write_prunes_expired_records(tmp_path: Path, clock) -> None:
    store = RegistryStore(tmp_path / "work.json", clock=clock, stale_ttl=timedelta(days=7))
    registry = Registry(
        sessions={
            "old": SessionRecord(task="old", updated_at=format_timestamp(clock() - timedelta(days=8))),
            "new": SessionRecord(task="new", updated_at=format_timestamp(clock())),
        }
    )

    assert store.write(registry) == ["old"]
    assert list(store.read().sessions) == ["new"]


def test_unknown_fields_survive_round_trip(tmp_path: Path, clock) -> None:
    path = tmp_path / "work.json"
    stamp = format_timestamp(clock())
    path.write_text(
        json.dumps(
            {
                "version": 2,
                "sessions": {"item": {"task": "t", "updatedAt": stamp, "color": "blue"}},
            }
        ),
        encoding="utf-8",
    )
    store = RegistryStore(path, clock=clock)

    with store.edit():
        pass

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["version"] == 2
    assert data["sessions"]["item"]["color"] == "blue"


def test_invalid_entries_are_kept_verbatim(tmp_path: Path, clock) -> None:
    path = tmp_path / "work.json"
    _seed(path, {"bad": "not-an-object", "good": {"task": "fine"}})
    store = RegistryStore(path, clock=clock)

    registry = store.read()

    assert list(registry.sessions) == ["good"]
    assert registry.unparsed == {"bad": "not-an-object"}
    assert registry.to_payload()["sessions"]["bad"] == "not-an-object"


def test_undecodable_bytes_fall_back_to_backup(tmp_path: Path, clock) -> None:
    path = tmp_path / "work.json"
    store = RegistryStore(path, clock=clock)
    _seed(store.backup_path, {"kept": {"task": "from backup"}})
    path.write_bytes(b'{"sessions": {"\xff\xfe": {}}}')

    assert list(store.read().sessions) == ["kept"]

    with store.edit() as registry:
        registry.sessions["new"] = SessionRecord(task="new", updated_at=format_timestamp(clock()))

    assert set(json.loads(path.read_text(encoding="utf-8"))["sessions"]) == {"kept", "new"}


def test_foreign_typed_entries_survive_edit(tmp_path: Path, clock) -> None:
    path = tmp_path / "work.json"
    stamp = format_timestamp(clock())
    foreign = {
        "effort-number": {"task": "t", "effort": 3, "updatedAt": stamp},
        "null-phase": {"task": "u", "phase": None, "updatedAt": stamp},
    }
    _seed(path, {**foreign, "good": {"task": "fine", "updatedAt": stamp}})
    store = RegistryStore(path, clock=clock)

    with store.edit() as registry:
        assert list(registry.sessions) == ["good"]
        assert set(registry.unparsed) == {"effort-number", "null-phase"}

    sessions = json.loads(path.read_text(encoding="utf-8"))["sessions"]
    assert sessions["effort-number"] == foreign["effort-number"]
    assert sessions["null-phase"] == foreign["null-phase"]
    assert "good" in sessions


def test_foreign_entries_still_expire(tmp_path: Path, clock) -> None:
    path = tmp_path / "work.json"
    old = format_timestamp(clock() - timedelta(days=8))
    _seed(path, {"ancient": {"task": "t", "effort": 3, "updatedAt": old}})
    store = RegistryStore(path, clock=clock)

    with store.edit():
        pass

    assert json.loads(path.read_text(encoding="utf-8"))["sessions"] == {}
