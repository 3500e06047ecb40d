"""Hook entry points invoked by the host session.

Each hook is a short-lived process: it reads one JSON event from stdin,
applies it to the registry and exits 0. Failures are logged and swallowed so
the host session is never disturbed.
"""

from __future__ import annotations

import argparse
import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Mapping

from .config import get_settings
from .prd import parse_frontmatter
from .prd.parser import split_frontmatter
from .sync import SessionSyncEngine, SyncOutcome

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
FIRST_PROMPT_TASK_LIMIT = 80

Payload = Mapping[str, Any]


def configure_logging(level: str, log_path: Path | None = None) -> None:
    """Configure root logging on stderr, plus an optional log file."""

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_path is not None:
        try:
            Path(log_path).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
        except OSError as exc:
            print(f"workboard: cannot open log file {log_path}: {exc}", file=sys.stderr)
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def build_engine() -> SessionSyncEngine:
    return SessionSyncEngine.from_settings(get_settings())


def _hook_boundary(func: Callable[..., SyncOutcome | None]) -> Callable[..., SyncOutcome | None]:
    @functools.wraps(func)
    def wrapper(payload: Payload, *, engine: SessionSyncEngine | None = None) -> SyncOutcome | None:
        try:
            return func(payload, engine=engine or build_engine())
        except Exception:
            logger.exception("Hook failed", extra={"hook": func.__name__})
            return None

    return wrapper


def _first_text(payload: Payload, *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _session_uuid(payload: Payload) -> str | None:
    return _first_text(payload, "session_id", "sessionUUID", "session_uuid")


def _display_name(payload: Payload) -> str | None:
    return _first_text(payload, "name", "newName", "displayName", "displayNameGuess", "sessionName", "session_name")


def _tool_input(payload: Payload) -> Payload:
    tool_input = payload.get("tool_input")
    return tool_input if isinstance(tool_input, Mapping) else {}


@_hook_boundary
def record_first_activity(payload: Payload, *, engine: SessionSyncEngine) -> SyncOutcome | None:
    """Seed or refresh the session's record on its first prompt."""

    session_uuid = _session_uuid(payload)
    if not session_uuid:
        logger.debug("First-activity event without a session id")
        return None
    task = _first_text(payload, "task", "taskText")
    if task is None:
        prompt = _first_text(payload, "prompt")
        task = prompt[:FIRST_PROMPT_TASK_LIMIT] if prompt else None
    return engine.upsert(
        session_uuid,
        display_name=_display_name(payload),
        task=task,
        mode=_first_text(payload, "mode") or "native",
    )


@_hook_boundary
def record_document_change(payload: Payload, *, engine: SessionSyncEngine) -> SyncOutcome | None:
    """Merge a work document that was just written or edited."""

    tool_input = _tool_input(payload)
    file_path = _first_text(payload, "file_path") or _first_text(tool_input, "file_path")
    if not file_path:
        logger.debug("Document event without a file path")
        return None

    content = payload.get("content")
    if not isinstance(content, str):
        content = tool_input.get("content")
    if not isinstance(content, str):
        content = Path(file_path).read_text(encoding="utf-8")

    if split_frontmatter(content) is None:
        logger.debug("Ignoring document without frontmatter", extra={"file_path": file_path})
        return None

    frontmatter = parse_frontmatter(content)
    return engine.sync_from_authoritative(frontmatter, file_path, content, _session_uuid(payload))


@_hook_boundary
def record_name_upgrade(payload: Payload, *, engine: SessionSyncEngine) -> SyncOutcome | None:
    """Store an improved display name and apply it to the live record."""

    session_uuid = _session_uuid(payload)
    name = _display_name(payload)
    if not session_uuid or not name:
        return None
    engine.names.record(session_uuid, name)
    return engine.update_display_name(session_uuid, name)


HOOKS: dict[str, Callable[..., SyncOutcome | None]] = {
    "first-activity": record_first_activity,
    "document-changed": record_document_change,
    "name-upgraded": record_name_upgrade,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Apply a host session event to the work registry")
    parser.add_argument("event", choices=sorted(HOOKS), help="Event type read from stdin")
    return parser


def _read_payload(stream) -> dict[str, Any]:
    raw = stream.read()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Hook payload is not valid JSON")
        return {}
    return payload if isinstance(payload, dict) else {}


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``workboard-hook``; always exits 0."""

    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except Exception as exc:
        print(f"workboard: invalid configuration: {exc}", file=sys.stderr)
        return 0
    configure_logging(settings.log_level, settings.log_path)

    try:
        payload = _read_payload(sys.stdin)
    except (OSError, UnicodeDecodeError):
        logger.exception("Could not read hook payload", extra={"event": args.event})
        return 0

    outcome = HOOKS[args.event](payload)
    if outcome is not None:
        logger.debug(
            "Hook applied",
            extra={"event": args.event, "slug": outcome.slug, "action": outcome.action},
        )
    return 0


__all__ = [
    "HOOKS",
    "build_engine",
    "configure_logging",
    "main",
    "record_document_change",
    "record_first_activity",
    "record_name_upgrade",
]


if __name__ == "__main__":
    raise SystemExit(main())
