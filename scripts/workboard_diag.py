"""Workboard registry diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone

from workboard.config import WorkboardSettings
from workboard.storage import Registry, RegistryStore, collect_garbage
from workboard.storage.models import format_timestamp


def load_store(settings: WorkboardSettings) -> RegistryStore:
    return RegistryStore.from_settings(settings)


def _load_registry() -> Registry:
    store = load_store(WorkboardSettings().resolved())
    return store.read_with_backup_fallback()


def _by_recency(registry: Registry) -> list[tuple[str, dict]]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    ordered = sorted(
        registry.sessions.items(),
        key=lambda item: item[1].updated_at_datetime() or epoch,
        reverse=True,
    )
    return [(slug, record.model_dump(mode="json", by_alias=True, exclude_none=True)) for slug, record in ordered]


def cmd_sessions(args: argparse.Namespace) -> None:
    registry = _load_registry()
    rows = [
        (slug, record)
        for slug, record in _by_recency(registry)
        if args.all or record.get("phase") != "complete"
    ]
    if args.json:
        print(json.dumps({slug: record for slug, record in rows}, indent=2))
        return
    for slug, record in rows:
        name = record.get("sessionName") or record.get("task") or "-"
        print(f"{slug} [{record.get('phase')} {record.get('progress')}] {name}")


def cmd_show(args: argparse.Namespace) -> None:
    registry = _load_registry()
    record = registry.sessions.get(args.slug)
    if record is None:
        print(f"Unknown session: {args.slug}")
        raise SystemExit(1)
    print(json.dumps(record.model_dump(mode="json", by_alias=True, exclude_none=True), indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    registry = _load_registry()

    phase_counts: dict[str, int] = {}
    mode_counts: dict[str, int] = {}
    placeholders = 0
    oldest: datetime | None = None
    for record in registry.sessions.values():
        phase_counts[record.phase] = phase_counts.get(record.phase, 0) + 1
        mode_counts[record.mode] = mode_counts.get(record.mode, 0) + 1
        if record.is_placeholder:
            placeholders += 1
        updated = record.updated_at_datetime()
        if updated is not None and (oldest is None or updated < oldest):
            oldest = updated

    metrics = {
        "sessions_total": len(registry.sessions),
        "phase_counts": phase_counts,
        "mode_counts": mode_counts,
        "placeholders": placeholders,
        "oldest_update": format_timestamp(oldest) if oldest else None,
    }
    print(json.dumps(metrics, indent=2))


def cmd_gc(args: argparse.Namespace) -> None:
    settings = WorkboardSettings().resolved()
    store = load_store(settings)
    if args.dry_run:
        registry = store.read()
        removed = collect_garbage(
            registry,
            now=store.now(),
            complete_ttl=store.complete_ttl,
            stale_ttl=store.stale_ttl,
        )
    else:
        with store.lock():
            removed = store.write(store.read())
    print(json.dumps({"dry_run": bool(args.dry_run), "removed": removed}, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Workboard registry diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List active work sessions")
    p_sessions.add_argument("--all", action="store_true", help="Include completed sessions")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_show = sub.add_parser("show", help="Print one registry record")
    p_show.add_argument("slug")
    p_show.set_defaults(func=cmd_show)

    p_metrics = sub.add_parser("metrics", help="Show counts by phase and mode")
    p_metrics.set_defaults(func=cmd_metrics)

    p_gc = sub.add_parser("gc", help="Apply retention to the registry")
    p_gc.add_argument("--dry-run", action="store_true", help="Report without writing")
    p_gc.set_defaults(func=cmd_gc)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
