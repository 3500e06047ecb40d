"""Time-based pruning of registry entries."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from .models import Phase, Registry, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_COMPLETE_TTL = timedelta(hours=24)
DEFAULT_STALE_TTL = timedelta(days=7)


def _is_expired(
    last_activity: datetime | None,
    complete: bool,
    *,
    now: datetime,
    complete_ttl: timedelta,
    stale_ttl: timedelta,
) -> bool:
    if last_activity is None:
        return False
    idle = now - last_activity
    if complete and idle > complete_ttl:
        return True
    return idle > stale_ttl


def collect_garbage(
    registry: Registry,
    *,
    now: datetime,
    complete_ttl: timedelta = DEFAULT_COMPLETE_TTL,
    stale_ttl: timedelta = DEFAULT_STALE_TTL,
) -> list[str]:
    """Delete expired records in place and return their slugs.

    Completed work expires after ``complete_ttl`` of inactivity; anything else
    after ``stale_ttl``. Records without a parseable timestamp are kept.
    Entries held verbatim in ``registry.unparsed`` follow the same rules.
    """

    windows = {"now": now, "complete_ttl": complete_ttl, "stale_ttl": stale_ttl}
    expired: list[str] = [
        slug
        for slug, record in registry.sessions.items()
        if _is_expired(record.updated_at_datetime(), record.is_complete, **windows)
    ]
    expired_raw: list[str] = [
        slug
        for slug, raw in registry.unparsed.items()
        if isinstance(raw, dict)
        and _is_expired(
            parse_timestamp(raw.get("updatedAt")) or parse_timestamp(raw.get("started")),
            str(raw.get("phase") or "").strip().lower() == Phase.COMPLETE.value,
            **windows,
        )
    ]

    for slug in expired:
        del registry.sessions[slug]
    for slug in expired_raw:
        del registry.unparsed[slug]

    expired.extend(expired_raw)
    if expired:
        logger.info("Pruned expired registry entries", extra={"slugs": expired})
    return expired


__all__ = ["DEFAULT_COMPLETE_TTL", "DEFAULT_STALE_TTL", "collect_garbage"]
