"""Upsert engine that keeps the registry in step with producer events."""

from .engine import SessionSyncEngine, SyncError, SyncOutcome, make_slug, slugify

__all__ = ["SessionSyncEngine", "SyncError", "SyncOutcome", "make_slug", "slugify"]
