"""Workboard: a lock-guarded registry of active work sessions."""

__version__ = "0.1.0"

__all__ = ["__version__"]
