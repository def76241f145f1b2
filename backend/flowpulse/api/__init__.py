"""API module initialization."""

from . import admin, analytics, events, execution, metrics, visitors

__all__ = ["admin", "analytics", "events", "execution", "metrics", "visitors"]
