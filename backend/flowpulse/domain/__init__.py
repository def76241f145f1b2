"""Domain types shared by services and the API layer."""

from .analytics import ActivityFilters, DateRange
from .context import SYSTEM_USER, CallerContext

__all__ = ["ActivityFilters", "CallerContext", "DateRange", "SYSTEM_USER"]
