"""Database module initialization."""

from .models import (
    Base,
    DailyAggregation,
    MonthlyAggregation,
    VisitorTag,
    WeeklyAggregation,
    Workflow,
    WorkflowEvent,
    WorkflowNodeStats,
)
from .session import SessionLocal, engine, get_db

__all__ = [
    "Base",
    "DailyAggregation",
    "MonthlyAggregation",
    "VisitorTag",
    "WeeklyAggregation",
    "Workflow",
    "WorkflowEvent",
    "WorkflowNodeStats",
    "get_db",
    "engine",
    "SessionLocal",
]
