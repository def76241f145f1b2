"""Service layer entry points."""

from .analytics_service import AnalyticsService
from .counter_service import CounterDelta, CounterService
from .execution_service import ExecutionResult, ExecutionService
from .ingestion_service import IngestionResult, IngestionService
from .rollup_service import RollupReport, RollupService
from .visitor_service import VisitorService

__all__ = [
    "AnalyticsService",
    "CounterDelta",
    "CounterService",
    "ExecutionResult",
    "ExecutionService",
    "IngestionResult",
    "IngestionService",
    "RollupReport",
    "RollupService",
    "VisitorService",
]
