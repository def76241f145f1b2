"""Repository layer."""

from .aggregation_repository import AggregationRepository
from .event_repository import EventRepository
from .visitor_tag_repository import VisitorTagRepository
from .workflow_repository import WorkflowRepository

__all__ = [
    "AggregationRepository",
    "EventRepository",
    "VisitorTagRepository",
    "WorkflowRepository",
]
