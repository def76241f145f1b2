"""Schemas module initialization."""

from .analytics import AnalyticsEnvelope
from .events import BatchIngestRequest, IngestResponse, TrackedEvent
from .execution import EnqueueResponse, ExecutionRequest, ExecutionResponse, JobStatusResponse
from .visitors import AddTagRequest, HasTagResponse, TagListResponse

__all__ = [
    "AddTagRequest",
    "AnalyticsEnvelope",
    "BatchIngestRequest",
    "EnqueueResponse",
    "ExecutionRequest",
    "ExecutionResponse",
    "HasTagResponse",
    "IngestResponse",
    "JobStatusResponse",
    "TagListResponse",
    "TrackedEvent",
]
