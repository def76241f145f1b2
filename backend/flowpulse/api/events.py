"""Event ingestion endpoints used by the browser tracker."""

from typing import Any

from fastapi import APIRouter, Body, Depends, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from flowpulse.core.config import settings
from flowpulse.dependencies import get_ingestion_service
from flowpulse.schemas.events import BatchIngestRequest, IngestResponse
from flowpulse.services.ingestion_service import IngestionResult, IngestionService

router = APIRouter(prefix="/events", tags=["events"])

# Tracker traffic is anonymous, so limits are per client address.
limiter = Limiter(key_func=get_remote_address, enabled=not settings.testing)


def _response(result: IngestionResult) -> IngestResponse:
    return IngestResponse(
        processed=result.processed,
        stored=result.stored,
        duplicates=result.duplicates,
        workflows=result.workflows,
    )


@router.post("/track", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.ingest_rate_limit)
def track_event(
    request: Request,
    payload: dict[str, Any] = Body(...),
    service: IngestionService = Depends(get_ingestion_service),
) -> IngestResponse:
    """Ingest one event, either bare or wrapped as ``{"event": {...}}``."""
    wrapped = payload.get("event")
    event = wrapped if isinstance(wrapped, dict) else payload
    return _response(service.ingest(event))


@router.post("/track/batch", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.ingest_rate_limit)
def track_batch(
    request: Request,
    body: BatchIngestRequest,
    service: IngestionService = Depends(get_ingestion_service),
) -> IngestResponse:
    """Ingest up to 1000 events atomically."""
    return _response(service.ingest(body.events))
