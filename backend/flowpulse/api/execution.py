"""Server-side action execution endpoints."""

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from flowpulse.celery_app import celery_app
from flowpulse.core.config import settings
from flowpulse.dependencies import get_execution_service
from flowpulse.schemas.execution import (
    EnqueueResponse,
    ExecutionRequest,
    ExecutionResponse,
    JobStatusResponse,
)
from flowpulse.services.execution_service import ExecutionService

router = APIRouter(prefix="/execution", tags=["execution"])

limiter = Limiter(key_func=get_remote_address, enabled=not settings.testing)


@router.post("/action", response_model=ExecutionResponse)
@limiter.limit(settings.ingest_rate_limit)
def execute_action(
    request: Request,
    body: ExecutionRequest,
    service: ExecutionService = Depends(get_execution_service),
) -> ExecutionResponse:
    """Run an Action node now and report the outcome.

    Handler failures come back as ``success: false`` with HTTP 200; only an
    unknown workflow, node or unsupported action kind is an HTTP error.
    """
    result = service.execute(body)
    return ExecutionResponse(**result.as_dict())


@router.post(
    "/action/enqueue",
    response_model=EnqueueResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit(settings.ingest_rate_limit)
def enqueue_action(
    request: Request,
    body: ExecutionRequest,
    service: ExecutionService = Depends(get_execution_service),
) -> EnqueueResponse:
    """Queue an Action node for the worker pool."""
    return EnqueueResponse(job_id=service.enqueue(body))


@router.get("/status/{job_id}", response_model=JobStatusResponse, response_model_by_alias=True)
def job_status(job_id: str) -> JobStatusResponse:
    """Report the Celery state of a queued action."""
    result = AsyncResult(job_id, app=celery_app)
    payload = result.result if result.successful() and isinstance(result.result, dict) else None
    return JobStatusResponse(job_id=job_id, state=result.state, result=payload)
