"""Celery tasks for rollups and queued action execution."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from celery import shared_task

from flowpulse.core.config import settings
from flowpulse.core.logging import get_logger
from flowpulse.db import SessionLocal
from flowpulse.jobs.scheduler import JobType, get_scheduler
from flowpulse.schemas.execution import ExecutionRequest
from flowpulse.services.execution_service import EXECUTE_ACTION_TASK, ExecutionService

logger = get_logger(__name__)


def _reference(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def run_rollup(job: JobType, reference: Optional[str] = None) -> dict:
    return get_scheduler().run(job, _reference(reference)).as_dict()


@shared_task(name="rollup_daily")
def rollup_daily(reference: Optional[str] = None) -> dict:
    """Aggregate yesterday's raw events into daily rows."""
    return run_rollup(JobType.DAILY, reference)


@shared_task(name="rollup_weekly")
def rollup_weekly(reference: Optional[str] = None) -> dict:
    """Sum last week's daily rows into weekly rows."""
    return run_rollup(JobType.WEEKLY, reference)


@shared_task(name="rollup_monthly")
def rollup_monthly(reference: Optional[str] = None) -> dict:
    """Sum last month's weekly rows into monthly rows."""
    return run_rollup(JobType.MONTHLY, reference)


@shared_task(name="rollup_cleanup")
def rollup_cleanup(reference: Optional[str] = None) -> dict:
    """Purge raw events past retention."""
    return run_rollup(JobType.CLEANUP, reference)


@shared_task(
    name=EXECUTE_ACTION_TASK,
    acks_late=True,
    time_limit=settings.workflow_job_timeout_seconds,
    soft_time_limit=max(1, settings.workflow_job_timeout_seconds - 5),
)
def execute_action_job(payload: dict) -> dict:
    """Execute a queued action.

    The task is not re-queued on failure; ``ExecutionService`` already applies
    the retry policy around the handler.
    """
    request = ExecutionRequest.model_validate(payload)
    db = SessionLocal()
    try:
        result = ExecutionService(db).execute(request)
    finally:
        db.close()
    if not result.success:
        logger.warning(
            "Queued action failed: %s",
            result.error,
            extra={"workflow_id": request.workflow_id},
        )
    return result.as_dict()
