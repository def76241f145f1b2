"""Operator endpoints for running rollups on demand."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from flowpulse.core.logging import get_logger
from flowpulse.dependencies import get_caller_context, get_rollup_scheduler
from flowpulse.domain import CallerContext
from flowpulse.jobs.scheduler import RollupScheduler

router = APIRouter(prefix="/admin", tags=["admin"])

logger = get_logger(__name__)


@router.post("/aggregations/{kind}")
def run_aggregation(
    kind: str,
    reference: Optional[datetime] = Query(None, description="Run as if it were this UTC time"),
    scheduler: RollupScheduler = Depends(get_rollup_scheduler),
    context: CallerContext = Depends(get_caller_context),
) -> dict:
    """Run a daily, weekly, monthly or cleanup job synchronously."""
    logger.info("Manual %s aggregation requested by %s", kind, context.user_id, extra={"job": kind})
    report = scheduler.run_manual(kind, reference)
    return {"success": report.ran, "data": report.as_dict()}
