"""Shared FastAPI dependency factories."""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from flowpulse.db import get_db
from flowpulse.domain import CallerContext
from flowpulse.domain.exceptions import UnauthorizedError
from flowpulse.jobs import RollupScheduler, get_scheduler
from flowpulse.services import (
    AnalyticsService,
    ExecutionService,
    IngestionService,
    VisitorService,
)


def get_session(db: Session = Depends(get_db)) -> Session:
    """Expose the SQLAlchemy session (alias for clarity)."""
    return db


def get_caller_context(
    x_user_id: Optional[str] = Header(default=None),
    x_user_plan: Optional[str] = Header(default=None),
) -> CallerContext:
    """Build the caller identity from headers set by the auth gateway."""
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError("Missing caller identity")
    return CallerContext(user_id=x_user_id.strip(), plan=x_user_plan)


def get_ingestion_service(session: Session = Depends(get_session)) -> IngestionService:
    return IngestionService(session)


def get_analytics_service(session: Session = Depends(get_session)) -> AnalyticsService:
    return AnalyticsService(session)


def get_execution_service(session: Session = Depends(get_session)) -> ExecutionService:
    return ExecutionService(session)


def get_visitor_service(session: Session = Depends(get_session)) -> VisitorService:
    return VisitorService(session)


def get_rollup_scheduler() -> RollupScheduler:
    return get_scheduler()
