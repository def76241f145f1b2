"""Workflow analytics endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from flowpulse.dependencies import get_analytics_service, get_caller_context
from flowpulse.domain import ActivityFilters, CallerContext, DateRange
from flowpulse.schemas.analytics import AnalyticsEnvelope
from flowpulse.services.analytics_service import AnalyticsService

router = APIRouter(prefix="/workflows", tags=["analytics"])


@router.get("/stats/summary", response_model=AnalyticsEnvelope)
def site_summary(
    site_id: str = Query(..., alias="siteId", min_length=1),
    service: AnalyticsService = Depends(get_analytics_service),
    context: CallerContext = Depends(get_caller_context),
) -> AnalyticsEnvelope:
    """Summary of the caller's workflows on a site with the top performers."""
    return AnalyticsEnvelope(data=service.get_site_summary(site_id, context))


@router.get("/{workflow_id}/analytics", response_model=AnalyticsEnvelope)
def workflow_analytics(
    workflow_id: str,
    service: AnalyticsService = Depends(get_analytics_service),
    context: CallerContext = Depends(get_caller_context),
) -> AnalyticsEnvelope:
    return AnalyticsEnvelope(data=service.get_workflow_analytics(workflow_id, context))


@router.get("/{workflow_id}/funnel", response_model=AnalyticsEnvelope)
def workflow_funnel(
    workflow_id: str,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    service: AnalyticsService = Depends(get_analytics_service),
    context: CallerContext = Depends(get_caller_context),
) -> AnalyticsEnvelope:
    """Funnel, drop-offs, paths and step timing from the last 24 hours of raw events."""
    date_range = DateRange(start=start_date, end=end_date)
    return AnalyticsEnvelope(data=service.get_funnel(workflow_id, context, date_range))


@router.get("/{workflow_id}/chart", response_model=AnalyticsEnvelope)
def workflow_chart(
    workflow_id: str,
    period: str = Query("30d"),
    service: AnalyticsService = Depends(get_analytics_service),
    context: CallerContext = Depends(get_caller_context),
) -> AnalyticsEnvelope:
    return AnalyticsEnvelope(data=service.get_performance_chart(workflow_id, context, period))


@router.get("/{workflow_id}/nodes", response_model=AnalyticsEnvelope)
def workflow_nodes(
    workflow_id: str,
    service: AnalyticsService = Depends(get_analytics_service),
    context: CallerContext = Depends(get_caller_context),
) -> AnalyticsEnvelope:
    return AnalyticsEnvelope(data=service.get_node_performance(workflow_id, context))


@router.get("/{workflow_id}/hourly", response_model=AnalyticsEnvelope)
def workflow_hourly(
    workflow_id: str,
    service: AnalyticsService = Depends(get_analytics_service),
    context: CallerContext = Depends(get_caller_context),
) -> AnalyticsEnvelope:
    return AnalyticsEnvelope(data=service.get_hourly_breakdown(workflow_id, context))


@router.get("/{workflow_id}/activity", response_model=AnalyticsEnvelope)
def workflow_activity(
    workflow_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: AnalyticsService = Depends(get_analytics_service),
    context: CallerContext = Depends(get_caller_context),
) -> AnalyticsEnvelope:
    filters = ActivityFilters(limit=limit, offset=offset)
    return AnalyticsEnvelope(data=service.get_activity(workflow_id, context, filters))


@router.post("/{workflow_id}/stats/reset", response_model=AnalyticsEnvelope)
def reset_workflow_stats(
    workflow_id: str,
    service: AnalyticsService = Depends(get_analytics_service),
    context: CallerContext = Depends(get_caller_context),
) -> AnalyticsEnvelope:
    """Zero the workflow's counters and node stats."""
    return AnalyticsEnvelope(data=service.reset_stats(workflow_id, context))
