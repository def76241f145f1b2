"""Read-side analytics for workflow owners."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from flowpulse.core.config import settings
from flowpulse.core.logging import get_logger
from flowpulse.core.time import as_naive_utc, start_of_day, utcnow
from flowpulse.db import DailyAggregation, Workflow, WorkflowEvent
from flowpulse.domain import ActivityFilters, CallerContext, DateRange
from flowpulse.domain.analytics import CHART_PERIODS
from flowpulse.domain.events import FUNNEL_KINDS, EventKind
from flowpulse.domain.exceptions import NotFoundError, ValidationError
from flowpulse.domain.rates import completion_rate, format_percent, percentage
from flowpulse.repositories import AggregationRepository, EventRepository, WorkflowRepository
from flowpulse.services.counter_service import CounterService
from flowpulse.services.funnel import reconstruct_funnel
from flowpulse.services.rollup_service import summarize_day

logger = get_logger(__name__)

TOP_PERFORMERS = 5


def _node_meta(workflow: Workflow, node_id: str) -> tuple[str, str]:
    node = workflow.find_node(node_id) or {}
    data = node.get("data") or {}
    return data.get("title") or "Unknown Node", data.get("type") or "Unknown"


def summarize_by_node_type(node_stats: dict[str, dict[str, Any]]) -> dict[str, Any]:
    summary = {
        "triggers": {"count": 0, "executions": 0},
        "conditions": {"count": 0, "passed": 0, "failed": 0},
        "actions": {"count": 0, "completions": 0, "failures": 0, "skipped": 0},
    }
    for stats in node_stats.values():
        node_type = stats["nodeType"]
        if node_type == "Trigger":
            summary["triggers"]["count"] += 1
            summary["triggers"]["executions"] += stats["triggers"]
        elif node_type == "Condition":
            summary["conditions"]["count"] += 1
            summary["conditions"]["passed"] += stats["conditionsPassed"]
            summary["conditions"]["failed"] += stats["conditionsFailed"]
        elif node_type == "Action":
            summary["actions"]["count"] += 1
            summary["actions"]["completions"] += stats["completions"]
            summary["actions"]["failures"] += stats["failures"]
            summary["actions"]["skipped"] += stats["skipped"]
    return summary


def generate_insights(rate: float, node_stats: dict[str, dict[str, Any]]) -> list[dict[str, str]]:
    insights: list[dict[str, str]] = []
    if rate > 80:
        insights.append(
            {
                "type": "success",
                "message": "Excellent completion rate! Your workflow is performing very well.",
            }
        )
    elif rate > 50:
        insights.append(
            {
                "type": "info",
                "message": "Good completion rate. Consider optimizing conditions for better performance.",
            }
        )
    elif rate > 0:
        insights.append(
            {
                "type": "warning",
                "message": "Low completion rate. Review your workflow conditions and triggers.",
            }
        )

    for stats in node_stats.values():
        if stats["nodeType"] == "Action" and stats["skipped"] > stats["completions"]:
            insights.append(
                {
                    "type": "warning",
                    "message": f'Action "{stats["nodeTitle"]}" is being skipped frequently '
                    "due to frequency limits.",
                }
            )
        failed_more = stats["conditionsFailed"] > stats["conditionsPassed"]
        if stats["nodeType"] == "Condition" and failed_more:
            insights.append(
                {
                    "type": "info",
                    "message": f'Condition "{stats["nodeTitle"]}" fails more often than it passes. '
                    "Consider adjusting criteria.",
                }
            )
    return insights


def _event_dict(event: WorkflowEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "event": event.event,
        "visitorId": event.visitor_id,
        "runId": event.run_id,
        "nodeId": event.node_id,
        "nodeTitle": event.node_title,
        "nodeType": event.node_type,
        "detail": event.detail,
        "stepOrder": event.step_order,
        "executionTime": event.execution_time,
        "success": event.success,
        "timestamp": event.timestamp.isoformat(),
    }


class AnalyticsService:
    """Analytics reads; every entry point checks workflow ownership."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.workflows = WorkflowRepository(session)
        self.events = EventRepository(session)
        self.aggregations = AggregationRepository(session)
        self.counters = CounterService(session)

    # ------------------------------------------------------------------
    # Helpers

    def _get_workflow(self, workflow_id: str, caller: CallerContext) -> Workflow:
        workflow = self.workflows.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        caller.assert_owns(workflow)
        return workflow

    def _retention_start(self, now: datetime) -> datetime:
        return now - timedelta(hours=settings.raw_event_ttl_hours)

    def _node_stats(self, workflow: Workflow) -> dict[str, dict[str, Any]]:
        result: dict[str, dict[str, Any]] = {}
        for row in self.workflows.node_stats(workflow.id):
            title, node_type = _node_meta(workflow, row.node_id)
            result[row.node_id] = {
                "triggers": row.triggers,
                "completions": row.completions,
                "failures": row.failures,
                "skipped": row.skipped,
                "conditionsPassed": row.conditions_passed,
                "conditionsFailed": row.conditions_failed,
                "nodeTitle": title,
                "nodeType": node_type,
            }
        return result

    # ------------------------------------------------------------------
    # Queries

    def get_workflow_analytics(self, workflow_id: str, caller: CallerContext) -> dict[str, Any]:
        workflow = self._get_workflow(workflow_id, caller)
        node_stats = self._node_stats(workflow)
        rate = completion_rate(workflow.total_triggers, workflow.total_completions)
        return {
            "workflowId": workflow.id,
            "totalTriggers": workflow.total_triggers,
            "totalCompletions": workflow.total_completions,
            "totalRuns": workflow.total_runs,
            "successfulRuns": workflow.successful_runs,
            "failedRuns": workflow.failed_runs,
            "completionRate": format_percent(rate),
            "successRate": format_percent(
                min(100.0, percentage(workflow.successful_runs, workflow.total_runs))
            ),
            "lastTriggered": (
                workflow.last_triggered_at.isoformat() if workflow.last_triggered_at else None
            ),
            "nodeStats": node_stats,
            "nodeTypeSummary": summarize_by_node_type(node_stats),
            "insights": generate_insights(rate, node_stats),
        }

    def get_funnel(
        self,
        workflow_id: str,
        caller: CallerContext,
        date_range: Optional[DateRange] = None,
    ) -> dict[str, Any]:
        """Funnel over the raw log, clipped to its retention window."""
        workflow = self._get_workflow(workflow_id, caller)
        now = utcnow()
        start = self._retention_start(now)
        end: Optional[datetime] = None
        if date_range is not None:
            requested_start = as_naive_utc(date_range.start) if date_range.start else None
            if date_range.end is not None:
                end = as_naive_utc(date_range.end)
            if requested_start is not None and end is not None and end <= requested_start:
                raise ValidationError("endDate must be after startDate")
            if requested_start is not None:
                start = max(start, requested_start)

        # Ranges ending before the retention window have no raw events left.
        if end is not None and end <= start:
            events = []
        else:
            events = self.events.list_between(
                workflow.id, start, end, kinds=[kind.value for kind in FUNNEL_KINDS]
            )
        report = reconstruct_funnel(events)
        report["workflowId"] = workflow.id
        report["window"] = {"start": start.isoformat(), "end": (end or now).isoformat()}
        return report

    def get_performance_chart(
        self, workflow_id: str, caller: CallerContext, period: str = "30d"
    ) -> dict[str, Any]:
        """One point per day from the daily rollups plus a live point for today.

        Past days without a rollup row are reported as zero.
        """
        if period not in CHART_PERIODS:
            raise ValidationError(f"period must be one of {', '.join(CHART_PERIODS)}")
        workflow = self._get_workflow(workflow_id, caller)
        today = start_of_day(utcnow())
        start = today - timedelta(days=CHART_PERIODS[period])
        rows = {
            row.date: row
            for row in self.aggregations.list_between(
                DailyAggregation, start, today, workflow_id=workflow.id
            )
        }
        points = []
        day = start
        while day < today:
            row = rows.get(day)
            points.append(
                {
                    "date": day.date().isoformat(),
                    "triggers": row.triggers if row else 0,
                    "completions": row.completions if row else 0,
                    "conversionRate": row.conversion_rate if row else 0.0,
                    "uniqueVisitors": row.unique_visitors if row else 0,
                }
            )
            day += timedelta(days=1)

        # Today has no rollup yet; summarise the live raw log.
        live = summarize_day(
            self.events.list_between(workflow.id, max(today, self._retention_start(utcnow())))
        )
        points.append(
            {
                "date": today.date().isoformat(),
                "triggers": live["triggers"],
                "completions": live["completions"],
                "conversionRate": live["conversion_rate"],
                "uniqueVisitors": live["unique_visitors"],
                "live": True,
            }
        )
        return {"workflowId": workflow.id, "period": period, "data": points}

    def get_node_performance(self, workflow_id: str, caller: CallerContext) -> list[dict[str, Any]]:
        workflow = self._get_workflow(workflow_id, caller)
        performance = []
        for node_id, stats in self._node_stats(workflow).items():
            executions = stats["completions"] + stats["failures"] + stats["skipped"]
            performance.append(
                {
                    "nodeId": node_id,
                    **stats,
                    "totalExecutions": executions,
                    "successRate": format_percent(percentage(stats["completions"], executions)),
                }
            )
        performance.sort(key=lambda item: item["totalExecutions"], reverse=True)
        return performance

    def get_hourly_breakdown(self, workflow_id: str, caller: CallerContext) -> list[dict[str, Any]]:
        """Raw-log activity for the last 24 hours bucketed by hour."""
        workflow = self._get_workflow(workflow_id, caller)
        now = utcnow()
        current_hour = now.replace(minute=0, second=0, microsecond=0)
        first_hour = current_hour - timedelta(hours=23)
        buckets = {
            first_hour + timedelta(hours=offset): {"triggers": 0, "completions": 0, "events": 0}
            for offset in range(24)
        }
        start = max(first_hour, self._retention_start(now))
        for event in self.events.list_between(workflow.id, start):
            bucket = buckets.get(event.timestamp.replace(minute=0, second=0, microsecond=0))
            if bucket is None:
                continue
            bucket["events"] += 1
            if event.event == EventKind.TRIGGER.value:
                bucket["triggers"] += 1
            elif event.event == EventKind.ACTION_EXECUTED.value:
                bucket["completions"] += 1
        return [{"hour": hour.isoformat(), **counts} for hour, counts in sorted(buckets.items())]

    def get_activity(
        self,
        workflow_id: str,
        caller: CallerContext,
        filters: ActivityFilters,
    ) -> dict[str, Any]:
        workflow = self._get_workflow(workflow_id, caller)
        since = self._retention_start(utcnow())
        events = self.events.recent(workflow.id, since, limit=filters.limit, offset=filters.offset)
        return {
            "workflowId": workflow.id,
            "total": self.events.count_recent(workflow.id, since),
            "limit": filters.limit,
            "offset": filters.offset,
            "activities": [_event_dict(event) for event in events],
        }

    def get_site_summary(self, site_id: str, caller: CallerContext) -> dict[str, Any]:
        workflows = self.workflows.list_for_site(
            site_id, user_id=None if caller.is_system else caller.user_id
        )
        total_triggers = sum(workflow.total_triggers for workflow in workflows)
        total_completions = sum(workflow.total_completions for workflow in workflows)
        ranked = sorted(workflows, key=lambda workflow: workflow.total_completions, reverse=True)
        return {
            "siteId": site_id,
            "totalWorkflows": len(workflows),
            "activeWorkflows": sum(1 for workflow in workflows if workflow.status == "Active"),
            "totalTriggers": total_triggers,
            "totalCompletions": total_completions,
            "completionRate": format_percent(completion_rate(total_triggers, total_completions)),
            "topPerformers": [
                {
                    "workflowId": workflow.id,
                    "name": workflow.name,
                    "status": workflow.status,
                    "totalTriggers": workflow.total_triggers,
                    "totalCompletions": workflow.total_completions,
                    "completionRate": format_percent(
                        completion_rate(workflow.total_triggers, workflow.total_completions)
                    ),
                }
                for workflow in ranked[:TOP_PERFORMERS]
            ],
        }

    def reset_stats(self, workflow_id: str, caller: CallerContext) -> dict[str, Any]:
        workflow = self._get_workflow(workflow_id, caller)
        self.counters.reset(workflow.id)
        return {"workflowId": workflow.id, "reset": True}
