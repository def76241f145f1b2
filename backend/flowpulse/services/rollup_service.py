"""Daily, weekly and monthly rollups plus raw-log cleanup."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from flowpulse.core.config import settings
from flowpulse.core.logging import LoggerAdapter, get_logger
from flowpulse.core.metrics import record_raw_events_deleted
from flowpulse.core.time import day_window, month_window, utcnow, week_window
from flowpulse.db import DailyAggregation, MonthlyAggregation, WeeklyAggregation, WorkflowEvent
from flowpulse.domain.events import EventKind
from flowpulse.domain.rates import percentage
from flowpulse.repositories import AggregationRepository, EventRepository, WorkflowRepository

logger = get_logger(__name__)

DAILY_RETENTION = timedelta(days=90)
WEEKLY_RETENTION = timedelta(days=365)
MONTHLY_RETENTION = timedelta(days=365)


@dataclass(slots=True)
class RollupReport:
    job: str
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    processed: int = 0
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    deleted: int = 0
    ran: bool = True

    @property
    def status(self) -> str:
        if not self.ran:
            return "skipped"
        if self.failed:
            return "partial" if self.processed else "failure"
        return "success"

    def as_dict(self) -> dict[str, Any]:
        return {
            "job": self.job,
            "status": self.status,
            "windowStart": self.window_start.isoformat() if self.window_start else None,
            "windowEnd": self.window_end.isoformat() if self.window_end else None,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "deleted": self.deleted,
        }


def summarize_day(events: Iterable[WorkflowEvent]) -> dict[str, Any]:
    """Aggregate one workflow's raw events for a single day."""
    triggers = 0
    completions = 0
    total_execution_time = 0
    visitors: set[str] = set()
    sessions: set[str] = set()
    nodes: dict[str, dict[str, Any]] = {}
    successes: dict[str, int] = {}

    for event in events:
        visitors.add(event.visitor_id)
        sessions.add(event.run_id or event.visitor_id)
        total_execution_time += event.execution_time or 0

        if event.node_id and event.node_id not in nodes:
            nodes[event.node_id] = {
                "nodeId": event.node_id,
                "nodeTitle": event.node_title,
                "triggers": 0,
                "completions": 0,
                "successRate": 0.0,
            }
        node = nodes.get(event.node_id) if event.node_id else None

        if event.event == EventKind.TRIGGER.value:
            triggers += 1
            if node is not None:
                node["triggers"] += 1
        elif event.event == EventKind.ACTION_EXECUTED.value:
            completions += 1
            if node is not None:
                node["completions"] += 1
                if event.success:
                    successes[event.node_id] = successes.get(event.node_id, 0) + 1

    for node_id, node in nodes.items():
        node["successRate"] = percentage(successes.get(node_id, 0), node["completions"])

    return {
        "triggers": triggers,
        "completions": completions,
        "conversion_rate": min(100.0, percentage(completions, triggers)),
        "total_execution_time": total_execution_time,
        "avg_execution_time": round(total_execution_time / completions, 1) if completions else 0.0,
        "unique_visitors": len(visitors),
        "unique_sessions": len(sessions),
        "node_performance": list(nodes.values()),
    }


def _sum_period(
    rows: Sequence[Any],
    *,
    triggers: str,
    completions: str,
    visitors: str,
    sessions: str,
) -> dict[str, Any]:
    total_triggers = sum(getattr(row, triggers) for row in rows)
    total_completions = sum(getattr(row, completions) for row in rows)
    total_execution_time = sum(row.total_execution_time for row in rows)
    return {
        "total_triggers": total_triggers,
        "total_completions": total_completions,
        "avg_conversion_rate": min(100.0, percentage(total_completions, total_triggers)),
        "total_execution_time": total_execution_time,
        "avg_execution_time": (
            round(total_execution_time / total_completions, 1) if total_completions else 0.0
        ),
        "total_unique_visitors": sum(getattr(row, visitors) for row in rows),
        "total_unique_sessions": sum(getattr(row, sessions) for row in rows),
    }


def summarize_week(daily_rows: Sequence[DailyAggregation]) -> dict[str, Any]:
    values = _sum_period(
        daily_rows,
        triggers="triggers",
        completions="completions",
        visitors="unique_visitors",
        sessions="unique_sessions",
    )
    values["daily_breakdown"] = [
        {
            "date": row.date.isoformat(),
            "triggers": row.triggers,
            "completions": row.completions,
            "conversionRate": row.conversion_rate,
        }
        for row in daily_rows
    ]
    return values


def summarize_month(weekly_rows: Sequence[WeeklyAggregation]) -> dict[str, Any]:
    values = _sum_period(
        weekly_rows,
        triggers="total_triggers",
        completions="total_completions",
        visitors="total_unique_visitors",
        sessions="total_unique_sessions",
    )
    values["weekly_breakdown"] = [
        {
            "weekStart": row.week_start.isoformat(),
            "weekEnd": row.week_end.isoformat(),
            "triggers": row.total_triggers,
            "completions": row.total_completions,
            "conversionRate": row.avg_conversion_rate,
        }
        for row in weekly_rows
    ]
    return values


def _group_by_workflow(rows: Sequence[Any]) -> dict[str, list[Any]]:
    grouped: dict[str, list[Any]] = {}
    for row in rows:
        grouped.setdefault(row.workflow_id, []).append(row)
    return grouped


class RollupService:
    """Computes rollups for an explicit reference time.

    Each workflow is committed on its own so one failure never aborts the batch.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.events = EventRepository(session)
        self.workflows = WorkflowRepository(session)
        self.aggregations = AggregationRepository(session)

    def run_daily(self, reference: Optional[datetime] = None) -> RollupReport:
        start, end = day_window(reference or utcnow())
        report = RollupReport(job="daily", window_start=start, window_end=end)
        log = LoggerAdapter(logger, {"job": "daily"})

        for workflow_id in self.events.distinct_workflow_ids(start, end):
            workflow = self.workflows.get_by_id(workflow_id, include_deleted=True)
            if workflow is None:
                log.warning("Workflow %s not found for aggregation", workflow_id)
                report.skipped.append(workflow_id)
                continue
            try:
                values = summarize_day(self.events.list_between(workflow_id, start, end))
                values.update(site_id=workflow.site_id, expires_at=start + DAILY_RETENTION)
                self.aggregations.upsert(
                    DailyAggregation, {"workflow_id": workflow_id, "date": start}, values
                )
                self.session.commit()
                report.processed += 1
            except Exception:
                self.session.rollback()
                log.exception("Daily aggregation failed for workflow %s", workflow_id)
                report.failed.append(workflow_id)

        log.info("Daily aggregation completed for %s workflows", report.processed)
        return report

    def run_weekly(self, reference: Optional[datetime] = None) -> RollupReport:
        start, end = week_window(reference or utcnow())
        report = RollupReport(job="weekly", window_start=start, window_end=end)
        log = LoggerAdapter(logger, {"job": "weekly"})
        iso_week = start.isocalendar()[1]

        daily_rows = self.aggregations.list_between(DailyAggregation, start, end)
        for workflow_id, rows in _group_by_workflow(daily_rows).items():
            try:
                values = summarize_week(rows)
                values.update(
                    site_id=rows[0].site_id,
                    week_end=end - timedelta(microseconds=1),
                    week_number=iso_week,
                    year=start.year,
                    expires_at=start + WEEKLY_RETENTION,
                )
                self.aggregations.upsert(
                    WeeklyAggregation, {"workflow_id": workflow_id, "week_start": start}, values
                )
                self.session.commit()
                report.processed += 1
            except Exception:
                self.session.rollback()
                log.exception("Weekly aggregation failed for workflow %s", workflow_id)
                report.failed.append(workflow_id)

        log.info("Weekly aggregation completed for %s workflows", report.processed)
        return report

    def run_monthly(self, reference: Optional[datetime] = None) -> RollupReport:
        start, end = month_window(reference or utcnow())
        report = RollupReport(job="monthly", window_start=start, window_end=end)
        log = LoggerAdapter(logger, {"job": "monthly"})

        weekly_rows = self.aggregations.list_between(WeeklyAggregation, start, end)
        for workflow_id, rows in _group_by_workflow(weekly_rows).items():
            try:
                values = summarize_month(rows)
                values.update(
                    site_id=rows[0].site_id,
                    month_start=start,
                    month_end=end - timedelta(microseconds=1),
                    expires_at=start + MONTHLY_RETENTION,
                )
                self.aggregations.upsert(
                    MonthlyAggregation,
                    {"workflow_id": workflow_id, "month": start.month, "year": start.year},
                    values,
                )
                self.session.commit()
                report.processed += 1
            except Exception:
                self.session.rollback()
                log.exception("Monthly aggregation failed for workflow %s", workflow_id)
                report.failed.append(workflow_id)

        log.info("Monthly aggregation completed for %s workflows", report.processed)
        return report

    def cleanup(self, reference: Optional[datetime] = None) -> RollupReport:
        """Delete raw events past retention and expired rollup rows."""
        now = reference or utcnow()
        cutoff = now - timedelta(hours=settings.raw_event_ttl_hours)
        report = RollupReport(job="cleanup", window_end=cutoff)

        report.deleted = self.events.delete_older_than(cutoff)
        expired = self.aggregations.delete_expired(now)
        self.session.commit()
        record_raw_events_deleted(report.deleted)

        if report.deleted or expired:
            logger.info(
                "Cleaned up %s old workflow events and %s expired aggregations",
                report.deleted,
                expired,
                extra={"job": "cleanup"},
            )
        return report
