"""Tests for rollup jobs and the scheduler."""

from datetime import datetime, timedelta

import pytest

from flowpulse.core.time import day_window, month_window, week_window
from flowpulse.db import DailyAggregation, MonthlyAggregation, WeeklyAggregation, WorkflowEvent
from flowpulse.domain.exceptions import ValidationError
from flowpulse.jobs.lease import LocalLease
from flowpulse.jobs.scheduler import JobState, JobType, RollupScheduler
from flowpulse.services.rollup_service import RollupService

# A Wednesday.
REFERENCE = datetime(2024, 5, 15, 1, 0)


def add_event(db_session, kind, at, *, workflow_id="W1", node_id="N1", visitor="v-1", run=None, **fields):
    db_session.add(
        WorkflowEvent(
            site_id="site-1",
            workflow_id=workflow_id,
            visitor_id=visitor,
            run_id=run,
            event=kind,
            node_id=node_id,
            node_title=fields.pop("node_title", None),
            node_type=fields.pop("node_type", None),
            timestamp=at,
            **fields,
        )
    )


def add_daily(db_session, day, triggers, completions, *, workflow_id="W1"):
    db_session.add(
        DailyAggregation(
            workflow_id=workflow_id,
            site_id="site-1",
            date=day,
            triggers=triggers,
            completions=completions,
            conversion_rate=0.0,
            total_execution_time=completions * 100,
            unique_visitors=triggers,
            unique_sessions=triggers,
            expires_at=day + timedelta(days=90),
        )
    )


class TestWindows:
    """Tests for rollup calendar windows."""

    def test_day_window(self):
        assert day_window(REFERENCE) == (datetime(2024, 5, 14), datetime(2024, 5, 15))

    def test_week_window_is_previous_sunday_to_saturday(self):
        start, end = week_window(REFERENCE)
        assert start == datetime(2024, 5, 5)
        assert start.isoweekday() == 7
        assert end == datetime(2024, 5, 12)

    def test_week_window_on_sunday(self):
        start, _ = week_window(datetime(2024, 5, 12, 2, 0))
        assert start == datetime(2024, 5, 5)

    def test_month_window_across_year(self):
        assert month_window(datetime(2024, 1, 1, 3, 0)) == (datetime(2023, 12, 1), datetime(2024, 1, 1))


class TestRollupService:
    """Tests for daily, weekly and monthly aggregation."""

    def test_daily(self, db_session, webhook_workflow):
        day = datetime(2024, 5, 14, 9, 0)
        add_event(db_session, "Trigger", day, visitor="v-1", run="r1")
        add_event(db_session, "Trigger", day, visitor="v-2", run="r2")
        add_event(
            db_session, "Action Executed", day, node_id="N2", visitor="v-1", run="r1",
            success=True, execution_time=200,
        )
        add_event(
            db_session, "Action Executed", day, node_id="N2", visitor="v-2", run="r2",
            success=False, execution_time=100,
        )
        # Outside the window.
        add_event(db_session, "Trigger", datetime(2024, 5, 15, 0, 30), visitor="v-3")
        db_session.commit()

        report = RollupService(db_session).run_daily(REFERENCE)

        assert report.status == "success"
        assert report.processed == 1
        row = db_session.query(DailyAggregation).one()
        assert row.date == datetime(2024, 5, 14)
        assert row.triggers == 2
        assert row.completions == 2
        assert row.conversion_rate == 100.0
        assert row.total_execution_time == 300
        assert row.avg_execution_time == 150.0
        assert row.unique_visitors == 2
        assert row.unique_sessions == 2
        nodes = {node["nodeId"]: node for node in row.node_performance}
        assert nodes["N1"]["triggers"] == 2
        assert nodes["N2"]["completions"] == 2
        assert nodes["N2"]["successRate"] == 50.0

    def test_daily_success_rate_ignores_unknown_outcomes(self, db_session, webhook_workflow):
        day = datetime(2024, 5, 14, 9, 0)
        add_event(db_session, "Action Executed", day, node_id="N2", run="r1", success=True)
        add_event(db_session, "Action Executed", day, node_id="N2", run="r2", success=None)
        db_session.commit()

        RollupService(db_session).run_daily(REFERENCE)

        row = db_session.query(DailyAggregation).one()
        nodes = {node["nodeId"]: node for node in row.node_performance}
        assert nodes["N2"]["completions"] == 2
        assert nodes["N2"]["successRate"] == 50.0

    def test_daily_is_idempotent(self, db_session, webhook_workflow):
        add_event(db_session, "Trigger", datetime(2024, 5, 14, 9, 0))
        db_session.commit()
        service = RollupService(db_session)

        service.run_daily(REFERENCE)
        service.run_daily(REFERENCE)

        assert db_session.query(DailyAggregation).count() == 1

    def test_daily_skips_missing_workflow(self, db_session):
        add_event(db_session, "Trigger", datetime(2024, 5, 14, 9, 0), workflow_id="gone")
        db_session.commit()

        report = RollupService(db_session).run_daily(REFERENCE)

        assert report.skipped == ["gone"]
        assert db_session.query(DailyAggregation).count() == 0

    def test_weekly(self, db_session, webhook_workflow):
        add_daily(db_session, datetime(2024, 5, 5), triggers=4, completions=2)
        add_daily(db_session, datetime(2024, 5, 11), triggers=6, completions=3)
        add_daily(db_session, datetime(2024, 5, 12), triggers=100, completions=100)
        db_session.commit()

        report = RollupService(db_session).run_weekly(REFERENCE)

        assert report.processed == 1
        row = db_session.query(WeeklyAggregation).one()
        assert row.week_start == datetime(2024, 5, 5)
        assert row.week_end < datetime(2024, 5, 12)
        assert row.week_number == datetime(2024, 5, 5).isocalendar()[1]
        assert row.total_triggers == 10
        assert row.total_completions == 5
        assert row.avg_conversion_rate == 50.0
        assert [entry["date"] for entry in row.daily_breakdown] == [
            "2024-05-05T00:00:00",
            "2024-05-11T00:00:00",
        ]

    def test_monthly(self, db_session, webhook_workflow):
        for week_start, triggers in ((datetime(2024, 4, 7), 10), (datetime(2024, 4, 28), 30)):
            db_session.add(
                WeeklyAggregation(
                    workflow_id="W1",
                    site_id="site-1",
                    week_start=week_start,
                    week_end=week_start + timedelta(days=7) - timedelta(microseconds=1),
                    week_number=week_start.isocalendar()[1],
                    year=week_start.year,
                    total_triggers=triggers,
                    total_completions=triggers // 2,
                    expires_at=week_start + timedelta(days=365),
                )
            )
        db_session.commit()

        report = RollupService(db_session).run_monthly(datetime(2024, 5, 1, 3, 0))

        assert report.processed == 1
        row = db_session.query(MonthlyAggregation).one()
        assert (row.month, row.year) == (4, 2024)
        assert row.total_triggers == 40
        assert row.total_completions == 20
        assert len(row.weekly_breakdown) == 2

    def test_cleanup_removes_old_raw_events(self, db_session, webhook_workflow):
        now = datetime(2024, 5, 15, 12, 0)
        add_event(db_session, "Trigger", now - timedelta(hours=25))
        add_event(db_session, "Trigger", now - timedelta(hours=1))
        add_daily(db_session, datetime(2024, 1, 1), triggers=1, completions=1)
        db_session.commit()

        report = RollupService(db_session).cleanup(now)

        assert report.deleted == 1
        remaining = db_session.query(WorkflowEvent).all()
        assert [event.timestamp for event in remaining] == [now - timedelta(hours=1)]
        assert db_session.query(DailyAggregation).count() == 0


class TestRollupScheduler:
    """Tests for the lease-guarded job runner."""

    def test_run_daily(self, db_session, scheduler, webhook_workflow):
        add_event(db_session, "Trigger", datetime(2024, 5, 14, 9, 0))
        db_session.commit()

        report = scheduler.run(JobType.DAILY, REFERENCE)

        assert report.ran is True
        assert report.processed == 1
        assert scheduler.state(JobType.DAILY) == JobState.IDLE

    def test_held_lease_skips_job(self, db_session):
        lease = LocalLease()
        scheduler = RollupScheduler(session_factory=lambda: db_session, lease=lease)
        token = lease.acquire("weekly")

        report = scheduler.run("weekly", REFERENCE)

        assert report.ran is False
        assert report.status == "skipped"
        lease.release("weekly", token)
        assert scheduler.run("weekly", REFERENCE).ran is True

    def test_lease_released_after_failure(self, db_session):
        lease = LocalLease()

        def broken_session():
            raise RuntimeError("database unavailable")

        scheduler = RollupScheduler(session_factory=broken_session, lease=lease)
        with pytest.raises(RuntimeError):
            scheduler.run("daily", REFERENCE)

        assert lease.acquire("daily") is not None
        assert scheduler.state("daily") == JobState.IDLE

    def test_run_manual_rejects_unknown_kind(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.run_manual("yearly")

    def test_admin_endpoint(self, client, owner_headers, webhook_workflow, db_session):
        add_event(db_session, "Trigger", datetime(2024, 5, 14, 9, 0))
        db_session.commit()

        response = client.post(
            "/api/v1/admin/aggregations/daily",
            params={"reference": REFERENCE.isoformat()},
            headers=owner_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["processed"] == 1
        assert body["data"]["windowStart"] == "2024-05-14T00:00:00"

    def test_admin_endpoint_unknown_kind(self, client, owner_headers):
        response = client.post("/api/v1/admin/aggregations/yearly", headers=owner_headers)
        assert response.status_code == 400
