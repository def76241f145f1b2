"""Rollup job runner with a per-job-type Idle -> Running -> Idle state machine."""

from __future__ import annotations

import time
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.orm import Session

from flowpulse.core.logging import get_logger
from flowpulse.core.metrics import ROLLUP_RUNNING, record_rollup_run
from flowpulse.core.time import as_naive_utc
from flowpulse.db import SessionLocal
from flowpulse.domain.exceptions import ValidationError
from flowpulse.jobs.lease import Lease, get_lease
from flowpulse.services.rollup_service import RollupReport, RollupService

logger = get_logger(__name__)


class JobType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CLEANUP = "cleanup"


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


_RUNNERS: dict[JobType, Callable[[RollupService, Optional[datetime]], RollupReport]] = {
    JobType.DAILY: RollupService.run_daily,
    JobType.WEEKLY: RollupService.run_weekly,
    JobType.MONTHLY: RollupService.run_monthly,
    JobType.CLEANUP: RollupService.cleanup,
}


class RollupScheduler:
    """Runs rollup jobs, skipping a job type whose lease is already held."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        lease: Optional[Lease] = None,
    ) -> None:
        self.session_factory = session_factory
        self.lease = lease or get_lease()
        self._states = {job: JobState.IDLE for job in JobType}

    def state(self, job: JobType | str) -> JobState:
        return self._states[JobType(job)]

    def run(self, job: JobType | str, reference: Optional[datetime] = None) -> RollupReport:
        job = JobType(job)
        token = self.lease.acquire(job.value)
        if token is None:
            logger.warning(
                "%s aggregation already running, skipping", job.value, extra={"job": job.value}
            )
            record_rollup_run(job.value, "skipped")
            return RollupReport(job=job.value, ran=False)

        self._states[job] = JobState.RUNNING
        ROLLUP_RUNNING.labels(job=job.value).set(1)
        started = time.perf_counter()
        db: Optional[Session] = None
        try:
            db = self.session_factory()
            logger.info("Starting %s aggregation", job.value, extra={"job": job.value})
            if reference is not None:
                reference = as_naive_utc(reference)
            report = _RUNNERS[job](RollupService(db), reference)
        except Exception:
            record_rollup_run(job.value, "failure", time.perf_counter() - started)
            logger.exception("%s aggregation failed", job.value, extra={"job": job.value})
            raise
        finally:
            if db is not None:
                db.close()
            self._states[job] = JobState.IDLE
            ROLLUP_RUNNING.labels(job=job.value).set(0)
            self.lease.release(job.value, token)

        record_rollup_run(job.value, report.status, time.perf_counter() - started)
        return report

    def run_manual(self, kind: str, reference: Optional[datetime] = None) -> RollupReport:
        """Operator-triggered run; unknown job kinds are a validation error."""
        try:
            job = JobType(kind)
        except ValueError as exc:
            choices = ", ".join(job.value for job in JobType)
            raise ValidationError(
                f"Unknown aggregation {kind!r}; expected one of {choices}"
            ) from exc
        return self.run(job, reference)


_scheduler: Optional[RollupScheduler] = None


def get_scheduler() -> RollupScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = RollupScheduler()
    return _scheduler
