"""Celery application configuration."""

from __future__ import annotations

from urllib.parse import urlparse, urlunparse

from celery import Celery
from celery.schedules import crontab

from flowpulse.core.config import settings


def _ensure_rediss_ssl(url: str, environment: str = "production") -> str:
    """If using rediss:// without ssl_cert_reqs, add a default based on environment."""
    if not url or not url.startswith("rediss://"):
        return url
    parsed = urlparse(url)
    if parsed.query and "ssl_cert_reqs" in parsed.query:
        return url
    cert_reqs = (
        "CERT_NONE" if environment.lower() in ("development", "dev", "local") else "CERT_REQUIRED"
    )
    query = (
        f"ssl_cert_reqs={cert_reqs}"
        if parsed.query == ""
        else f"{parsed.query}&ssl_cert_reqs={cert_reqs}"
    )
    return urlunparse(parsed._replace(query=query))


environment = getattr(settings, "environment", "production")
broker_url = _ensure_rediss_ssl(settings.celery_broker_url, environment)
result_backend = _ensure_rediss_ssl(settings.celery_result_backend, environment)

celery_app = Celery(
    "flowpulse",
    broker=broker_url,
    backend=result_backend,
    include=[
        "flowpulse.jobs.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.workflow_queue_concurrency,
    task_routes={
        "execute_action_job": {"queue": settings.workflow_queue_name},
        "rollup_*": {"queue": "rollups"},
    },
    beat_schedule={
        "rollup-daily": {
            "task": "rollup_daily",
            "schedule": crontab(hour=1, minute=0),
        },
        "rollup-weekly": {
            "task": "rollup_weekly",
            "schedule": crontab(hour=2, minute=0, day_of_week=1),
        },
        "rollup-monthly": {
            "task": "rollup_monthly",
            "schedule": crontab(hour=3, minute=0, day_of_month=1),
        },
        "rollup-cleanup": {
            "task": "rollup_cleanup",
            "schedule": crontab(minute=0),
        },
    },
)
