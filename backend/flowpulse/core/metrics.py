"""Prometheus metrics for the workflow analytics service.

Metrics are exposed at the /metrics endpoint.

Metrics Categories:
- HTTP request metrics (latency, count, in progress)
- Ingestion metrics (events accepted, duplicates dropped, counter writes)
- Action metrics (executions, durations, webhook attempts)
- Rollup metrics (job runs, durations, raw events purged)
"""

from prometheus_client import Counter, Gauge, Histogram, Info

APP_INFO = Info("flowpulse_app", "Flowpulse application information")

# HTTP Request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "flowpulse_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "flowpulse_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "flowpulse_http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
)

# Ingestion metrics
EVENTS_INGESTED_TOTAL = Counter(
    "flowpulse_events_ingested_total",
    "Events accepted by ingestion",
    ["kind"],
)

EVENT_DUPLICATES_TOTAL = Counter(
    "flowpulse_event_duplicates_total",
    "Events dropped because their event id was already ingested",
)

COUNTER_WRITES_TOTAL = Counter(
    "flowpulse_counter_writes_total",
    "Merged counter deltas applied to workflows",
)

# Action metrics
ACTION_EXECUTIONS_TOTAL = Counter(
    "flowpulse_action_executions_total",
    "Server-side action executions",
    ["action", "status"],  # status: success, failure
)

ACTION_DURATION_SECONDS = Histogram(
    "flowpulse_action_duration_seconds",
    "Server-side action duration in seconds, retries included",
    ["action"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

WEBHOOK_ATTEMPTS_TOTAL = Counter(
    "flowpulse_webhook_attempts_total",
    "Individual webhook HTTP attempts",
    ["outcome"],  # success, http_error, transport_error
)

# Rollup metrics
ROLLUP_RUNS_TOTAL = Counter(
    "flowpulse_rollup_runs_total",
    "Rollup job runs",
    ["job", "status"],  # status: success, partial, skipped, failure
)

ROLLUP_DURATION_SECONDS = Histogram(
    "flowpulse_rollup_duration_seconds",
    "Rollup job duration in seconds",
    ["job"],
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 600.0),
)

ROLLUP_RUNNING = Gauge(
    "flowpulse_rollup_running",
    "Whether a rollup job is currently running in this process",
    ["job"],
)

RAW_EVENTS_DELETED_TOTAL = Counter(
    "flowpulse_raw_events_deleted_total",
    "Raw events removed by the cleanup job",
)


def set_app_info(version: str, environment: str) -> None:
    """Set application info metric."""
    APP_INFO.info({"version": version, "environment": environment})


def record_events_ingested(kind_counts: dict[str, int]) -> None:
    """Record accepted events.

    Args:
        kind_counts: Number of accepted events per event kind.
    """
    for kind, count in kind_counts.items():
        EVENTS_INGESTED_TOTAL.labels(kind=kind).inc(count)


def record_duplicates(count: int) -> None:
    if count:
        EVENT_DUPLICATES_TOTAL.inc(count)


def record_counter_write() -> None:
    COUNTER_WRITES_TOTAL.inc()


def record_action_execution(action: str, success: bool, duration_seconds: float) -> None:
    """Record one action execution including all of its retries.

    Args:
        action: Action kind value (webhook, track_event, ...).
        success: Whether the action eventually succeeded.
        duration_seconds: Wall time spent, backoff sleeps included.
    """
    status = "success" if success else "failure"
    ACTION_EXECUTIONS_TOTAL.labels(action=action, status=status).inc()
    ACTION_DURATION_SECONDS.labels(action=action).observe(duration_seconds)


def record_webhook_attempt(outcome: str) -> None:
    WEBHOOK_ATTEMPTS_TOTAL.labels(outcome=outcome).inc()


def record_rollup_run(job: str, status: str, duration_seconds: float | None = None) -> None:
    """Record a rollup job run.

    Args:
        job: Job type (daily, weekly, monthly, cleanup).
        status: Outcome (success, partial, skipped, failure).
        duration_seconds: Run duration; omitted for skipped runs.
    """
    ROLLUP_RUNS_TOTAL.labels(job=job, status=status).inc()
    if duration_seconds is not None:
        ROLLUP_DURATION_SECONDS.labels(job=job).observe(duration_seconds)


def record_raw_events_deleted(count: int) -> None:
    if count:
        RAW_EVENTS_DELETED_TOTAL.inc(count)
