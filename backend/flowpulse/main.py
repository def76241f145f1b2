"""Main FastAPI application."""

import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from flowpulse.api import admin, analytics, errors, events, execution, metrics, visitors
from flowpulse.core import settings, setup_logging
from flowpulse.core.logging import get_logger
from flowpulse.core.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
    set_app_info,
)
from flowpulse.db import SessionLocal
from flowpulse.domain.exceptions import DomainError

setup_logging()

logger = get_logger(__name__)

app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
)

set_app_info(version=settings.api_version, environment=settings.environment)

# Each public router owns a limiter; slowapi looks the active one up on app.state.
app.state.limiter = events.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _normalize_path(path: str) -> str:
    """Collapse ids in the path so metric labels stay low-cardinality."""
    parts = path.split("/")
    if len(parts) > 4 and parts[3] in {"workflows", "visitors"} and parts[4] != "stats":
        parts[4] = "{id}"
        if parts[3] == "visitors" and len(parts) > 5:
            parts[5] = "{id}"
    if len(parts) > 5 and parts[3] == "execution" and parts[4] == "status":
        parts[5] = "{id}"
    return "/".join("{id}" if part.isdigit() else part for part in parts)


@app.middleware("http")
async def prometheus_metrics_middleware(request: Request, call_next):
    """Collect Prometheus metrics for all HTTP requests."""
    if request.url.path == "/metrics":
        return await call_next(request)

    method = request.method
    endpoint = _normalize_path(request.url.path)

    HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()
    start_time = time.perf_counter()

    try:
        response = await call_next(request)
        status_code = str(response.status_code)
    except Exception:
        status_code = "500"
        raise
    finally:
        duration = time.perf_counter() - start_time
        HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=method, endpoint=endpoint).observe(duration)
        HTTP_REQUESTS_TOTAL.labels(method=method, endpoint=endpoint, status_code=status_code).inc()

    return response


app.include_router(metrics.router)  # Metrics at root level (not under /api/v1)
app.include_router(events.router, prefix=settings.api_prefix)
app.include_router(execution.router, prefix=settings.api_prefix)
app.include_router(analytics.router, prefix=settings.api_prefix)
app.include_router(visitors.router, prefix=settings.api_prefix)
app.include_router(admin.router, prefix=settings.api_prefix)


@app.get("/health")
async def health() -> dict:
    """Basic health check endpoint (alias for /health/live)."""
    return {"status": "healthy"}


@app.get("/health/live")
async def health_live() -> dict:
    """Liveness probe endpoint."""
    return {"status": "healthy"}


@app.get("/health/ready")
async def health_ready() -> dict:
    """Readiness check endpoint with dependency status.

    Database and Redis are critical: either failing returns 503. Celery worker
    status is informational because ingestion and analytics keep working
    without the action queue.
    """
    import redis as redis_client

    from flowpulse.celery_app import celery_app

    status = {
        "database": {"status": "healthy"},
        "redis": {"status": "healthy"},
        "celery": {"status": "unknown"},
    }
    overall_healthy = True

    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
    except Exception as e:
        status["database"] = {"status": "unhealthy", "error": str(e)}
        overall_healthy = False

    try:
        r = redis_client.from_url(settings.redis_url)
        r.ping()
        r.close()
    except Exception as e:
        status["redis"] = {"status": "unhealthy", "error": str(e)}
        overall_healthy = False

    try:
        inspect = celery_app.control.inspect(timeout=2.0)
        ping_response = inspect.ping()
        if ping_response:
            status["celery"] = {
                "status": "healthy",
                "workers": len(ping_response),
                "worker_names": list(ping_response.keys()),
            }
        else:
            status["celery"] = {
                "status": "degraded",
                "workers": 0,
                "message": "No workers available",
            }
    except Exception as e:
        status["celery"] = {"status": "unhealthy", "error": str(e)}

    result = {
        "status": "healthy" if overall_healthy else "unhealthy",
        "dependencies": status,
    }

    if overall_healthy:
        return result
    return JSONResponse(status_code=503, content=result)


@app.get("/")
async def root() -> dict:
    return {
        "message": "Flowpulse Workflow Analytics API",
        "version": settings.api_version,
        "docs": "/docs",
    }


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    """Translate domain errors to HTTP responses globally."""
    http_exc = errors.to_http(exc)
    return JSONResponse(
        status_code=http_exc.status_code,
        content={"detail": http_exc.detail},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters are client errors (400)."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return JSONResponse(status_code=400, content={"detail": "; ".join(messages)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
