"""Structured logging for the API, Celery workers and the rollup scheduler."""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

from .config import settings

# Attributes every LogRecord carries; anything else was passed through ``extra``.
_RECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
    }
)


def _record_extra(record: logging.LogRecord) -> dict[str, Any]:
    extra: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS or key.startswith("_"):
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        extra[key] = value
    return extra


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents.

    Context passed through ``extra`` (``workflow_id``, ``job``, ``site_id`` ...)
    is collected under the ``extra`` key so log shippers can index it.
    """

    def __init__(self, include_extra: bool = True) -> None:
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process": {"id": record.process, "name": record.processName},
            "thread": {"id": record.thread, "name": record.threadName},
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if record.stack_info:
            entry["stack_info"] = record.stack_info

        if self.include_extra:
            extra = _record_extra(record)
            if extra:
                entry["extra"] = extra

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line formatter for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S"
        )
        formatted = (
            f"{timestamp} - {color}{record.levelname:8}{self.RESET} - "
            f"{record.name} - {record.getMessage()}"
        )

        workflow_id = getattr(record, "workflow_id", None)
        if workflow_id:
            formatted += f" [workflow={workflow_id}]"

        if record.exc_info:
            formatted += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return formatted


def _select_formatter() -> logging.Formatter:
    log_format = (settings.log_format or "").lower()
    if log_format == "json":
        return JSONFormatter()
    if log_format == "console":
        return ConsoleFormatter()
    if settings.environment.lower() == "production":
        return JSONFormatter()
    return ConsoleFormatter()


def setup_logging() -> None:
    """Configure the root logger.

    Production uses JSON output, development a coloured console format.
    ``LOG_FORMAT=json`` or ``LOG_FORMAT=console`` overrides the choice.
    """
    log_level = getattr(logging, settings.log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_select_formatter())
    handler.setLevel(log_level)
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return the named logger, typically ``get_logger(__name__)``."""
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps fixed context onto every record.

    Example:
        >>> logger = LoggerAdapter(get_logger(__name__), {"job": "daily"})
        >>> logger.info("Rollup started")
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs
