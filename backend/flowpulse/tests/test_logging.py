"""Tests for structured logging."""

import json
import logging

from flowpulse.core.logging import ConsoleFormatter, JSONFormatter, LoggerAdapter, get_logger


def _record(msg="Rollup finished", **extra):
    record = logging.LogRecord(
        name="flowpulse.jobs",
        level=logging.INFO,
        pathname="/srv/flowpulse/jobs/scheduler.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for JSON log output."""

    def test_basic_fields(self):
        parsed = json.loads(JSONFormatter().format(_record()))

        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "flowpulse.jobs"
        assert parsed["message"] == "Rollup finished"
        assert parsed["line"] == 42
        assert "timestamp" in parsed
        assert "extra" not in parsed

    def test_extra_context(self):
        parsed = json.loads(JSONFormatter().format(_record(workflow_id="W1", job="daily")))

        assert parsed["extra"] == {"workflow_id": "W1", "job": "daily"}

    def test_unserializable_extra_is_stringified(self):
        parsed = json.loads(JSONFormatter().format(_record(payload=object())))
        assert parsed["extra"]["payload"].startswith("<object object")

    def test_exception(self):
        try:
            raise ValueError("bad delta")
        except ValueError:
            import sys

            record = _record()
            record.exc_info = sys.exc_info()

        parsed = json.loads(JSONFormatter().format(record))
        assert parsed["exception"]["type"] == "ValueError"
        assert parsed["exception"]["message"] == "bad delta"


class TestConsoleFormatter:
    """Tests for development console output."""

    def test_includes_workflow(self):
        output = ConsoleFormatter().format(_record(workflow_id="W1"))

        assert "Rollup finished" in output
        assert "[workflow=W1]" in output


class TestLoggerAdapter:
    """Tests for contextual logging."""

    def test_adapter_adds_context(self, caplog):
        adapter = LoggerAdapter(get_logger("flowpulse.test"), {"job": "weekly"})

        with caplog.at_level(logging.INFO, logger="flowpulse.test"):
            adapter.info("Starting", extra={"workflow_id": "W1"})

        record = caplog.records[-1]
        assert record.job == "weekly"
        assert record.workflow_id == "W1"
