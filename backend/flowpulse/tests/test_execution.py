"""Tests for server-side action execution."""

import hashlib
import hmac
import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from flowpulse.core.retry import RetryPolicy
from flowpulse.db import WorkflowEvent
from flowpulse.dependencies import get_execution_service
from flowpulse.domain.exceptions import NotFoundError, UnsupportedActionError, ValidationError
from flowpulse.main import app
from flowpulse.repositories import VisitorTagRepository, WorkflowRepository
from flowpulse.schemas.execution import ExecutionRequest
from flowpulse.services.actions import SIGNATURE_HEADER
from flowpulse.services.execution_service import EXECUTE_ACTION_TASK, ExecutionService

SECRET = "s3cret"


class WebhookTarget:
    """Mock transport handler answering with a scripted list of status codes."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, text="ok" if status < 300 else "boom")


def _request(workflow_id="W1", node_id="N2", **fields):
    payload = {
        "workflowId": workflow_id,
        "nodeId": node_id,
        "siteId": "site-1",
        "visitorId": "v-1",
        "runId": "run-1",
        "identifiedUser": {"email": "ada@example.com"},
    }
    payload.update(fields)
    return ExecutionRequest.model_validate(payload)


def _service(db_session, target, sleeps, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(target))
    return ExecutionService(
        db_session,
        http_client=client,
        sleep=sleeps.append,
        signing_secret=kwargs.pop("signing_secret", SECRET),
        **kwargs,
    )


def _node_stats(db_session, workflow_id, node_id):
    for row in WorkflowRepository(db_session).node_stats(workflow_id):
        if row.node_id == node_id:
            return row
    return None


class TestWebhookExecution:
    """Tests for the webhook action."""

    def test_scenario_c(self, db_session, webhook_workflow):
        """Three 500s then a 200: success after four attempts with growing backoff."""
        target = WebhookTarget(500, 500, 500, 200)
        sleeps = []

        result = _service(db_session, target, sleeps).execute(_request())

        assert result.success is True
        assert result.attempts == 4
        assert len(target.requests) == 4
        assert len(sleeps) == 3
        for delay, expected in zip(sleeps, (1.0, 2.0, 4.0)):
            assert expected * 0.85 <= delay <= expected * 1.15

    def test_payload_headers_and_signature(self, db_session, webhook_workflow):
        target = WebhookTarget(200)

        _service(db_session, target, []).execute(_request())

        request = target.requests[0]
        body = json.loads(request.content)
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.com/flow"
        assert body["visitorId"] == "v-1"
        assert body["email"] == "ada@example.com"
        assert body["site"] == "site-1"
        assert request.headers["X-Visitor"] == "v-1"
        expected = hmac.new(SECRET.encode(), request.content, hashlib.sha256).hexdigest()
        assert request.headers[SIGNATURE_HEADER] == f"sha256={expected}"

    def test_no_signature_without_secret(self, db_session, webhook_workflow):
        target = WebhookTarget(200)

        _service(db_session, target, [], signing_secret="").execute(_request())

        assert SIGNATURE_HEADER not in target.requests[0].headers

    def test_success_updates_counters_and_raw_log(self, db_session, webhook_workflow):
        _service(db_session, WebhookTarget(200), []).execute(_request())

        db_session.refresh(webhook_workflow)
        assert webhook_workflow.total_completions == 1
        assert _node_stats(db_session, "W1", "N2").completions == 1
        event = db_session.query(WorkflowEvent).one()
        assert event.event == "Action Executed"
        assert event.success is True
        assert event.run_id == "run-1"
        assert event.detail["attempts"] == 1

    def test_exhausted_retries_report_failure(self, db_session, webhook_workflow):
        target = WebhookTarget(500)
        service = _service(db_session, target, [], retry_policy=RetryPolicy(max_attempts=2))

        result = service.execute(_request())

        assert result.success is False
        assert "HTTP 500" in result.error
        assert len(target.requests) == 2
        db_session.refresh(webhook_workflow)
        assert webhook_workflow.total_completions == 1
        assert _node_stats(db_session, "W1", "N2").failures == 1
        event = db_session.query(WorkflowEvent).one()
        assert event.success is False
        assert "HTTP 500" in event.detail["error"]

    def test_failures_not_counted_when_disabled(self, db_session, webhook_workflow):
        service = _service(db_session, WebhookTarget(500), [], retry_policy=RetryPolicy(max_attempts=1))
        service.ingestion.count_failed_as_completion = False

        service.execute(_request())

        db_session.refresh(webhook_workflow)
        assert webhook_workflow.total_completions == 0
        assert _node_stats(db_session, "W1", "N2").failures == 1

    def test_transport_error_is_retried(self, db_session, webhook_workflow):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        service = ExecutionService(db_session, http_client=client, sleep=lambda _: None)

        assert service.execute(_request()).success is True
        assert len(calls) == 2


class TestOtherActions:
    """Tests for non-network actions and node resolution."""

    def test_track_event_emits_custom_event(self, db_session, track_event_workflow):
        result = _service(db_session, WebhookTarget(200), []).execute(
            _request(workflow_id="W2", node_id="A1")
        )

        assert result.success is True
        assert result.result == {"eventName": "signup_started", "eventData": {"plan": "pro"}}
        custom = db_session.query(WorkflowEvent).filter(WorkflowEvent.event == "Custom Event").one()
        assert custom.detail["eventName"] == "signup_started"
        assert custom.run_id == "run-1"
        assert custom.workflow_id == "W2"

    def test_add_tag(self, db_session, tag_workflow):
        result = _service(db_session, WebhookTarget(200), []).execute(
            _request(workflow_id="W3", node_id="A1")
        )

        assert result.success is True
        assert VisitorTagRepository(db_session).list_tags("site-1", "v-1") == ["engaged"]

    def test_unsupported_action(self, db_session, tag_workflow):
        with pytest.raises(UnsupportedActionError):
            _service(db_session, WebhookTarget(200), []).execute(
                _request(workflow_id="W3", node_id="A2")
            )

    def test_trigger_node_is_not_an_action(self, db_session, webhook_workflow):
        with pytest.raises(UnsupportedActionError):
            _service(db_session, WebhookTarget(200), []).execute(_request(node_id="N1"))

    def test_unknown_node(self, db_session, webhook_workflow):
        with pytest.raises(NotFoundError):
            _service(db_session, WebhookTarget(200), []).execute(_request(node_id="missing"))

    def test_corrupt_graph_is_rejected(self, db_session, webhook_workflow):
        webhook_workflow.edges = [{"id": "dangling", "source": "N2", "target": "N404"}]
        db_session.commit()
        target = WebhookTarget(200)

        with pytest.raises(ValidationError, match="invalid graph"):
            _service(db_session, target, []).execute(_request())

        assert target.requests == []

    def test_deleted_workflow_is_not_found(self, db_session, webhook_workflow):
        webhook_workflow.is_deleted = True
        db_session.commit()

        with pytest.raises(NotFoundError):
            _service(db_session, WebhookTarget(200), []).execute(_request())


class TestExecutionAPI:
    """Tests for the execution endpoints."""

    def test_execute_action(self, client, db_session, webhook_workflow):
        target = WebhookTarget(200)
        app.dependency_overrides[get_execution_service] = lambda: _service(db_session, target, [])

        response = client.post("/api/v1/execution/action", json=_request().model_dump(by_alias=True))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["result"]["statusCode"] == 200
        assert body["message"] == "Webhook action executed successfully"

    def test_execute_failure_is_200_with_error(self, client, db_session, webhook_workflow):
        service = _service(db_session, WebhookTarget(502), [], retry_policy=RetryPolicy(max_attempts=1))
        app.dependency_overrides[get_execution_service] = lambda: service

        response = client.post("/api/v1/execution/action", json=_request().model_dump(by_alias=True))

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert "HTTP 502" in response.json()["error"]

    def test_execute_unknown_workflow(self, client):
        response = client.post(
            "/api/v1/execution/action",
            json=_request(workflow_id="nope").model_dump(by_alias=True),
        )
        assert response.status_code == 404

    def test_execute_missing_fields(self, client):
        response = client.post("/api/v1/execution/action", json={"workflowId": "W1"})
        assert response.status_code == 400

    def test_enqueue(self, client, webhook_workflow):
        with patch("flowpulse.services.execution_service.celery_app") as mock_celery:
            mock_celery.send_task.return_value = MagicMock(id="job-123")

            response = client.post(
                "/api/v1/execution/action/enqueue", json=_request().model_dump(by_alias=True)
            )

        assert response.status_code == 202
        assert response.json() == {"success": True, "jobId": "job-123"}
        args, kwargs = mock_celery.send_task.call_args
        assert args[0] == EXECUTE_ACTION_TASK
        assert kwargs["args"][0]["workflowId"] == "W1"
        assert kwargs["queue"] == "workflow-actions"

    def test_job_status(self, client):
        with patch("flowpulse.api.execution.AsyncResult") as mock_result:
            mock_result.return_value.state = "SUCCESS"
            mock_result.return_value.successful.return_value = True
            mock_result.return_value.result = {"success": True, "message": "done"}

            response = client.get("/api/v1/execution/status/job-123")

        assert response.status_code == 200
        assert response.json() == {
            "jobId": "job-123",
            "state": "SUCCESS",
            "result": {"success": True, "message": "done"},
        }
