"""Action execution: resolve the node, run its handler under the retry policy,
then record the attempt in the raw log and counters."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from flowpulse.celery_app import celery_app
from flowpulse.core.config import settings
from flowpulse.core.logging import LoggerAdapter, get_logger
from flowpulse.core.metrics import record_action_execution
from flowpulse.core.retry import RetryExhaustedError, RetryPolicy, call_with_retry
from flowpulse.core.time import utcnow
from flowpulse.domain.actions import ActionKind, action_kind_for
from flowpulse.domain.events import EventKind
from flowpulse.domain.exceptions import (
    ActionError,
    NotFoundError,
    UnsupportedActionError,
    ValidationError,
)
from flowpulse.repositories import WorkflowRepository
from flowpulse.schemas.events import TrackedEvent
from flowpulse.schemas.execution import ExecutionRequest
from flowpulse.services.actions import HANDLERS, ActionContext
from flowpulse.services.ingestion_service import IngestionService
from flowpulse.services.visitor_service import VisitorService

logger = get_logger(__name__)

EXECUTE_ACTION_TASK = "execute_action_job"

# Only network-bound actions are worth retrying.
_RETRIED_KINDS = {ActionKind.WEBHOOK}


@dataclass(slots=True)
class ExecutionResult:
    success: bool
    message: str
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int = 1

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.success:
            payload["result"] = self.result
        else:
            payload["error"] = self.error
        return payload


class ExecutionService:
    """Executes server-side actions for workflow nodes."""

    def __init__(
        self,
        session: Session,
        *,
        http_client: Optional[httpx.Client] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep=time.sleep,
        signing_secret: Optional[str] = None,
    ) -> None:
        self.session = session
        self.workflows = WorkflowRepository(session)
        self.ingestion = IngestionService(session)
        self.visitors = VisitorService(session)
        self.http_client = http_client
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.sleep = sleep
        self.signing_secret = (
            signing_secret if signing_secret is not None else settings.webhook_hmac_secret
        )

    def _resolve(self, request: ExecutionRequest) -> tuple[Any, dict[str, Any], ActionKind]:
        workflow = self.workflows.get_by_id(request.workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {request.workflow_id} not found")
        graph_errors = workflow.graph_errors()
        if graph_errors:
            logger.error(
                "Refusing to execute on corrupt workflow graph: %s",
                "; ".join(graph_errors),
                extra={"workflow_id": workflow.id},
            )
            raise ValidationError(f"Workflow {workflow.id} has an invalid graph")
        node = workflow.find_node(request.node_id)
        if node is None:
            raise NotFoundError(f"Node {request.node_id} not found in workflow {workflow.id}")
        kind = action_kind_for(node)
        if kind is None:
            raise UnsupportedActionError(
                f"Node {request.node_id} is not a supported server-side action"
            )
        return workflow, node, kind

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run the node's action once, with retries for network-bound kinds.

        Not-found and unsupported nodes raise; handler failures are reported
        as ``success=False`` after the attempt has been recorded.
        """
        workflow, node, kind = self._resolve(request)
        run_id = request.run_id or uuid.uuid4().hex
        log = LoggerAdapter(logger, {"workflow_id": workflow.id, "action": kind.value})
        policy = self.retry_policy if kind in _RETRIED_KINDS else RetryPolicy(max_attempts=1)

        owns_client = self.http_client is None
        http = self.http_client or httpx.Client(timeout=settings.webhook_timeout_seconds)
        ctx = ActionContext(
            workflow=workflow,
            node=node,
            request=request,
            run_id=run_id,
            timestamp=utcnow(),
            http=http,
            timeout=settings.webhook_timeout_seconds,
            signing_secret=self.signing_secret,
            emit_event=self.ingestion.ingest,
            tags=self.visitors,
        )

        attempts = 0

        def attempt() -> dict[str, Any]:
            nonlocal attempts
            attempts += 1
            return HANDLERS[kind](ctx)

        started = time.perf_counter()
        try:
            result = call_with_retry(attempt, policy, retry_on=(ActionError,), sleep=self.sleep)
            outcome = ExecutionResult(
                success=True,
                message=f"{node_title(node)} action executed successfully",
                result=result,
                attempts=attempts,
            )
        except RetryExhaustedError as exc:
            log.error("Action failed after %s attempts: %s", exc.attempts, exc.last_error)
            outcome = ExecutionResult(
                success=False,
                message=f"{node_title(node)} action failed",
                error=str(exc.last_error),
                attempts=attempts,
            )
        except Exception as exc:
            log.exception("Action raised a non-retryable error")
            outcome = ExecutionResult(
                success=False,
                message=f"{node_title(node)} action failed",
                error=str(exc),
                attempts=attempts,
            )
        finally:
            if owns_client:
                http.close()
        duration = time.perf_counter() - started

        self._record_attempt(ctx, kind, outcome, duration)
        record_action_execution(kind.value, outcome.success, duration)
        return outcome

    def _record_attempt(
        self,
        ctx: ActionContext,
        kind: ActionKind,
        outcome: ExecutionResult,
        duration_seconds: float,
    ) -> None:
        """Append the audit event and apply its counter delta in one write."""
        detail: dict[str, Any] = {"action": kind.value, "attempts": outcome.attempts}
        if outcome.error:
            detail["error"] = outcome.error[:1000]
        event = TrackedEvent(
            site_id=ctx.request.site_id,
            workflow_id=ctx.workflow.id,
            kind=EventKind.ACTION_EXECUTED,
            visitor_id=ctx.request.visitor_id,
            run_id=ctx.run_id,
            node_id=str(ctx.node.get("id")),
            node_title=node_title(ctx.node) or None,
            node_type="Action",
            detail=detail,
            execution_time=int(duration_seconds * 1000),
            success=outcome.success,
            timestamp=utcnow(),
        )
        self.ingestion.ingest_events([event])

    def enqueue(self, request: ExecutionRequest) -> str:
        """Queue the action for a worker; the worker applies the same retry policy."""
        self._resolve(request)
        result = celery_app.send_task(
            EXECUTE_ACTION_TASK,
            args=[request.model_dump(by_alias=True)],
            queue=settings.workflow_queue_name,
        )
        logger.info(
            "Queued %s for node %s",
            EXECUTE_ACTION_TASK,
            request.node_id,
            extra={"workflow_id": request.workflow_id, "task_id": result.id},
        )
        return result.id


def node_title(node: dict[str, Any]) -> str:
    return (node.get("data") or {}).get("title") or ""
