"""Server-side action handlers.

Handlers perform one attempt and raise ``ActionError`` on a retryable
failure; retries are applied by the caller.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from flowpulse.core.logging import get_logger
from flowpulse.core.metrics import record_webhook_attempt
from flowpulse.db import Workflow
from flowpulse.domain.actions import ActionKind
from flowpulse.domain.exceptions import ValidationError, WebhookDeliveryError
from flowpulse.schemas.execution import ExecutionRequest

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
USER_AGENT = "flowpulse-webhook/1.0"

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.\-]*)\s*\}\}")


@dataclass(slots=True)
class ActionContext:
    workflow: Workflow
    node: dict[str, Any]
    request: ExecutionRequest
    run_id: str
    timestamp: datetime
    http: httpx.Client
    timeout: float
    signing_secret: Optional[str] = None
    emit_event: Optional[Callable[[dict[str, Any]], Any]] = None
    tags: Any = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def node_settings(self) -> dict[str, Any]:
        return (self.node.get("data") or {}).get("settings") or {}

    @property
    def node_title(self) -> str:
        return (self.node.get("data") or {}).get("title") or ""


def generate_signature(payload_bytes: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the payload bytes."""
    return hmac.new(secret.encode(), payload_bytes, hashlib.sha256).hexdigest()


def _lookup(name: str, ctx: ActionContext) -> str:
    request = ctx.request
    if name == "visitorId":
        return request.visitor_id
    if name == "siteId":
        return request.site_id
    if name == "timestamp":
        return ctx.timestamp.isoformat() + "Z"
    if name.startswith("user."):
        value = (request.identified_user or {}).get(name[len("user.") :])
    elif name.startswith("localStorage."):
        value = (request.local_storage_data or {}).get(name[len("localStorage.") :])
    else:
        return "{{" + name + "}}"
    if value is None:
        return ""
    return value if isinstance(value, str) else json.dumps(value)


def substitute_placeholders(template: str, ctx: ActionContext, *, json_escape: bool = False) -> str:
    """Replace ``{{visitorId}}``, ``{{user.*}}``, ``{{localStorage.*}}`` and friends.

    Unknown placeholders are left untouched. With ``json_escape`` the inserted
    values are escaped so they stay valid inside JSON string literals.
    """

    def replace(match: re.Match) -> str:
        value = _lookup(match.group(1), ctx)
        if json_escape:
            return json.dumps(value)[1:-1]
        return value

    return _PLACEHOLDER.sub(replace, template)


def render_body(template: Any, ctx: ActionContext) -> dict[str, Any]:
    """Render the user-authored body template into a JSON object."""
    if template is None or template == "":
        return {}
    if not isinstance(template, str):
        template = json.dumps(template)
    rendered = substitute_placeholders(template, ctx, json_escape=True)
    try:
        parsed = json.loads(rendered)
    except ValueError:
        return {"customData": substitute_placeholders(template, ctx)}
    if isinstance(parsed, dict):
        return parsed
    return {"customData": parsed}


def render_headers(raw: Any, ctx: ActionContext) -> dict[str, str]:
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ValidationError("Webhook headers must be a JSON object") from exc
    if isinstance(raw, list):
        raw = {item.get("key"): item.get("value") for item in raw if item.get("key")}
    if not isinstance(raw, dict):
        raise ValidationError("Webhook headers must be a JSON object")
    return {str(key): substitute_placeholders(str(value), ctx) for key, value in raw.items()}


def build_webhook_payload(ctx: ActionContext) -> dict[str, Any]:
    request = ctx.request
    payload: dict[str, Any] = {
        "visitorId": request.visitor_id,
        "identifiedUser": request.identified_user,
        "localStorageData": request.local_storage_data,
        "timestamp": ctx.timestamp.isoformat() + "Z",
    }
    payload.update(render_body(ctx.node_settings.get("webhookBody"), ctx))
    return payload


def deliver_webhook(ctx: ActionContext) -> dict[str, Any]:
    """Send one webhook attempt; any non-2xx response raises ``WebhookDeliveryError``."""
    node_settings = ctx.node_settings
    url = node_settings.get("webhookUrl")
    if not url:
        raise ValidationError("Webhook URL is not configured")
    method = str(node_settings.get("webhookMethod") or "POST").upper()

    payload_bytes = json.dumps(build_webhook_payload(ctx)).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        **render_headers(node_settings.get("webhookHeaders"), ctx),
    }
    if ctx.signing_secret:
        signature = generate_signature(payload_bytes, ctx.signing_secret)
        headers[SIGNATURE_HEADER] = f"sha256={signature}"

    try:
        response = ctx.http.request(
            method,
            url,
            content=None if method == "GET" else payload_bytes,
            headers=headers,
            timeout=ctx.timeout,
        )
    except httpx.HTTPError as exc:
        record_webhook_attempt("transport_error")
        raise WebhookDeliveryError(f"Webhook request failed: {exc}") from exc

    if not 200 <= response.status_code < 300:
        record_webhook_attempt("http_error")
        raise WebhookDeliveryError(
            f"HTTP {response.status_code}: {response.text[:500]}",
            status_code=response.status_code,
        )

    record_webhook_attempt("success")
    logger.info(
        "Webhook delivered to %s (HTTP %s)",
        url,
        response.status_code,
        extra={"workflow_id": ctx.workflow.id},
    )
    return {"statusCode": response.status_code, "response": response.text[:1024]}


def _event_data(raw: Any) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {"value": raw}
    return raw if isinstance(raw, dict) else {"value": raw}


def track_event(ctx: ActionContext) -> dict[str, Any]:
    """Re-emit a custom event through ingestion."""
    node_settings = ctx.node_settings
    event_name = str(node_settings.get("eventName") or "").strip()
    if not event_name:
        raise ValidationError("Track Event action requires an event name")
    if ctx.emit_event is None:
        raise ValidationError("Event ingestion is not available for this action")

    event_data = _event_data(node_settings.get("eventData"))
    ctx.emit_event(
        {
            "siteId": ctx.request.site_id,
            "workflowId": ctx.workflow.id,
            "visitorId": ctx.request.visitor_id,
            "runId": ctx.run_id,
            "event": "Custom Event",
            "nodeId": ctx.node.get("id"),
            "nodeTitle": ctx.node_title,
            "nodeType": "Action",
            "detail": {"eventName": event_name, "eventData": event_data},
            "timestamp": ctx.timestamp,
        }
    )
    return {"eventName": event_name, "eventData": event_data}


def _tag_name(ctx: ActionContext) -> str:
    tag = str(ctx.node_settings.get("tagName") or ctx.node_settings.get("tag") or "").strip()
    if not tag:
        raise ValidationError("Tag action requires a tag name")
    return tag


def add_tag(ctx: ActionContext) -> dict[str, Any]:
    tag = _tag_name(ctx)
    tags = ctx.tags.add_tag(ctx.request.site_id, ctx.request.visitor_id, tag)
    return {"tag": tag, "tags": tags}


def remove_tag(ctx: ActionContext) -> dict[str, Any]:
    tag = _tag_name(ctx)
    tags = ctx.tags.remove_tag(ctx.request.site_id, ctx.request.visitor_id, tag)
    return {"tag": tag, "tags": tags}


ActionHandler = Callable[[ActionContext], dict[str, Any]]

HANDLERS: dict[ActionKind, ActionHandler] = {
    ActionKind.WEBHOOK: deliver_webhook,
    ActionKind.TRACK_EVENT: track_event,
    ActionKind.ADD_TAG: add_tag,
    ActionKind.REMOVE_TAG: remove_tag,
}

_missing = set(ActionKind) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler registered for {sorted(kind.value for kind in _missing)}")
