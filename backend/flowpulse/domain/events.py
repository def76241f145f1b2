"""Event kinds and the wire formats the browser tracker emits."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class EventKind(str, Enum):
    # Raw behavioural events, persisted to the raw event log.
    TRIGGER = "Trigger"
    STEP_ENTERED = "Step Entered"
    CONDITION_EVALUATED = "Condition Evaluated"
    STEP_COMPLETED = "Step Completed"
    ACTION_EXECUTED = "Action Executed"
    CUSTOM_EVENT = "Custom Event"

    # Analytics signals, applied to counters only.
    WORKFLOW_TRIGGER = "workflow_trigger"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_STOPPED = "workflow_stopped"
    CONDITION_RESULT = "condition_evaluated"
    ACTION_COMPLETED = "action_completed"
    ACTION_FAILED = "action_failed"
    ACTION_SKIPPED = "action_skipped"

    @property
    def is_raw(self) -> bool:
        return self in RAW_LOG_KINDS


RAW_LOG_KINDS = frozenset(
    {
        EventKind.TRIGGER,
        EventKind.STEP_ENTERED,
        EventKind.CONDITION_EVALUATED,
        EventKind.STEP_COMPLETED,
        EventKind.ACTION_EXECUTED,
        EventKind.CUSTOM_EVENT,
    }
)

# Kinds the funnel is rebuilt from.
FUNNEL_KINDS = frozenset(
    {
        EventKind.STEP_ENTERED,
        EventKind.STEP_COMPLETED,
        EventKind.CONDITION_EVALUATED,
        EventKind.ACTION_EXECUTED,
    }
)

_ALIASES = {
    "StepEntered": EventKind.STEP_ENTERED,
    "ConditionEvaluated": EventKind.CONDITION_EVALUATED,
    "StepCompleted": EventKind.STEP_COMPLETED,
    "ActionExecuted": EventKind.ACTION_EXECUTED,
    "CustomEvent": EventKind.CUSTOM_EVENT,
}


def parse_kind(value: Any) -> Optional[EventKind]:
    """Resolve a wire event name to an ``EventKind``; ``None`` when unknown."""
    if isinstance(value, EventKind):
        return value
    if not isinstance(value, str):
        return None
    try:
        return EventKind(value)
    except ValueError:
        return _ALIASES.get(value)


def _compact(mapping: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in mapping.items() if value is not None}


def normalize_wire_event(payload: dict[str, Any]) -> dict[str, Any]:
    """Translate the tracker's legacy payload shapes into the canonical camelCase shape.

    Three shapes are accepted:

    * canonical ``{siteId, workflowId, visitorId, event, nodeId, ...}``
    * ``{event_type: "workflow_analytics", workflow_id, node_id, analytics_event_type, result}``
    * compact ``{t: "wf", s, wf, n, e, r, v, ts}``
    """
    if payload.get("event_type") == "workflow_analytics":
        return _compact(
            {
                "siteId": payload.get("site_id"),
                "workflowId": payload.get("workflow_id"),
                "visitorId": payload.get("visitor_id"),
                "runId": payload.get("run_id"),
                "nodeId": payload.get("node_id"),
                "event": payload.get("analytics_event_type"),
                "result": payload.get("result"),
                "timestamp": payload.get("timestamp"),
                "eventId": payload.get("event_id"),
            }
        )
    if payload.get("t") == "wf":
        return _compact(
            {
                "siteId": payload.get("s"),
                "workflowId": payload.get("wf"),
                "visitorId": payload.get("v"),
                "nodeId": payload.get("n"),
                "event": payload.get("e"),
                "result": payload.get("r"),
                "timestamp": payload.get("ts"),
                "eventId": payload.get("id"),
            }
        )
    return payload
