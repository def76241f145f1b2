"""Live workflow counters.

Events are turned into ``CounterDelta`` values by a pure mapping, merged in
memory per workflow, and written with SQL-side increments so concurrent
writers never lose updates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from flowpulse.core.logging import get_logger
from flowpulse.core.metrics import record_counter_write
from flowpulse.core.time import utcnow
from flowpulse.db.models import NODE_COUNTERS, WORKFLOW_COUNTERS
from flowpulse.domain.events import EventKind
from flowpulse.repositories import WorkflowRepository
from flowpulse.schemas.events import TrackedEvent

logger = get_logger(__name__)


@dataclass(slots=True)
class NodeDelta:
    triggers: int = 0
    completions: int = 0
    failures: int = 0
    skipped: int = 0
    conditions_passed: int = 0
    conditions_failed: int = 0

    def merge(self, other: "NodeDelta") -> None:
        for column in NODE_COUNTERS:
            setattr(self, column, getattr(self, column) + getattr(other, column))

    def as_dict(self) -> dict[str, int]:
        return {column: getattr(self, column) for column in NODE_COUNTERS}

    def is_empty(self) -> bool:
        return not any(self.as_dict().values())


@dataclass(slots=True)
class CounterDelta:
    """Pending increments for one workflow."""

    workflow_id: str
    total_triggers: int = 0
    total_completions: int = 0
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    triggered: bool = False
    nodes: dict[str, NodeDelta] = field(default_factory=dict)

    def node(self, node_id: str) -> NodeDelta:
        if node_id not in self.nodes:
            self.nodes[node_id] = NodeDelta()
        return self.nodes[node_id]

    def merge(self, other: "CounterDelta") -> "CounterDelta":
        if other.workflow_id != self.workflow_id:
            raise ValueError("Cannot merge deltas of different workflows")
        for column in WORKFLOW_COUNTERS:
            setattr(self, column, getattr(self, column) + getattr(other, column))
        self.triggered = self.triggered or other.triggered
        for node_id, node_delta in other.nodes.items():
            self.node(node_id).merge(node_delta)
        return self

    def workflow_increments(self) -> dict[str, int]:
        return {column: getattr(self, column) for column in WORKFLOW_COUNTERS}

    def node_increments(self) -> dict[str, dict[str, int]]:
        return {
            node_id: node_delta.as_dict()
            for node_id, node_delta in self.nodes.items()
            if not node_delta.is_empty()
        }

    def is_empty(self) -> bool:
        return (
            not any(self.workflow_increments().values())
            and not self.triggered
            and not self.node_increments()
        )


def delta_for_event(
    event: TrackedEvent,
    *,
    count_failed_as_completion: bool = True,
) -> CounterDelta:
    """Map one event to its counter effect."""
    delta = CounterDelta(workflow_id=event.workflow_id)
    kind = event.kind
    node = delta.node(event.node_id) if event.node_id else None

    if kind in (EventKind.TRIGGER, EventKind.WORKFLOW_TRIGGER):
        delta.total_triggers += 1
        delta.total_runs += 1
        delta.triggered = True
        if node is not None:
            node.triggers += 1
    elif kind == EventKind.WORKFLOW_COMPLETED:
        delta.successful_runs += 1
    elif kind == EventKind.WORKFLOW_STOPPED:
        delta.failed_runs += 1
    elif kind in (EventKind.CONDITION_EVALUATED, EventKind.CONDITION_RESULT):
        if node is not None:
            if event.condition_passed:
                node.conditions_passed += 1
            else:
                node.conditions_failed += 1
    elif kind == EventKind.ACTION_COMPLETED or (
        kind == EventKind.ACTION_EXECUTED and event.success is not False
    ):
        delta.total_completions += 1
        if node is not None:
            node.completions += 1
    elif kind in (EventKind.ACTION_FAILED, EventKind.ACTION_EXECUTED):
        # A failed "Action Executed" audit event still counts as a completion
        # unless the deployment opts out.
        if kind == EventKind.ACTION_EXECUTED and count_failed_as_completion:
            delta.total_completions += 1
        if node is not None:
            node.failures += 1
    elif kind == EventKind.ACTION_SKIPPED:
        if node is not None:
            node.skipped += 1
    return delta


def merge_deltas(
    events: Iterable[TrackedEvent],
    *,
    count_failed_as_completion: bool = True,
) -> dict[str, CounterDelta]:
    """Fold events into one delta per workflow, preserving first-seen order."""
    merged: dict[str, CounterDelta] = {}
    for event in events:
        delta = delta_for_event(event, count_failed_as_completion=count_failed_as_completion)
        if event.workflow_id in merged:
            merged[event.workflow_id].merge(delta)
        else:
            merged[event.workflow_id] = delta
    return merged


class CounterService:
    """Applies merged deltas to the workflow store."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.workflows = WorkflowRepository(session)

    def apply(self, delta: CounterDelta, *, known_node_ids: Optional[set[str]] = None) -> bool:
        """Write one workflow's delta without committing.

        Node ids absent from the workflow are dropped. Returns ``False`` when
        the workflow does not exist.
        """
        if delta.is_empty():
            return True
        if known_node_ids is None:
            workflow = self.workflows.get_by_id(delta.workflow_id)
            if workflow is None:
                logger.warning(
                    "Dropping counter delta for unknown workflow %s",
                    delta.workflow_id,
                    extra={"workflow_id": delta.workflow_id},
                )
                return False
            if workflow.graph_errors():
                logger.warning(
                    "Dropping counter delta for workflow %s with corrupt graph",
                    delta.workflow_id,
                    extra={"workflow_id": delta.workflow_id},
                )
                return False
            known_node_ids = workflow.node_ids()

        node_increments = delta.node_increments()
        orphaned = sorted(set(node_increments) - known_node_ids)
        if orphaned:
            logger.warning(
                "Ignoring counters for nodes %s not present on workflow %s",
                ", ".join(orphaned),
                delta.workflow_id,
                extra={"workflow_id": delta.workflow_id},
            )
            for node_id in orphaned:
                node_increments.pop(node_id)

        self.workflows.increment_counters(
            delta.workflow_id,
            delta.workflow_increments(),
            triggered_at=utcnow() if delta.triggered else None,
        )
        self.workflows.upsert_node_stats(delta.workflow_id, node_increments)
        record_counter_write()
        return True

    def apply_many(self, deltas: Iterable[CounterDelta]) -> list[str]:
        """Apply deltas for several workflows; returns the ids that were written."""
        pending = list(deltas)
        workflows = self.workflows.get_many(delta.workflow_id for delta in pending)
        applied: list[str] = []
        for delta in pending:
            workflow = workflows.get(delta.workflow_id)
            if workflow is None:
                logger.warning(
                    "Dropping counter delta for unknown workflow %s",
                    delta.workflow_id,
                    extra={"workflow_id": delta.workflow_id},
                )
                continue
            graph_errors = workflow.graph_errors()
            if graph_errors:
                logger.warning(
                    "Dropping counter delta for workflow %s with corrupt graph: %s",
                    delta.workflow_id,
                    "; ".join(graph_errors),
                    extra={"workflow_id": delta.workflow_id},
                )
                continue
            if self.apply(delta, known_node_ids=workflow.node_ids()):
                applied.append(delta.workflow_id)
        return applied

    def reset(self, workflow_id: str) -> None:
        self.workflows.reset_counters(workflow_id)
        self.session.commit()
        logger.info("Reset analytics counters", extra={"workflow_id": workflow_id})
