"""Event ingestion: raw log append plus counter aggregation in one pass."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flowpulse.core.config import settings
from flowpulse.core.logging import get_logger
from flowpulse.core.metrics import record_duplicates, record_events_ingested
from flowpulse.domain.events import normalize_wire_event
from flowpulse.domain.exceptions import ConflictError, ValidationError
from flowpulse.repositories import EventRepository
from flowpulse.schemas.events import TrackedEvent
from flowpulse.services.counter_service import CounterService, merge_deltas

logger = get_logger(__name__)


@dataclass(slots=True)
class IngestionResult:
    processed: int
    stored: int
    duplicates: int
    workflows: int


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


def _raw_row(event: TrackedEvent) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "site_id": event.site_id,
        "workflow_id": event.workflow_id,
        "visitor_id": event.visitor_id,
        "run_id": event.run_id,
        "event": event.kind.value,
        "node_id": event.node_id,
        "node_title": event.node_title,
        "node_type": event.node_type,
        "detail": event.detail or None,
        "step_order": event.step_order,
        "execution_time": event.execution_time,
        "success": event.success,
        "timestamp": event.timestamp,
    }


def parse_events(payloads: Sequence[Any]) -> list[TrackedEvent]:
    """Normalise and validate every payload; the first bad one rejects the request."""
    events: list[TrackedEvent] = []
    for index, payload in enumerate(payloads):
        if not isinstance(payload, dict):
            raise ValidationError(f"Event {index}: must be a JSON object")
        try:
            events.append(TrackedEvent.model_validate(normalize_wire_event(payload)))
        except PydanticValidationError as exc:
            raise ValidationError(f"Event {index}: {_describe(exc)}") from exc
    return events


class IngestionService:
    """Accepts single or batched events."""

    def __init__(
        self, session: Session, *, count_failed_as_completion: Optional[bool] = None
    ) -> None:
        self.session = session
        self.events = EventRepository(session)
        self.counters = CounterService(session)
        if count_failed_as_completion is None:
            count_failed_as_completion = settings.count_failed_actions_as_completions
        self.count_failed_as_completion = count_failed_as_completion

    def ingest(self, payload: dict[str, Any] | Sequence[dict[str, Any]]) -> IngestionResult:
        payloads = [payload] if isinstance(payload, dict) else list(payload)
        if not payloads:
            raise ValidationError("No events supplied")
        return self.ingest_events(parse_events(payloads))

    def ingest_events(self, events: Sequence[TrackedEvent]) -> IngestionResult:
        """Store raw events and apply one merged counter delta per workflow.

        Everything is written in a single transaction.
        """
        fresh, duplicates = self._drop_duplicates(events)
        rows = [_raw_row(event) for event in fresh if event.kind.is_raw]
        deltas = merge_deltas(fresh, count_failed_as_completion=self.count_failed_as_completion)

        try:
            stored = self.events.add_many(rows)
            applied = self.counters.apply_many(deltas.values())
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Event id was ingested concurrently; retry the request") from exc
        except Exception:
            self.session.rollback()
            raise

        record_events_ingested(Counter(event.kind.value for event in fresh))
        record_duplicates(duplicates)
        logger.debug(
            "Ingested %s events (%s stored, %s duplicates) across %s workflows",
            len(fresh),
            stored,
            duplicates,
            len(applied),
        )
        return IngestionResult(
            processed=len(fresh),
            stored=stored,
            duplicates=duplicates,
            workflows=len(deltas),
        )

    def _drop_duplicates(self, events: Sequence[TrackedEvent]) -> tuple[list[TrackedEvent], int]:
        keyed = [event.event_id for event in events if event.event_id]
        if not keyed:
            return list(events), 0
        seen = self.events.existing_event_ids(keyed)
        fresh: list[TrackedEvent] = []
        for event in events:
            if event.event_id:
                if event.event_id in seen:
                    continue
                seen.add(event.event_id)
            fresh.append(event)
        return fresh, len(events) - len(fresh)
