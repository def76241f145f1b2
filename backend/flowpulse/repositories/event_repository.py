"""Raw event log queries."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, insert
from sqlalchemy.orm import Session

from flowpulse.db import WorkflowEvent
from flowpulse.repositories.base import SQLAlchemyRepository


class EventRepository(SQLAlchemyRepository[WorkflowEvent]):
    """Append-only access to the raw event log."""

    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def add_many(self, rows: Sequence[dict[str, Any]]) -> int:
        if not rows:
            return 0
        self.session.execute(insert(WorkflowEvent), list(rows))
        return len(rows)

    def existing_event_ids(self, event_ids: Iterable[str]) -> set[str]:
        ids = list(set(event_ids))
        if not ids:
            return set()
        rows = (
            self.session.query(WorkflowEvent.event_id)
            .filter(WorkflowEvent.event_id.in_(ids))
            .all()
        )
        return {row[0] for row in rows}

    def distinct_workflow_ids(self, start: datetime, end: datetime) -> list[str]:
        rows = (
            self.session.query(WorkflowEvent.workflow_id)
            .filter(WorkflowEvent.timestamp >= start, WorkflowEvent.timestamp < end)
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    def list_between(
        self,
        workflow_id: str,
        start: datetime,
        end: Optional[datetime] = None,
        *,
        kinds: Optional[Iterable[str]] = None,
    ) -> Sequence[WorkflowEvent]:
        """Events of one workflow in ``[start, end)``, oldest first."""
        query = self.session.query(WorkflowEvent).filter(
            WorkflowEvent.workflow_id == workflow_id,
            WorkflowEvent.timestamp >= start,
        )
        if end is not None:
            query = query.filter(WorkflowEvent.timestamp < end)
        if kinds is not None:
            query = query.filter(WorkflowEvent.event.in_(list(kinds)))
        return query.order_by(WorkflowEvent.timestamp.asc(), WorkflowEvent.id.asc()).all()

    def recent(
        self,
        workflow_id: str,
        since: datetime,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[WorkflowEvent]:
        return (
            self.session.query(WorkflowEvent)
            .filter(WorkflowEvent.workflow_id == workflow_id, WorkflowEvent.timestamp >= since)
            .order_by(WorkflowEvent.timestamp.desc(), WorkflowEvent.id.desc())
            .offset(offset)
            .limit(min(limit, 500))
            .all()
        )

    def count_recent(self, workflow_id: str, since: datetime) -> int:
        return (
            self.session.query(WorkflowEvent)
            .filter(WorkflowEvent.workflow_id == workflow_id, WorkflowEvent.timestamp >= since)
            .count()
        )

    def delete_older_than(self, cutoff: datetime) -> int:
        result = self.session.execute(
            delete(WorkflowEvent)
            .where(WorkflowEvent.timestamp < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
