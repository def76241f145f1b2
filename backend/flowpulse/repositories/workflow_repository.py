"""Workflow persistence helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from flowpulse.db import Workflow, WorkflowNodeStats
from flowpulse.db.models import NODE_COUNTERS, WORKFLOW_COUNTERS
from flowpulse.repositories.base import SQLAlchemyRepository


class WorkflowRepository(SQLAlchemyRepository[Workflow]):
    """Encapsulates workflow queries and atomic counter writes."""

    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get_by_id(self, workflow_id: str, *, include_deleted: bool = False) -> Optional[Workflow]:
        query = self.session.query(Workflow).filter(Workflow.id == workflow_id)
        if not include_deleted:
            query = query.filter(Workflow.is_deleted.is_(False))
        return query.first()

    def get_many(self, workflow_ids: Iterable[str]) -> dict[str, Workflow]:
        ids = list(set(workflow_ids))
        if not ids:
            return {}
        rows = (
            self.session.query(Workflow)
            .filter(Workflow.id.in_(ids))
            .filter(Workflow.is_deleted.is_(False))
            .all()
        )
        return {row.id: row for row in rows}

    def list_for_site(
        self,
        site_id: str,
        *,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Sequence[Workflow]:
        query = (
            self.session.query(Workflow)
            .filter(Workflow.site_id == site_id)
            .filter(Workflow.is_deleted.is_(False))
        )
        if user_id:
            query = query.filter(Workflow.user_id == user_id)
        if status:
            query = query.filter(Workflow.status == status)
        return query.order_by(Workflow.created_at.desc()).all()

    def increment_counters(
        self,
        workflow_id: str,
        increments: Mapping[str, int],
        *,
        triggered_at: Optional[datetime] = None,
    ) -> int:
        """Apply ``col = col + n`` for each counter in one UPDATE; returns rows matched."""
        values = {
            column: getattr(Workflow, column) + amount
            for column, amount in increments.items()
            if column in WORKFLOW_COUNTERS and amount
        }
        if triggered_at is not None:
            values["last_triggered_at"] = triggered_at
        if not values:
            return 0
        result = self.session.execute(
            update(Workflow)
            .where(Workflow.id == workflow_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def upsert_node_stats(
        self, workflow_id: str, node_increments: Mapping[str, Mapping[str, int]]
    ) -> None:
        """Insert or increment node stat rows in a single statement."""
        if not node_increments:
            return
        table = WorkflowNodeStats.__table__
        rows = [
            {
                "workflow_id": workflow_id,
                "node_id": node_id,
                **{column: int(counts.get(column, 0)) for column in NODE_COUNTERS},
            }
            for node_id, counts in node_increments.items()
        ]
        stmt = self.upsert_insert(table).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.workflow_id, table.c.node_id],
            set_={column: table.c[column] + stmt.excluded[column] for column in NODE_COUNTERS},
        )
        self.session.execute(stmt)

    def node_stats(self, workflow_id: str) -> Sequence[WorkflowNodeStats]:
        return (
            self.session.query(WorkflowNodeStats)
            .filter(WorkflowNodeStats.workflow_id == workflow_id)
            .order_by(WorkflowNodeStats.id.asc())
            .all()
        )

    def reset_counters(self, workflow_id: str) -> None:
        self.session.execute(
            update(Workflow)
            .where(Workflow.id == workflow_id)
            .values(last_triggered_at=None, **{column: 0 for column in WORKFLOW_COUNTERS})
            .execution_options(synchronize_session=False)
        )
        self.session.execute(
            delete(WorkflowNodeStats)
            .where(WorkflowNodeStats.workflow_id == workflow_id)
            .execution_options(synchronize_session=False)
        )
