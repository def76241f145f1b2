"""Rollup table access."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional, Sequence, Type, TypeVar

from sqlalchemy import delete
from sqlalchemy.orm import Session

from flowpulse.db import DailyAggregation, MonthlyAggregation, WeeklyAggregation
from flowpulse.repositories.base import SQLAlchemyRepository

TAggregation = TypeVar("TAggregation", DailyAggregation, WeeklyAggregation, MonthlyAggregation)

# Column holding the period start for each tier.
_PERIOD_COLUMN = {
    DailyAggregation: "date",
    WeeklyAggregation: "week_start",
    MonthlyAggregation: "month_start",
}


class AggregationRepository(SQLAlchemyRepository[Any]):
    """Upserts and window queries shared by the daily, weekly and monthly tables."""

    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def upsert(
        self,
        model: Type[TAggregation],
        key: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> TAggregation:
        """Update the row matching ``key`` or insert a new one.

        Callers hold the job lease, so a plain read-then-write is safe here.
        """
        row = self.session.query(model).filter_by(**key).first()
        if row is None:
            row = model(**key)
            self.session.add(row)
        for column, value in values.items():
            setattr(row, column, value)
        return row

    def list_between(
        self,
        model: Type[TAggregation],
        start: datetime,
        end: datetime,
        *,
        workflow_id: Optional[str] = None,
    ) -> Sequence[TAggregation]:
        """Rows whose period starts in ``[start, end)``, oldest first."""
        column = getattr(model, _PERIOD_COLUMN[model])
        query = self.session.query(model).filter(column >= start, column < end)
        if workflow_id is not None:
            query = query.filter(model.workflow_id == workflow_id)
        return query.order_by(model.workflow_id.asc(), column.asc()).all()

    def delete_expired(self, now: datetime) -> int:
        removed = 0
        for model in (DailyAggregation, WeeklyAggregation, MonthlyAggregation):
            result = self.session.execute(
                delete(model)
                .where(model.expires_at < now)
                .execution_options(synchronize_session=False)
            )
            removed += result.rowcount or 0
        return removed
