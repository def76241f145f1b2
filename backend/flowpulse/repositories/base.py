"""Base repository utilities."""

from __future__ import annotations

from typing import Generic, TypeVar

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

TModel = TypeVar("TModel")


class SQLAlchemyRepository(Generic[TModel]):
    """Minimal base repository storing the SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert_insert(self, table: Table):
        """Return a dialect ``INSERT`` that supports ``ON CONFLICT`` clauses."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise NotImplementedError(f"Upserts are not supported on {dialect}")
