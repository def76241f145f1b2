"""Visitor tag persistence."""

from __future__ import annotations

from sqlalchemy.orm import Session

from flowpulse.db import VisitorTag
from flowpulse.repositories.base import SQLAlchemyRepository


class VisitorTagRepository(SQLAlchemyRepository[VisitorTag]):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def has_tag(self, site_id: str, visitor_id: str, tag: str) -> bool:
        return (
            self.session.query(VisitorTag.id)
            .filter(
                VisitorTag.site_id == site_id,
                VisitorTag.visitor_id == visitor_id,
                VisitorTag.tag == tag,
            )
            .first()
            is not None
        )

    def list_tags(self, site_id: str, visitor_id: str) -> list[str]:
        rows = (
            self.session.query(VisitorTag.tag)
            .filter(VisitorTag.site_id == site_id, VisitorTag.visitor_id == visitor_id)
            .order_by(VisitorTag.tag.asc())
            .all()
        )
        return [row[0] for row in rows]

    def add_tag(self, site_id: str, visitor_id: str, tag: str) -> None:
        """Add the tag if absent; concurrent adds of the same tag are no-ops."""
        stmt = (
            self.upsert_insert(VisitorTag.__table__)
            .values(site_id=site_id, visitor_id=visitor_id, tag=tag)
            .on_conflict_do_nothing(index_elements=["site_id", "visitor_id", "tag"])
        )
        self.session.execute(stmt)

    def remove_tag(self, site_id: str, visitor_id: str, tag: str) -> int:
        return (
            self.session.query(VisitorTag)
            .filter(
                VisitorTag.site_id == site_id,
                VisitorTag.visitor_id == visitor_id,
                VisitorTag.tag == tag,
            )
            .delete(synchronize_session=False)
        )
