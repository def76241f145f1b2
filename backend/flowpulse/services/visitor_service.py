"""Visitor tag operations."""

from __future__ import annotations

from sqlalchemy.orm import Session

from flowpulse.core.logging import get_logger
from flowpulse.domain.exceptions import ValidationError
from flowpulse.repositories import VisitorTagRepository

logger = get_logger(__name__)

MAX_TAG_LENGTH = 100


def _clean_tag(tag: str | None) -> str:
    value = (tag or "").strip()
    if not value:
        raise ValidationError("Tag name is required")
    if len(value) > MAX_TAG_LENGTH:
        raise ValidationError(f"Tag name must be at most {MAX_TAG_LENGTH} characters")
    return value


class VisitorService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.tags = VisitorTagRepository(session)

    def has_tag(self, site_id: str, visitor_id: str, tag: str) -> bool:
        return self.tags.has_tag(site_id, visitor_id, _clean_tag(tag))

    def get_tags(self, site_id: str, visitor_id: str) -> list[str]:
        return self.tags.list_tags(site_id, visitor_id)

    def add_tag(self, site_id: str, visitor_id: str, tag: str) -> list[str]:
        """Add a tag (no-op when present) and return the visitor's tag set."""
        tag = _clean_tag(tag)
        self.tags.add_tag(site_id, visitor_id, tag)
        self.session.commit()
        logger.info("Tagged visitor %s on site %s with %s", visitor_id, site_id, tag)
        return self.get_tags(site_id, visitor_id)

    def remove_tag(self, site_id: str, visitor_id: str, tag: str) -> list[str]:
        tag = _clean_tag(tag)
        removed = self.tags.remove_tag(site_id, visitor_id, tag)
        self.session.commit()
        if removed:
            logger.info("Removed tag %s from visitor %s on site %s", tag, visitor_id, site_id)
        return self.get_tags(site_id, visitor_id)
