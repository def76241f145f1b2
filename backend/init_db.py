"""Database initialization entrypoint."""

from flowpulse.core.logging import get_logger, setup_logging
from flowpulse.db import Base, engine

logger = get_logger(__name__)


def init_db() -> None:
    """Create any missing tables. Production deployments run the Alembic migrations instead."""
    Base.metadata.create_all(bind=engine)
    logger.info("Created tables: %s", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    setup_logging()
    init_db()
