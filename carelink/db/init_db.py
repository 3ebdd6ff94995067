"""Database initialization utilities."""

import logging

from carelink.db.base import Base
from carelink.db.session import engine

# Register every table on Base.metadata
import carelink.models  # noqa: F401

logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create all database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
