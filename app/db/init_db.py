import logging

from app.db.base import Base
from app.db.session import engine

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Create any missing tables from the model metadata."""
    import app.models  # noqa: F401 - registers every model on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured (%d tables)", len(Base.metadata.tables))
