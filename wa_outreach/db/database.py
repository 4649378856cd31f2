"""
Database Connection
===================
Async PostgreSQL connection using SQLAlchemy
"""

import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from wa_outreach.config import config
from wa_outreach.db.models import Base

logger = logging.getLogger(__name__)


engine = create_async_engine(
    config.DATABASE_URL,
    echo=config.DB_ECHO,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(bind=None):
    """Create all tables (for development only - use Alembic in production)"""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
