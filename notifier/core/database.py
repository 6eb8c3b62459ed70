"""
Database engine and session factory
Components receive AsyncSessionLocal and open one short session per operation
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from contextlib import asynccontextmanager
from typing import AsyncGenerator
import logging

from .config import Settings, settings
from notifier.models.base import Base

logger = logging.getLogger(__name__)

def create_engine_from_settings(config: Settings) -> AsyncEngine:
    url = config.database_url_async
    if url.startswith("sqlite"):
        # No pool tuning for SQLite
        return create_async_engine(url, echo=config.DATABASE_ECHO, poolclass=NullPool)

    return create_async_engine(
        url,
        echo=config.DATABASE_ECHO,
        pool_size=config.DATABASE_POOL_SIZE,
        max_overflow=config.DATABASE_MAX_OVERFLOW,
        pool_timeout=config.DATABASE_POOL_TIMEOUT,
        pool_pre_ping=True,
    )

engine = create_engine_from_settings(settings)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session that commits on success and rolls back on error (Celery tasks, scripts)"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

async def init_db() -> None:
    """Create every table registered on Base.metadata"""
    import notifier.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created successfully")

async def close_db() -> None:
    await engine.dispose()
    logger.info("Database connections closed")
