from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from bookings_crm.core.config import Settings, settings


def engine_options(config: Settings) -> Dict[str, Any]:
    """Keyword arguments for the leads database engine."""
    return {
        "echo": config.DEBUG,
        "future": True,
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": config.DB_POOL_SIZE,
        "max_overflow": config.DB_MAX_OVERFLOW,
        "pool_recycle": config.DB_POOL_RECYCLE_SECONDS,
        "pool_pre_ping": True,
    }


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings))

# Sessions outlive their commit: rows are read back after the version bump
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    future=True,
)


async def get_db():
    """Dependency for FastAPI routes to get async session."""
    async with AsyncSessionLocal() as session:
        yield session
