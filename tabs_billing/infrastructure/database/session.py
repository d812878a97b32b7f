"""Database session management with connection pooling"""

from functools import lru_cache
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from tabs_billing.config import settings


@lru_cache
def get_engine() -> AsyncEngine:
    """Process-wide engine, created on first use"""
    # Recycle after an hour to avoid stale connections
    return create_async_engine(
        settings.database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle_seconds,
    )


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency injection for the top-level database handle used to open units of work"""
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False, autoflush=False)
