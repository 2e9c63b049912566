"""
Database session management.
Provides the async SQLAlchemy engine, session factory and schema creation.
Handles are owned by whoever builds them (the JobSystem in production).
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

from video_pipeline.core.config import Settings
from video_pipeline.database.base import Base


def build_engine(settings: Settings) -> AsyncEngine:
    """Create an engine from settings; SQLite URLs skip pool sizing."""
    if settings.database_url.startswith("sqlite"):
        return create_async_engine(settings.database_url, echo=settings.database_echo)
    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        echo=settings.database_echo,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_all(engine: AsyncEngine) -> None:
    """
    Create all tables and indexes (including the partial unique index on
    completed compiled videos). Used by tests and first-time setup.
    """
    # Register models on Base.metadata
    import video_pipeline.database.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
