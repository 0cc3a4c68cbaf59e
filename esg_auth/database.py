"""Database configuration and session management."""

import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from esg_auth.config import settings

logger = logging.getLogger(__name__)

# Create declarative base for models
Base = declarative_base()

db_config = settings.get_database_config()

async_engine = create_async_engine(
    db_config.pop("url"),
    echo=settings.debug,
    **db_config,
)

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function to get database session.

    Yields:
        AsyncSession: Database session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine=None) -> None:
    """Create all tables."""
    engine = engine or async_engine
    async with engine.begin() as conn:
        # Import all models to ensure they are registered
        from esg_auth import models  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def close_db() -> None:
    """Close database connections."""
    await async_engine.dispose()
