"""Database configuration and session management."""
from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import declarative_base

from hookcast.config import get_settings

settings = get_settings()

engine = create_async_engine(settings.database_url, echo=settings.db_echo)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


def get_session_factory():
    """Get session factory for the dispatch runner.

    Returns:
        Callable that returns AsyncSession context manager.
    """
    return AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session.

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
        finally:
            await session.close()


async def init_db() -> None:
    """Create tables for development databases.

    Production deployments manage the schema out of band.
    """
    if settings.is_production:
        return

    # Import models to register them
    from hookcast.models import (  # noqa: F401
        Channel,
        Message,
        ScheduledMessage,
        ScheduledMessageRun,
        Template,
        Workspace,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
