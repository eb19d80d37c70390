"""
Async Database Helper for Celery Tasks

Celery tasks are synchronous and drive async services through asyncio.run(),
which creates a fresh event loop per call. Pooled asyncpg connections are bound
to the loop that opened them, so each task run gets its own short-lived engine.
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.platform.config import settings
from app.platform.db.session import build_engine


@asynccontextmanager
async def get_async_db():
    """
    Get async database session for use in sync Celery tasks.

    Usage in Celery task:
        async def _drain():
            async with get_async_db() as db:
                return await process_queue(db)

        asyncio.run(_drain())
    """
    engine = build_engine(settings.DATABASE_URL)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as session:
            yield session
    finally:
        await engine.dispose()
