from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.platform.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    # SQLite (local runs and tests) does not accept queue pool sizing; connections
    # are opened per session so none outlive the event loop that created them
    if database_url.startswith("sqlite"):
        return {"echo": False, "future": True, "poolclass": NullPool}
    return {
        "echo": False,
        "future": True,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "pool_size": 20,
        "max_overflow": 30,  # (burst capacity)
        "pool_timeout": 30,
    }


def build_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, **engine_options(database_url))


engine = build_engine(settings.DATABASE_URL)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, autocommit=False)


async def get_db():
    async with SessionLocal() as session:
        yield session


async def init_models() -> None:
    """Create tables that do not exist yet (local SQLite runs; production uses Alembic)."""
    from app.platform.db.base import Base
    from app.features.scan import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
