"""
Database engine and session helpers for the SQL-backed row store.

- build_engine(): async engine for a SQLAlchemy URL (sqlite+aiosqlite, postgresql+asyncpg)
- get_async_session(): session context manager that always rolls back on error
- create_schema(): create tables for local development and tests
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.asyncio import create_async_engine as sa_create_async_engine

from .models import Base

logger = logging.getLogger(__name__)


def build_engine(url: str, **kwargs) -> AsyncEngine:
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    logger.info("db_async_engine_init", extra={"meta": {"dialect": url.split(":", 1)[0]}})
    if url.startswith("postgresql"):
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 1800)
    return sa_create_async_engine(url, future=True, echo=False, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@asynccontextmanager
async def get_async_session(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session that always closes cleanly."""
    start_time = time.time()
    async with factory() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.warning(
                "db_async_session_rollback",
                extra={
                    "meta": {
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "duration_ms": round((time.time() - start_time) * 1000, 2),
                    }
                },
            )
            raise


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
