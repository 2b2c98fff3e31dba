"""Async SQLAlchemy engine and session factory for the progress store.

With DATABASE_URL set this module provides:
- an asyncpg-backed engine, pool sized by DB_POOL_SIZE
- ``session_scope()``: one transaction per request, used by the progress
  store dependency
- ``check_connection()`` for /health and /ready
- the lifespan hook that disposes the pool on shutdown

Without DATABASE_URL, ``engine`` and ``async_session_factory`` are None and
the in-memory progress store is used instead.

Only progress is persisted.  Catalog and enrollment data stay in process
memory even with DATABASE_URL set, so after a restart the stored progress
rows refer to courses and enrollments this process no longer knows:
recalculation and student views for such a course answer 404 until the
catalog and enrollments are loaded again.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from courseflow.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the progress tables."""


if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        # SQL echo goes through the sqlalchemy.engine logger, which
        # setup_logging keeps at WARNING.
        echo=SETTINGS.is_dev,
        pool_size=SETTINGS.db_pool_size,
        # A recalculation and a burst of quiz results can overlap.
        max_overflow=SETTINGS.db_pool_size * 2,
        pool_pre_ping=True,
    )
    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
else:
    engine = None
    async_session_factory = None


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session wrapped in one transaction.

    Commits on success, rolls back on exception.  Store operations open a
    SAVEPOINT each, so a failure for one student in a propagation loop does
    not roll back the students already processed.
    """
    if async_session_factory is None:
        raise RuntimeError("DATABASE_URL is not configured")
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_connection() -> str:
    """Return "not_configured", "ok" or "degraded"."""
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


@asynccontextmanager
async def lifespan_db():
    if engine is None:
        logger.info("No DATABASE_URL configured, progress is kept in memory")
        yield
        return

    logger.info(
        "Progress database: %s (pool_size=%d)",
        engine.url.render_as_string(hide_password=True),
        SETTINGS.db_pool_size,
    )
    yield
    await engine.dispose()
    logger.info("Database engine disposed")
