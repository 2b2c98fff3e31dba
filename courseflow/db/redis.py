"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured a real connection pool is
created; when it is None (local dev, tests) the student-view cache falls
back to an in-process dict and no Redis server is needed.

Redis only ever holds derived data here (rendered student views).  Losing
it costs a recomputation of the view on the next read, never a lost unlock:
the Progress Store is the source of truth.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from courseflow.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


async def check_connection() -> str:
    """Return "not_configured", "ok" or "degraded"."""
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except (RedisError, OSError):
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, the counterpart of lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured — student views cached in memory")
        yield
        return

    if await check_connection() == "ok":
        logger.info("Redis connected")
    else:
        # The service still starts: views are rebuilt on every read and the
        # failures show up in cache_operations_total{operation="error"}.
        logger.error("Redis unreachable on startup")

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
