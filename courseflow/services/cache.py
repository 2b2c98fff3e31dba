"""Read-through cache for student views.

READ-THROUGH
-------------
  GET /v1/progress/courses/{id} → cache → hit  → return
                                        → miss → build view → populate → return

Keys are ``view:{course_id}:{student_id}``.

INVALIDATION
-------------
Two complementary strategies:

  1. TTL: every entry expires after VIEW_TTL_SECONDS.  This is the safety
     net for a write path that forgets to invalidate.

  2. Explicit invalidation:
       - any propagation (unit/video created or deleted, recalculation)
         may change many students at once → ``delete_pattern(view:{course}:*)``
       - a single student's write (quiz result, watch, reading, enrollment)
         → ``delete(view:{course}:{student})``

     Both are recorded on the request's PendingInvalidations and run after
     the progress store transaction commits, never before.

Cache failures never fail a request: a broken cache read is a miss and a
broken write is skipped, both counted in cache_operations_total.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable
from uuid import UUID

from redis.exceptions import RedisError

from courseflow.core.metrics import CACHE_OPERATIONS
from courseflow.db.redis import redis_pool

logger = logging.getLogger(__name__)

VIEW_TTL_SECONDS = 60


def view_key(course_id: UUID, student_id: UUID) -> str:
    return f"view:{course_id}:{student_id}"


def course_view_pattern(course_id: UUID) -> str:
    return f"view:{course_id}:*"


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL (time to live)."""
        ...

    async def delete(self, key: str) -> None:
        """Explicitly invalidate a cached entry."""
        ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching a glob pattern (e.g. 'view:<course>:*')."""
        ...


class InMemoryCacheService:
    """In-memory cache for dev and tests, no TTL enforcement.

    The autouse fixture in conftest.py clears the store between tests.
    """

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]


class RedisCacheService:
    """Redis-backed cache, shared across all API instances."""

    _PREFIX = "courseflow:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN, not KEYS: KEYS blocks the server for the whole keyspace.
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()


# ---------------------------------------------------------------------------
# Failure-tolerant helpers used by the routers
# ---------------------------------------------------------------------------


async def read_view(course_id: UUID, student_id: UUID) -> str | None:
    try:
        cached = await cache_service.get(view_key(course_id, student_id))
    except RedisError:
        logger.warning("Cache read failed, treating as miss", exc_info=True)
        CACHE_OPERATIONS.labels(operation="error").inc()
        return None
    CACHE_OPERATIONS.labels(operation="hit" if cached is not None else "miss").inc()
    return cached


async def write_view(course_id: UUID, student_id: UUID, value: str) -> None:
    try:
        await cache_service.set(
            view_key(course_id, student_id), value, VIEW_TTL_SECONDS
        )
    except RedisError:
        logger.warning("Cache write failed, skipping", exc_info=True)
        CACHE_OPERATIONS.labels(operation="error").inc()


async def invalidate_student_view(course_id: UUID, student_id: UUID) -> None:
    try:
        await cache_service.delete(view_key(course_id, student_id))
    except RedisError:
        logger.warning("Cache invalidation failed", exc_info=True)
        CACHE_OPERATIONS.labels(operation="error").inc()


async def invalidate_course_views(course_id: UUID) -> None:
    try:
        await cache_service.delete_pattern(course_view_pattern(course_id))
    except RedisError:
        logger.warning("Cache invalidation failed", exc_info=True)
        CACHE_OPERATIONS.labels(operation="error").inc()


class PendingInvalidations:
    """Views a request has made stale, dropped once its writes are committed.

    Routers record what to drop; the progress store dependency calls
    ``flush()`` after the request's transaction has committed.  A view
    rebuilt between a write and its commit would otherwise be cached with
    the old state for up to VIEW_TTL_SECONDS.
    """

    def __init__(self) -> None:
        self._courses: set[UUID] = set()
        self._students: set[tuple[UUID, UUID]] = set()

    def course(self, course_id: UUID) -> None:
        self._courses.add(course_id)

    def student(self, course_id: UUID, student_id: UUID) -> None:
        self._students.add((course_id, student_id))

    async def flush(self) -> None:
        for course_id in self._courses:
            await invalidate_course_views(course_id)
        for course_id, student_id in self._students:
            if course_id not in self._courses:
                await invalidate_student_view(course_id, student_id)
        self._courses.clear()
        self._students.clear()
