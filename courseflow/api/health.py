"""Health, readiness and metrics endpoints.

  /health   liveness.  200 while the process can answer; the body reports
            each backing service so a partial outage is visible without
            getting the container restarted.
  /ready    readiness.  503 when the progress database is configured but
            unreachable: without it no unlock can be written.  Redis only
            backs the view cache, so it never makes the instance unready.
  /metrics  Prometheus text exposition (scraped, not JSON).
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from courseflow.db.engine import check_connection as check_database
from courseflow.db.redis import check_connection as check_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    """Liveness probe plus dependency status.

    Returns 200 even when degraded; the status field carries the verdict.
    """
    checks = {
        "database": await check_database(),
        "redis": await check_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose all Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
