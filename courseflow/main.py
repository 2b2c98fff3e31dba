from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from courseflow.api.admin import router as admin_router
from courseflow.api.courses import router as courses_router
from courseflow.api.health import router as health_router
from courseflow.api.progress import router as progress_router
from courseflow.api.units import router as units_router
from courseflow.core.config import SETTINGS
from courseflow.core.logging import setup_logging
from courseflow.db.engine import lifespan_db
from courseflow.db.redis import lifespan_redis
from courseflow.middleware.metrics import MetricsMiddleware
from courseflow.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="courseflow",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext (outermost) → Metrics → route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(health_router)
app.include_router(admin_router)
app.include_router(courses_router)
app.include_router(units_router)
app.include_router(progress_router)

logger.info(
    "courseflow started  env=%s log_level=%s port=%d eager_quiz_unlock=%s "
    "recalc_batch_size=%d",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.eager_quiz_unlock,
    SETTINGS.recalc_batch_size,
)
