from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from onboarding.api.admin import router as admin_router
from onboarding.api.assignments import router as assignments_router
from onboarding.api.flows import router as flows_router
from onboarding.api.health import router as health_router
from onboarding.api.metrics_endpoint import router as metrics_router
from onboarding.api.progress import router as progress_router
from onboarding.api.snapshots import router as snapshots_router
from onboarding.api.versions import router as versions_router
from onboarding.core.config import SETTINGS
from onboarding.core.exception_handlers import register_exception_handlers
from onboarding.core.logging import setup_logging
from onboarding.db.engine import lifespan_db
from onboarding.db.redis import lifespan_redis
from onboarding.middleware.metrics import MetricsMiddleware
from onboarding.middleware.request_context import RequestContextMiddleware

setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so Redis is torn down before the database engine
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="onboarding-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

register_exception_handlers(app)

# Last added runs first: RequestContext -> Metrics -> route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(flows_router)
app.include_router(versions_router)
app.include_router(snapshots_router)
app.include_router(assignments_router)
app.include_router(progress_router)
app.include_router(admin_router)

logger.info(
    "onboarding-service started  env=%s log_level=%s port=%d docs=%s storage=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
    "postgres" if SETTINGS.database_url else "memory",
)
