"""Redis connection management.

Mirrors engine.py: with REDIS_URL set there is one shared connection
pool; without it redis_pool is None and the maintenance task queue
(services/task_queue.py) falls back to an in-process list.

Redis carries only the snapshot_cleanup queue.  Nothing authoritative
lives there: losing Redis loses queued cleanup requests, never flows,
assignments or progress.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from onboarding.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=10,
    )
else:
    redis_pool = None


async def check_redis() -> str:
    """Return "ok", "degraded" or "not_configured" for the health endpoint."""
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
    except Exception:
        logger.exception("Redis health check failed")
        return "degraded"
    return "ok"


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, mirroring lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, maintenance queue is in-process")
        yield
        return

    # An unreachable Redis only delays cleanup, so start anyway
    if await check_redis() == "ok":
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    else:
        logger.warning("Redis unreachable on startup, cleanup tasks will fail")

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
