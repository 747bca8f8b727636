"""Liveness and readiness endpoints.

/health answers "is the process alive" and reports each backing
service; it stays 200 when degraded so the orchestrator does not
restart a process that is merely cut off from Postgres.

/ready answers "can this instance take traffic".  Postgres holds every
flow, snapshot and assignment, so a configured but unreachable database
makes the instance unready (503).  Redis only carries cleanup tasks and
never affects readiness.
"""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from onboarding.db.engine import check_database
from onboarding.db.redis import check_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await check_database(),
        "redis": await check_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await check_database() == "degraded":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
