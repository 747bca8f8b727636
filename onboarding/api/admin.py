"""Maintenance endpoints (admin only).

POST /admin/snapshots/cleanup enqueues the snapshot_cleanup task for the
worker and answers 202; /admin/snapshots/cleanup/run does the same work
inline, for deployments without a worker.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from onboarding.api.dependencies import Repos, require_any_role
from onboarding.core.config import SETTINGS
from onboarding.models.principal import Principal
from onboarding.services import snapshot_service
from onboarding.services.task_queue import SNAPSHOT_CLEANUP, task_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

Admin = Annotated[Principal, Depends(require_any_role({"admin"}))]


class CleanupIn(BaseModel):
    older_than_days: int | None = Field(default=None, ge=1)
    keep_minimum: int | None = Field(default=None, ge=0)


class CleanupQueuedOut(BaseModel):
    task_id: str
    status: str


class CleanupDoneOut(BaseModel):
    deleted: int


def _params(body: CleanupIn | None) -> dict[str, int]:
    body = body or CleanupIn()
    return {
        "older_than_days": body.older_than_days or SETTINGS.snapshot_retention_days,
        "keep_minimum": (
            body.keep_minimum if body.keep_minimum is not None else SETTINGS.snapshot_keep_minimum
        ),
    }


@router.post(
    "/snapshots/cleanup",
    response_model=CleanupQueuedOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_snapshot_cleanup(
    principal: Admin, body: CleanupIn | None = None
) -> CleanupQueuedOut:
    params = _params(body)
    task = await task_queue.enqueue(SNAPSHOT_CLEANUP, params)
    logger.info(
        "Snapshot cleanup queued task_id=%s by user=%s params=%s",
        task.id,
        principal.user_id,
        params,
    )
    return CleanupQueuedOut(task_id=task.id, status="queued")


@router.post("/snapshots/cleanup/run", response_model=CleanupDoneOut)
async def run_snapshot_cleanup(
    principal: Admin, repos: Repos, body: CleanupIn | None = None
) -> CleanupDoneOut:
    logger.info("Snapshot cleanup run inline by user=%s", principal.user_id)
    deleted = await snapshot_service.cleanup_old_snapshots(repos, **_params(body))
    return CleanupDoneOut(deleted=deleted)
