"""Assignment endpoints.

Staff assign flows, cancel assignments and list anyone's work.  The
assignee starts, pauses, resumes and completes their own assignment and
leaves feedback once it is done; a buddy can read it.  An override
completion (completion_notes) or an explicit final_score is staff-only.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from onboarding.api.dependencies import CurrentUser, Repos, Staff, ensure_can_act, ensure_can_view
from onboarding.api.snapshots import SnapshotOut, snapshot_out
from onboarding.models.assignment import AssignmentStatus, FlowAssignment
from onboarding.services import assignment_service, snapshot_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/assignments", tags=["assignments"])

StatusFilter = Annotated[AssignmentStatus | None, Query(alias="status")]


class AssignIn(BaseModel):
    user_id: UUID
    flow_id: UUID
    buddy_id: UUID | None = None
    due_date: datetime | None = None


class PauseIn(BaseModel):
    reason: str


class CompleteIn(BaseModel):
    final_score: int | None = None
    completion_notes: str | None = None


class CancelIn(BaseModel):
    reason: str | None = None


class FeedbackIn(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: str | None = None


class AssignmentOut(BaseModel):
    id: UUID
    user_id: UUID
    flow_id: UUID
    snapshot_id: UUID | None
    flow_version_id: UUID | None
    buddy_id: UUID | None
    assigned_by: UUID
    status: AssignmentStatus
    assigned_at: datetime
    due_date: datetime
    started_at: datetime | None
    completed_at: datetime | None
    paused_at: datetime | None
    pause_reason: str | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    completion_notes: str | None
    total_steps: int
    completed_steps: int
    progress_percent: int
    is_overdue: bool
    final_score: int | None
    user_rating: int | None
    user_feedback: str | None
    row_version: int


def assignment_out(a: FlowAssignment, now: datetime | None = None) -> AssignmentOut:
    return AssignmentOut(
        id=a.id,
        user_id=a.user_id,
        flow_id=a.flow_id,
        snapshot_id=a.snapshot_id,
        flow_version_id=a.flow_version_id,
        buddy_id=a.buddy_id,
        assigned_by=a.assigned_by,
        status=a.status,
        assigned_at=a.assigned_at,
        due_date=a.due_date,
        started_at=a.started_at,
        completed_at=a.completed_at,
        paused_at=a.paused_at,
        pause_reason=a.pause_reason,
        cancelled_at=a.cancelled_at,
        cancellation_reason=a.cancellation_reason,
        completion_notes=a.completion_notes,
        total_steps=a.total_steps,
        completed_steps=a.completed_steps,
        progress_percent=a.progress_percent,
        is_overdue=a.is_overdue(now or datetime.now(UTC)),
        final_score=a.final_score,
        user_rating=a.user_rating,
        user_feedback=a.user_feedback,
        row_version=a.row_version,
    )


# ---- staff ----


@router.post("", response_model=AssignmentOut, status_code=status.HTTP_201_CREATED)
async def assign_flow(body: AssignIn, principal: Staff, repos: Repos) -> AssignmentOut:
    assignment = await assignment_service.assign_flow(
        repos,
        user_id=body.user_id,
        flow_id=body.flow_id,
        assigned_by=principal.user_id,
        buddy_id=body.buddy_id,
        due_date=body.due_date,
    )
    return assignment_out(assignment)


@router.get("/overdue", response_model=list[AssignmentOut])
async def list_overdue(_principal: Staff, repos: Repos) -> list[AssignmentOut]:
    return [assignment_out(a) for a in await assignment_service.list_overdue(repos)]


@router.get("/users/{user_id}", response_model=list[AssignmentOut])
async def list_for_user(
    user_id: UUID,
    principal: CurrentUser,
    repos: Repos,
    status_filter: StatusFilter = None,
) -> list[AssignmentOut]:
    if user_id != principal.user_id and not principal.is_staff:
        logger.warning(
            "Access denied: user=%s listing assignments of user=%s", principal.user_id, user_id
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your assignments")
    assignments = await assignment_service.list_for_user(repos, user_id, status=status_filter)
    return [assignment_out(a) for a in assignments]


@router.post("/{assignment_id}/cancel", response_model=AssignmentOut)
async def cancel(
    assignment_id: UUID, _principal: Staff, repos: Repos, body: CancelIn | None = None
) -> AssignmentOut:
    assignment = await assignment_service.cancel(
        repos, assignment_id, body.reason if body else None
    )
    return assignment_out(assignment)


# ---- assignee ----


@router.get("/me", response_model=list[AssignmentOut])
async def list_mine(
    principal: CurrentUser, repos: Repos, status_filter: StatusFilter = None
) -> list[AssignmentOut]:
    assignments = await assignment_service.list_for_user(
        repos, principal.user_id, status=status_filter
    )
    return [assignment_out(a) for a in assignments]


@router.get("/{assignment_id}", response_model=AssignmentOut)
async def get_assignment(
    assignment_id: UUID, principal: CurrentUser, repos: Repos
) -> AssignmentOut:
    assignment = await assignment_service.get_assignment(repos, assignment_id)
    ensure_can_view(principal, assignment)
    return assignment_out(assignment)


@router.get("/{assignment_id}/snapshot", response_model=SnapshotOut)
async def get_assignment_snapshot(
    assignment_id: UUID, principal: CurrentUser, repos: Repos
) -> SnapshotOut:
    assignment = await assignment_service.get_assignment(repos, assignment_id)
    ensure_can_view(principal, assignment)
    snapshot = await snapshot_service.get_snapshot_for_assignment(repos, assignment_id)
    return snapshot_out(snapshot, reveal_answers=principal.is_staff)


@router.post("/{assignment_id}/start", response_model=AssignmentOut)
async def start(assignment_id: UUID, principal: CurrentUser, repos: Repos) -> AssignmentOut:
    ensure_can_act(principal, await assignment_service.get_assignment(repos, assignment_id))
    return assignment_out(await assignment_service.start(repos, assignment_id))


@router.post("/{assignment_id}/pause", response_model=AssignmentOut)
async def pause(
    assignment_id: UUID, body: PauseIn, principal: CurrentUser, repos: Repos
) -> AssignmentOut:
    ensure_can_act(principal, await assignment_service.get_assignment(repos, assignment_id))
    assignment = await assignment_service.pause(
        repos, assignment_id, body.reason, by_staff=principal.is_staff
    )
    return assignment_out(assignment)


@router.post("/{assignment_id}/resume", response_model=AssignmentOut)
async def resume(assignment_id: UUID, principal: CurrentUser, repos: Repos) -> AssignmentOut:
    ensure_can_act(principal, await assignment_service.get_assignment(repos, assignment_id))
    return assignment_out(await assignment_service.resume(repos, assignment_id))


@router.post("/{assignment_id}/complete", response_model=AssignmentOut)
async def complete(
    assignment_id: UUID,
    principal: CurrentUser,
    repos: Repos,
    body: CompleteIn | None = None,
) -> AssignmentOut:
    ensure_can_act(principal, await assignment_service.get_assignment(repos, assignment_id))
    body = body or CompleteIn()
    if (body.final_score is not None or body.completion_notes) and not principal.is_staff:
        logger.warning(
            "Override completion denied user=%s assignment=%s", principal.user_id, assignment_id
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only staff can override completion or set a score",
        )
    assignment = await assignment_service.complete(
        repos,
        assignment_id,
        final_score=body.final_score,
        completion_notes=body.completion_notes,
    )
    return assignment_out(assignment)


@router.post("/{assignment_id}/feedback", response_model=AssignmentOut)
async def submit_feedback(
    assignment_id: UUID, body: FeedbackIn, principal: CurrentUser, repos: Repos
) -> AssignmentOut:
    assignment = await assignment_service.get_assignment(repos, assignment_id)
    if assignment.user_id != principal.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Only the assignee can leave feedback"
        )
    assignment = await assignment_service.submit_feedback(
        repos, assignment_id, body.rating, body.feedback
    )
    return assignment_out(assignment)
