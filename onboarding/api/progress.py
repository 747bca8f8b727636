"""Learner progress endpoints.

  GET  /v1/assignments/{id}/progress                         progress tree
  POST /v1/assignments/{id}/progress/components/{cid}/complete
  POST /v1/assignments/{id}/progress/components/{cid}/interact
  POST /v1/assignments/{id}/progress/components/{cid}/time

cid is the component *snapshot* id, as returned by
GET /v1/assignments/{id}/snapshot.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from onboarding.api.assignments import AssignmentOut, assignment_out
from onboarding.api.dependencies import CurrentUser, Repos, ensure_can_act, ensure_can_view
from onboarding.models.principal import Principal
from onboarding.models.progress import ComponentProgress, FlowProgress, StepProgress
from onboarding.repos.registry import Repositories
from onboarding.services import assignment_service, progress_service
from onboarding.services.progress_service import CompletionResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/assignments/{assignment_id}/progress", tags=["progress"])


class ComponentProgressOut(BaseModel):
    component_snapshot_id: UUID
    is_required: bool
    status: str
    attempts_count: int
    best_score: int | None
    last_score: int | None
    time_spent_minutes: int
    started_at: datetime | None
    completed_at: datetime | None


class StepProgressOut(BaseModel):
    step_snapshot_id: UUID
    is_required: bool
    is_accessible: bool
    is_complete: bool
    progress_percent: int
    completed_components: int
    total_components: int
    started_at: datetime | None
    completed_at: datetime | None
    components: list[ComponentProgressOut]


class ProgressOut(BaseModel):
    assignment_id: UUID
    snapshot_id: UUID
    is_sequential: bool
    is_complete: bool
    overall_percent: int
    completed_steps: int
    total_steps: int
    completed_components: int
    total_components: int
    time_spent_minutes: int
    total_best_score: int
    current_step_id: UUID | None
    started_at: datetime | None
    completed_at: datetime | None
    last_activity_at: datetime | None
    steps: list[StepProgressOut]


class CompleteComponentIn(BaseModel):
    score: int | None = Field(default=None, ge=0)


class InteractionIn(BaseModel):
    answers: dict[int, int] | None = None
    answer: str | None = None
    time_spent_minutes: int | None = Field(default=None, gt=0)


class TimeSpentIn(BaseModel):
    minutes: int = Field(gt=0)


class CompletionOut(BaseModel):
    component_completed: bool
    already_completed: bool
    step_completed: bool
    next_step_unlocked: bool
    flow_completed: bool
    score: int | None
    max_score: int | None
    passed: bool | None
    overall_percent: int
    assignment: AssignmentOut


def _component_out(c: ComponentProgress) -> ComponentProgressOut:
    return ComponentProgressOut(
        component_snapshot_id=c.component_snapshot_id,
        is_required=c.is_required,
        status=str(c.status),
        attempts_count=c.attempts_count,
        best_score=c.best_score,
        last_score=c.last_score,
        time_spent_minutes=c.time_spent_minutes,
        started_at=c.started_at,
        completed_at=c.completed_at,
    )


def _step_out(s: StepProgress) -> StepProgressOut:
    return StepProgressOut(
        step_snapshot_id=s.step_snapshot_id,
        is_required=s.is_required,
        is_accessible=s.is_accessible,
        is_complete=s.is_complete,
        progress_percent=s.progress_percent,
        completed_components=s.completed_components_count,
        total_components=s.total_components_count,
        started_at=s.started_at,
        completed_at=s.completed_at,
        components=[_component_out(c) for c in sorted(s.components, key=lambda c: c.order)],
    )


def progress_out(p: FlowProgress) -> ProgressOut:
    return ProgressOut(
        assignment_id=p.assignment_id,
        snapshot_id=p.snapshot_id,
        is_sequential=p.is_sequential,
        is_complete=p.is_complete,
        overall_percent=p.overall_percent,
        completed_steps=p.completed_steps_count,
        total_steps=p.total_steps_count,
        completed_components=p.completed_components_count,
        total_components=p.total_components_count,
        time_spent_minutes=p.time_spent_minutes,
        total_best_score=p.total_best_score,
        current_step_id=p.current_step_id,
        started_at=p.started_at,
        completed_at=p.completed_at,
        last_activity_at=p.last_activity_at,
        steps=[_step_out(s) for s in sorted(p.steps, key=lambda s: s.order)],
    )


def _completion_out(result: CompletionResult) -> CompletionOut:
    return CompletionOut(
        component_completed=result.component_completed,
        already_completed=result.already_completed,
        step_completed=result.step_completed,
        next_step_unlocked=result.next_step_unlocked,
        flow_completed=result.flow_completed,
        score=result.score,
        max_score=result.max_score,
        passed=result.passed,
        overall_percent=result.overall_percent,
        assignment=assignment_out(result.assignment),
    )


async def _authorize(repos: Repositories, principal: Principal, assignment_id: UUID) -> None:
    ensure_can_act(principal, await assignment_service.get_assignment(repos, assignment_id))


@router.get("", response_model=ProgressOut)
async def get_progress(assignment_id: UUID, principal: CurrentUser, repos: Repos) -> ProgressOut:
    ensure_can_view(principal, await assignment_service.get_assignment(repos, assignment_id))
    return progress_out(await progress_service.get_progress(repos, assignment_id))


@router.post("/components/{component_id}/complete", response_model=CompletionOut)
async def complete_component(
    assignment_id: UUID,
    component_id: UUID,
    principal: CurrentUser,
    repos: Repos,
    body: CompleteComponentIn | None = None,
) -> CompletionOut:
    await _authorize(repos, principal, assignment_id)
    score = body.score if body else None
    if score is not None and not principal.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only staff can record a score directly",
        )
    result = await progress_service.complete_component(
        repos, assignment_id, component_id, score=score
    )
    return _completion_out(result)


@router.post("/components/{component_id}/interact", response_model=CompletionOut)
async def interact(
    assignment_id: UUID,
    component_id: UUID,
    body: InteractionIn,
    principal: CurrentUser,
    repos: Repos,
) -> CompletionOut:
    await _authorize(repos, principal, assignment_id)
    result = await progress_service.record_interaction(
        repos,
        assignment_id,
        component_id,
        answers=body.answers,
        answer=body.answer,
        time_spent_minutes=body.time_spent_minutes,
    )
    return _completion_out(result)


@router.post("/components/{component_id}/time", response_model=CompletionOut)
async def track_time(
    assignment_id: UUID,
    component_id: UUID,
    body: TimeSpentIn,
    principal: CurrentUser,
    repos: Repos,
) -> CompletionOut:
    await _authorize(repos, principal, assignment_id)
    result = await progress_service.add_time_spent(
        repos, assignment_id, component_id, body.minutes
    )
    return _completion_out(result)
