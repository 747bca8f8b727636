"""Snapshot endpoints.

Staff manage snapshots directly; assignees read theirs through
GET /v1/assignments/{id}/snapshot, which uses snapshot_out() with
answers hidden (no correct options, no task code words).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel

from onboarding.api.dependencies import Repos, Staff
from onboarding.models.flow import QuizPayload, TaskPayload, payload_to_dict
from onboarding.models.snapshot import ComponentSnapshot, FlowSnapshot, StepSnapshot
from onboarding.services import snapshot_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["snapshots"])


class ComponentSnapshotOut(BaseModel):
    id: UUID
    original_component_id: UUID
    type: str
    title: str
    description: str
    order: str
    is_required: bool
    estimated_minutes: int
    max_attempts: int | None
    minimum_score: int | None
    max_score: int
    payload: dict[str, Any]


class StepSnapshotOut(BaseModel):
    id: UUID
    original_step_id: UUID
    title: str
    description: str
    order: str
    is_required: bool
    estimated_minutes: int
    components: list[ComponentSnapshotOut]


class SnapshotOut(BaseModel):
    id: UUID
    original_flow_id: UUID
    version: int
    title: str
    description: str
    content_version: int
    flow_version_id: UUID | None
    created_by: UUID | None
    created_at: datetime
    is_required: bool
    estimated_hours: int
    tags: list[str]
    settings: dict[str, Any]
    total_components: int
    steps: list[StepSnapshotOut]


class IntegrityOut(BaseModel):
    snapshot_id: UUID
    valid: bool
    problems: list[str]


class DifferencesOut(BaseModel):
    snapshot_id: UUID
    has_changes: bool
    differences: list[str]


def _learner_payload(c: ComponentSnapshot) -> dict[str, Any]:
    data = payload_to_dict(c.payload)
    if isinstance(c.payload, TaskPayload):
        data.pop("code_word")
    elif isinstance(c.payload, QuizPayload):
        for question in data["questions"]:
            for option in question["options"]:
                option.pop("is_correct")
                option.pop("message")
    return data


def _component_out(c: ComponentSnapshot, reveal_answers: bool) -> ComponentSnapshotOut:
    return ComponentSnapshotOut(
        id=c.id,
        original_component_id=c.original_component_id,
        type=str(c.type),
        title=c.title,
        description=c.description,
        order=c.order,
        is_required=c.is_required,
        estimated_minutes=c.estimated_minutes,
        max_attempts=c.max_attempts,
        minimum_score=c.minimum_score,
        max_score=c.max_score,
        payload=payload_to_dict(c.payload) if reveal_answers else _learner_payload(c),
    )


def _step_out(s: StepSnapshot, reveal_answers: bool) -> StepSnapshotOut:
    return StepSnapshotOut(
        id=s.id,
        original_step_id=s.original_step_id,
        title=s.title,
        description=s.description,
        order=s.order,
        is_required=s.is_required,
        estimated_minutes=s.estimated_minutes,
        components=[_component_out(c, reveal_answers) for c in s.ordered_components()],
    )


def snapshot_out(snapshot: FlowSnapshot, *, reveal_answers: bool = True) -> SnapshotOut:
    return SnapshotOut(
        id=snapshot.id,
        original_flow_id=snapshot.original_flow_id,
        version=snapshot.version,
        title=snapshot.title,
        description=snapshot.description,
        content_version=snapshot.content_version,
        flow_version_id=snapshot.flow_version_id,
        created_by=snapshot.created_by,
        created_at=snapshot.created_at,
        is_required=snapshot.is_required,
        estimated_hours=snapshot.estimated_hours,
        tags=list(snapshot.tags),
        settings=snapshot.settings.to_dict(),
        total_components=snapshot.total_components_count(),
        steps=[_step_out(s, reveal_answers) for s in snapshot.ordered_steps()],
    )


# ---- per flow ----


@router.post(
    "/flows/{flow_id}/snapshots",
    response_model=SnapshotOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_snapshot(flow_id: UUID, principal: Staff, repos: Repos) -> SnapshotOut:
    snapshot = await snapshot_service.create_snapshot(
        repos, flow_id, created_by=principal.user_id
    )
    return snapshot_out(snapshot)


@router.get("/flows/{flow_id}/snapshots", response_model=list[SnapshotOut])
async def list_snapshots(flow_id: UUID, _principal: Staff, repos: Repos) -> list[SnapshotOut]:
    return [snapshot_out(s) for s in await snapshot_service.list_snapshots(repos, flow_id)]


@router.get("/flows/{flow_id}/snapshots/latest", response_model=SnapshotOut)
async def get_latest_snapshot(flow_id: UUID, _principal: Staff, repos: Repos) -> SnapshotOut:
    return snapshot_out(await snapshot_service.get_latest_snapshot(repos, flow_id))


@router.get("/flows/{flow_id}/snapshots/{version}", response_model=SnapshotOut)
async def get_snapshot_by_version(
    flow_id: UUID, version: int, _principal: Staff, repos: Repos
) -> SnapshotOut:
    snapshot = await snapshot_service.get_snapshot_by_version(repos, flow_id, version)
    return snapshot_out(snapshot)


# ---- by id ----


@router.get("/snapshots/{snapshot_id}", response_model=SnapshotOut)
async def get_snapshot(snapshot_id: UUID, _principal: Staff, repos: Repos) -> SnapshotOut:
    return snapshot_out(await snapshot_service.get_snapshot(repos, snapshot_id))


@router.get("/snapshots/{snapshot_id}/integrity", response_model=IntegrityOut)
async def check_integrity(snapshot_id: UUID, _principal: Staff, repos: Repos) -> IntegrityOut:
    snapshot = await snapshot_service.get_snapshot(repos, snapshot_id)
    problems = snapshot_service.validate_snapshot_integrity(snapshot)
    if problems:
        logger.warning(
            "Snapshot integrity problems snapshot_id=%s count=%d", snapshot_id, len(problems)
        )
    return IntegrityOut(snapshot_id=snapshot_id, valid=not problems, problems=problems)


@router.get("/snapshots/{snapshot_id}/differences", response_model=DifferencesOut)
async def get_differences(snapshot_id: UUID, _principal: Staff, repos: Repos) -> DifferencesOut:
    differences = await snapshot_service.get_snapshot_differences(repos, snapshot_id)
    return DifferencesOut(
        snapshot_id=snapshot_id, has_changes=bool(differences), differences=differences
    )


@router.delete("/snapshots/{snapshot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_snapshot(snapshot_id: UUID, _principal: Staff, repos: Repos) -> None:
    await snapshot_service.delete_snapshot(repos, snapshot_id)
