from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel

from onboarding.api.dependencies import Repos, Staff
from onboarding.models.versioning import EntityVersion, VersionKind
from onboarding.services import versioning_service

router = APIRouter(prefix="/v1/versions", tags=["versions"])


class VersionCreateIn(BaseModel):
    kind: VersionKind
    original_id: UUID
    content: dict[str, Any]


class DeactivateIn(BaseModel):
    original_id: UUID


class DeactivateOut(BaseModel):
    original_id: UUID
    deactivated: int


class VersionOut(BaseModel):
    id: UUID
    kind: VersionKind
    original_id: UUID
    version: int
    is_active: bool
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime
    content: dict[str, Any]


def _out(v: EntityVersion) -> VersionOut:
    return VersionOut(
        id=v.id,
        kind=v.kind,
        original_id=v.original_id,
        version=v.version,
        is_active=v.is_active,
        created_by=v.created_by,
        created_at=v.created_at,
        updated_at=v.updated_at,
        content=v.content,
    )


@router.post("", response_model=VersionOut, status_code=status.HTTP_201_CREATED)
async def create_version(body: VersionCreateIn, principal: Staff, repos: Repos) -> VersionOut:
    version = await versioning_service.create_version(
        repos,
        kind=body.kind,
        original_id=body.original_id,
        content=body.content,
        created_by=principal.user_id,
    )
    return _out(version)


@router.get("", response_model=list[VersionOut])
async def list_versions(original_id: UUID, _principal: Staff, repos: Repos) -> list[VersionOut]:
    return [_out(v) for v in await versioning_service.list_versions(repos, original_id)]


@router.get("/active", response_model=VersionOut)
async def get_active_version(original_id: UUID, _principal: Staff, repos: Repos) -> VersionOut:
    return _out(await versioning_service.get_active(repos, original_id))


@router.post("/deactivate", response_model=DeactivateOut)
async def deactivate_versions(body: DeactivateIn, _principal: Staff, repos: Repos) -> DeactivateOut:
    count = await versioning_service.deactivate(repos, body.original_id)
    return DeactivateOut(original_id=body.original_id, deactivated=count)


@router.get("/{version_id}", response_model=VersionOut)
async def get_version(version_id: UUID, _principal: Staff, repos: Repos) -> VersionOut:
    return _out(await versioning_service.get_version(repos, version_id))


@router.post("/{version_id}/activate", response_model=VersionOut)
async def activate_version(version_id: UUID, _principal: Staff, repos: Repos) -> VersionOut:
    return _out(await versioning_service.activate(repos, version_id))


@router.delete("/{version_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_version(version_id: UUID, _principal: Staff, repos: Repos) -> None:
    await versioning_service.delete_version(repos, version_id)
