"""Flow authoring endpoints (staff only).

  /v1/flows                                  create, list
  /v1/flows/{flow_id}                        read, update, deactivate
  /v1/flows/{flow_id}/contents               content versions
  /v1/flows/{flow_id}/steps[/{step_id}]      step CRUD and reordering
  /v1/flows/{flow_id}/components/...         component CRUD and reordering
  /v1/flows/{flow_id}/activation-check       ready to publish?
  /v1/flows/{flow_id}/publish                freeze content into versions
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from onboarding.api.dependencies import Repos, Staff
from onboarding.core.config import SETTINGS
from onboarding.core.errors import ValidationError
from onboarding.models.flow import (
    Component,
    ComponentPayload,
    ComponentType,
    Flow,
    FlowContent,
    FlowSettings,
    FlowStep,
    payload_from_dict,
    payload_to_dict,
)
from onboarding.models.versioning import EntityVersion
from onboarding.services import flow_service, versioning_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/flows", tags=["flows"])


# ---- schemas ----


class FlowSettingsIn(BaseModel):
    days_per_step: int = Field(default_factory=lambda: SETTINGS.default_days_per_step)
    requires_sequential_completion: bool = True
    allow_self_pause: bool = True
    working_days_only: bool = False
    send_start_notification: bool = True
    send_progress_reminders: bool = True
    send_completion_notification: bool = True
    reminder_interval_days: int = 1


class FlowCreateIn(BaseModel):
    name: str
    description: str = ""
    is_required: bool = False
    estimated_hours: int = 0
    tags: list[str] = Field(default_factory=list)
    settings: FlowSettingsIn | None = None


class FlowUpdateIn(BaseModel):
    name: str | None = None
    description: str | None = None
    is_required: bool | None = None
    estimated_hours: int | None = None
    tags: list[str] | None = None
    settings: FlowSettingsIn | None = None


class FlowOut(BaseModel):
    id: UUID
    name: str
    description: str
    is_active: bool
    is_required: bool
    estimated_hours: int
    tags: list[str]
    settings: dict[str, Any]
    active_content_id: UUID | None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime


class ComponentOut(BaseModel):
    id: UUID
    type: ComponentType
    title: str
    description: str
    order: str
    is_required: bool
    is_enabled: bool
    estimated_minutes: int
    max_attempts: int | None
    minimum_score: int | None
    max_score: int
    payload: dict[str, Any]


class StepOut(BaseModel):
    id: UUID
    title: str
    description: str
    order: str
    is_required: bool
    is_enabled: bool
    estimated_minutes: int
    components: list[ComponentOut] = Field(default_factory=list)


class ContentOut(BaseModel):
    id: UUID
    flow_id: UUID
    version: int
    is_active: bool
    created_at: datetime
    created_by: UUID | None
    steps: list[StepOut]


class StepCreateIn(BaseModel):
    title: str
    description: str = ""
    is_required: bool = True
    after_step_id: UUID | None = None


class StepUpdateIn(BaseModel):
    title: str | None = None
    description: str | None = None
    is_required: bool | None = None
    is_enabled: bool | None = None


class MoveIn(BaseModel):
    before_id: UUID | None = None
    after_id: UUID | None = None


class ComponentCreateIn(BaseModel):
    type: ComponentType
    title: str
    payload: dict[str, Any]
    description: str = ""
    is_required: bool = True
    estimated_minutes: int = 0
    max_attempts: int | None = None
    minimum_score: int | None = None
    after_component_id: UUID | None = None


class ComponentUpdateIn(BaseModel):
    title: str | None = None
    description: str | None = None
    is_required: bool | None = None
    is_enabled: bool | None = None
    estimated_minutes: int | None = None
    max_attempts: int | None = None
    minimum_score: int | None = None
    payload: dict[str, Any] | None = None


class ActivationCheckOut(BaseModel):
    flow_id: UUID
    can_be_activated: bool


class VersionRefOut(BaseModel):
    id: UUID
    kind: str
    original_id: UUID
    version: int
    is_active: bool


class PublishOut(BaseModel):
    flow_version: VersionRefOut
    step_versions: list[VersionRefOut]
    component_versions: list[VersionRefOut]


class PublishIn(BaseModel):
    activate: bool = True


# ---- converters ----


def flow_out(flow: Flow) -> FlowOut:
    return FlowOut(
        id=flow.id,
        name=flow.name,
        description=flow.description,
        is_active=flow.is_active,
        is_required=flow.is_required,
        estimated_hours=flow.estimated_hours,
        tags=list(flow.tags),
        settings=flow.settings.to_dict(),
        active_content_id=flow.active_content_id,
        created_by=flow.created_by,
        created_at=flow.created_at,
        updated_at=flow.updated_at,
    )


def _component_out(c: Component) -> ComponentOut:
    return ComponentOut(
        id=c.id,
        type=c.type,
        title=c.title,
        description=c.description,
        order=c.order,
        is_required=c.is_required,
        is_enabled=c.is_enabled,
        estimated_minutes=c.estimated_minutes,
        max_attempts=c.max_attempts,
        minimum_score=c.minimum_score,
        max_score=c.max_score,
        payload=payload_to_dict(c.payload),
    )


def _step_out(s: FlowStep) -> StepOut:
    return StepOut(
        id=s.id,
        title=s.title,
        description=s.description,
        order=s.order,
        is_required=s.is_required,
        is_enabled=s.is_enabled,
        estimated_minutes=s.estimated_minutes,
        components=[_component_out(c) for c in s.ordered_components()],
    )


def _content_out(content: FlowContent, flow: Flow) -> ContentOut:
    return ContentOut(
        id=content.id,
        flow_id=content.flow_id,
        version=content.version,
        is_active=content.id == flow.active_content_id,
        created_at=content.created_at,
        created_by=content.created_by,
        steps=[_step_out(s) for s in content.ordered_steps()],
    )


def _payload(component_type: ComponentType, data: dict[str, Any]) -> ComponentPayload:
    try:
        return payload_from_dict(component_type, data)
    except (KeyError, TypeError) as e:
        raise ValidationError(f"invalid {component_type} payload: {e}") from None


def _version_ref(v: EntityVersion) -> VersionRefOut:
    return VersionRefOut(
        id=v.id,
        kind=str(v.kind),
        original_id=v.original_id,
        version=v.version,
        is_active=v.is_active,
    )


# ---- flows ----


@router.post("", response_model=FlowOut, status_code=status.HTTP_201_CREATED)
async def create_flow(body: FlowCreateIn, principal: Staff, repos: Repos) -> FlowOut:
    flow = await flow_service.create_flow(
        repos,
        name=body.name,
        description=body.description,
        created_by=principal.user_id,
        is_required=body.is_required,
        estimated_hours=body.estimated_hours,
        tags=tuple(body.tags),
        settings=FlowSettings(**body.settings.model_dump()) if body.settings else None,
    )
    return flow_out(flow)


@router.get("", response_model=list[FlowOut])
async def list_flows(
    _principal: Staff, repos: Repos, include_inactive: bool = False
) -> list[FlowOut]:
    flows = await flow_service.list_flows(repos, include_inactive=include_inactive)
    return [flow_out(f) for f in flows]


@router.get("/{flow_id}", response_model=FlowOut)
async def get_flow(flow_id: UUID, _principal: Staff, repos: Repos) -> FlowOut:
    return flow_out(await flow_service.get_flow(repos, flow_id))


@router.patch("/{flow_id}", response_model=FlowOut)
async def update_flow(
    flow_id: UUID, body: FlowUpdateIn, _principal: Staff, repos: Repos
) -> FlowOut:
    changes = body.model_dump(exclude_unset=True)
    if body.settings is not None:
        changes["settings"] = FlowSettings(**body.settings.model_dump())
    return flow_out(await flow_service.update_flow(repos, flow_id, **changes))


@router.delete("/{flow_id}", response_model=FlowOut)
async def deactivate_flow(flow_id: UUID, principal: Staff, repos: Repos) -> FlowOut:
    logger.info("Flow deactivation requested flow_id=%s by user=%s", flow_id, principal.user_id)
    return flow_out(await flow_service.deactivate_flow(repos, flow_id))


@router.get("/{flow_id}/activation-check", response_model=ActivationCheckOut)
async def activation_check(
    flow_id: UUID, _principal: Staff, repos: Repos
) -> ActivationCheckOut:
    ready = await flow_service.check_activation(repos, flow_id)
    return ActivationCheckOut(flow_id=flow_id, can_be_activated=ready)


@router.post("/{flow_id}/publish", response_model=PublishOut)
async def publish_flow(
    flow_id: UUID, principal: Staff, repos: Repos, body: PublishIn | None = None
) -> PublishOut:
    result = await versioning_service.publish_flow(
        repos,
        flow_id,
        created_by=principal.user_id,
        activate_versions=body.activate if body else True,
    )
    return PublishOut(
        flow_version=_version_ref(result.flow_version),
        step_versions=[_version_ref(v) for v in result.step_versions],
        component_versions=[_version_ref(v) for v in result.component_versions],
    )


# ---- content versions ----


@router.get("/{flow_id}/content", response_model=ContentOut)
async def get_active_content(flow_id: UUID, _principal: Staff, repos: Repos) -> ContentOut:
    flow = await flow_service.get_flow(repos, flow_id)
    content = await flow_service.get_active_content(repos, flow)
    return _content_out(content, flow)


@router.get("/{flow_id}/contents", response_model=list[ContentOut])
async def list_contents(flow_id: UUID, _principal: Staff, repos: Repos) -> list[ContentOut]:
    flow = await flow_service.get_flow(repos, flow_id)
    contents = await flow_service.list_contents(repos, flow_id)
    return [_content_out(c, flow) for c in contents]


@router.post(
    "/{flow_id}/contents", response_model=ContentOut, status_code=status.HTTP_201_CREATED
)
async def create_content_version(flow_id: UUID, principal: Staff, repos: Repos) -> ContentOut:
    content = await flow_service.create_content_version(
        repos, flow_id, created_by=principal.user_id
    )
    flow = await flow_service.get_flow(repos, flow_id)
    return _content_out(content, flow)


# ---- steps ----


@router.post("/{flow_id}/steps", response_model=StepOut, status_code=status.HTTP_201_CREATED)
async def add_step(flow_id: UUID, body: StepCreateIn, _principal: Staff, repos: Repos) -> StepOut:
    step = await flow_service.add_step(
        repos,
        flow_id,
        title=body.title,
        description=body.description,
        is_required=body.is_required,
        after_step_id=body.after_step_id,
    )
    return _step_out(step)


@router.patch("/{flow_id}/steps/{step_id}", response_model=StepOut)
async def update_step(
    flow_id: UUID, step_id: UUID, body: StepUpdateIn, _principal: Staff, repos: Repos
) -> StepOut:
    step = await flow_service.update_step(
        repos, flow_id, step_id, **body.model_dump(exclude_unset=True)
    )
    return _step_out(step)


@router.post("/{flow_id}/steps/{step_id}/move", response_model=StepOut)
async def move_step(
    flow_id: UUID, step_id: UUID, body: MoveIn, _principal: Staff, repos: Repos
) -> StepOut:
    step = await flow_service.move_step(
        repos, flow_id, step_id, before_step_id=body.before_id, after_step_id=body.after_id
    )
    return _step_out(step)


@router.delete("/{flow_id}/steps/{step_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_step(flow_id: UUID, step_id: UUID, _principal: Staff, repos: Repos) -> None:
    await flow_service.remove_step(repos, flow_id, step_id)


# ---- components ----


@router.post(
    "/{flow_id}/steps/{step_id}/components",
    response_model=ComponentOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_component(
    flow_id: UUID, step_id: UUID, body: ComponentCreateIn, _principal: Staff, repos: Repos
) -> ComponentOut:
    component = await flow_service.add_component(
        repos,
        flow_id,
        step_id,
        type=body.type,
        title=body.title,
        payload=_payload(body.type, body.payload),
        description=body.description,
        is_required=body.is_required,
        estimated_minutes=body.estimated_minutes,
        max_attempts=body.max_attempts,
        minimum_score=body.minimum_score,
        after_component_id=body.after_component_id,
    )
    return _component_out(component)


@router.patch("/{flow_id}/components/{component_id}", response_model=ComponentOut)
async def update_component(
    flow_id: UUID, component_id: UUID, body: ComponentUpdateIn, _principal: Staff, repos: Repos
) -> ComponentOut:
    changes = body.model_dump(exclude_unset=True)
    if body.payload is not None:
        content = await flow_service.get_active_content(
            repos, await flow_service.get_flow(repos, flow_id)
        )
        found = content.find_component(component_id)
        if found is not None:
            changes["payload"] = _payload(found[1].type, body.payload)
    component = await flow_service.update_component(repos, flow_id, component_id, **changes)
    return _component_out(component)


@router.post("/{flow_id}/components/{component_id}/move", response_model=ComponentOut)
async def move_component(
    flow_id: UUID, component_id: UUID, body: MoveIn, _principal: Staff, repos: Repos
) -> ComponentOut:
    component = await flow_service.move_component(
        repos,
        flow_id,
        component_id,
        before_component_id=body.before_id,
        after_component_id=body.after_id,
    )
    return _component_out(component)


@router.delete(
    "/{flow_id}/components/{component_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_component(
    flow_id: UUID, component_id: UUID, _principal: Staff, repos: Repos
) -> None:
    await flow_service.remove_component(repos, flow_id, component_id)
