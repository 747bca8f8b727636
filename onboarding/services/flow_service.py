"""Flow authoring: the live, editable content moderators work on.

Every mutation loads the flow row with for_update=True, so edits to one
flow serialize against each other and against snapshot creation (which
takes the same lock).  Ordering keys come from models/ordering.py; when
an insert would produce a key longer than MAX_KEY_LENGTH the whole
sibling list is rewritten with evenly spaced keys.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from onboarding.core.config import SETTINGS
from onboarding.core.errors import NotFoundError, ValidationError
from onboarding.models import ordering
from onboarding.models.flow import (
    Component,
    ComponentPayload,
    ComponentType,
    Flow,
    FlowContent,
    FlowSettings,
    FlowStep,
    can_be_activated,
)
from onboarding.repos.registry import Repositories

logger = logging.getLogger(__name__)

_FLOW_FIELDS = frozenset(
    {"name", "description", "is_required", "estimated_hours", "tags", "settings"}
)
_STEP_FIELDS = frozenset({"title", "description", "is_required", "is_enabled"})
_COMPONENT_FIELDS = frozenset(
    {
        "title",
        "description",
        "is_required",
        "is_enabled",
        "estimated_minutes",
        "max_attempts",
        "minimum_score",
        "payload",
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _check_fields(changes: dict[str, Any], allowed: frozenset[str], what: str) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"cannot update {what} field(s): {', '.join(sorted(unknown))}")


# ---- flows ----


async def create_flow(
    repos: Repositories,
    *,
    name: str,
    description: str = "",
    created_by: UUID | None = None,
    is_required: bool = False,
    estimated_hours: int = 0,
    tags: tuple[str, ...] = (),
    settings: FlowSettings | None = None,
) -> Flow:
    """Create a flow together with its first (empty) content version."""
    flow = Flow.new(
        name=name,
        description=description,
        created_by=created_by,
        is_required=is_required,
        estimated_hours=estimated_hours,
        tags=tags,
        settings=settings or FlowSettings(days_per_step=SETTINGS.default_days_per_step),
    )
    content = FlowContent.new(flow_id=flow.id, version=1, created_by=created_by)
    flow = replace(flow, active_content_id=content.id)
    await repos.flows.add(flow)
    await repos.flows.add_content(content)
    logger.info("Flow created flow_id=%s name=%r", flow.id, flow.name)
    return flow


async def get_flow(repos: Repositories, flow_id: UUID, *, for_update: bool = False) -> Flow:
    flow = await repos.flows.get_by_id(flow_id, for_update=for_update)
    if flow is None:
        raise NotFoundError("flow", flow_id)
    return flow


async def list_flows(repos: Repositories, *, include_inactive: bool = False) -> list[Flow]:
    return await repos.flows.list_flows(include_inactive=include_inactive)


async def update_flow(repos: Repositories, flow_id: UUID, **changes: Any) -> Flow:
    _check_fields(changes, _FLOW_FIELDS, "flow")
    flow = await get_flow(repos, flow_id, for_update=True)
    if "tags" in changes:
        changes["tags"] = tuple(changes["tags"])
    updated = replace(flow, **changes, updated_at=_utcnow())
    await repos.flows.update(updated)
    logger.info("Flow updated flow_id=%s fields=%s", flow_id, sorted(changes))
    return updated


async def deactivate_flow(repos: Repositories, flow_id: UUID) -> Flow:
    """Soft delete: the flow stops accepting assignments; history stays."""
    flow = await get_flow(repos, flow_id, for_update=True)
    if not flow.is_active:
        return flow
    updated = replace(flow, is_active=False, updated_at=_utcnow())
    await repos.flows.update(updated)
    logger.info("Flow deactivated flow_id=%s", flow_id)
    return updated


async def get_active_content(repos: Repositories, flow: Flow) -> FlowContent:
    content = None
    if flow.active_content_id is not None:
        content = await repos.flows.get_content(flow.active_content_id)
    if content is None:
        raise NotFoundError("active content of flow", flow.id)
    return content


async def list_contents(repos: Repositories, flow_id: UUID) -> list[FlowContent]:
    await get_flow(repos, flow_id)
    return await repos.flows.list_contents(flow_id)


async def create_content_version(
    repos: Repositories, flow_id: UUID, *, created_by: UUID | None = None
) -> FlowContent:
    """Clone the active content into version max + 1 and make it active."""
    flow = await get_flow(repos, flow_id, for_update=True)
    current = await get_active_content(repos, flow)
    version = await repos.flows.get_max_content_version(flow_id) + 1
    content = current.clone(version=version, created_by=created_by)
    await repos.flows.add_content(content)
    await repos.flows.update(
        replace(flow, active_content_id=content.id, updated_at=_utcnow())
    )
    logger.info("Content version created flow_id=%s version=%d", flow_id, version)
    return content


async def check_activation(repos: Repositories, flow_id: UUID) -> bool:
    flow = await get_flow(repos, flow_id)
    content = None
    if flow.active_content_id is not None:
        content = await repos.flows.get_content(flow.active_content_id)
    return can_be_activated(flow, content)


# ---- ordering helpers ----


def _key_at(keys: list[str], position: int) -> str:
    """Key for an item inserted at position within already-ordered keys."""
    low = keys[position - 1] if position > 0 else None
    high = keys[position] if position < len(keys) else None
    return ordering.between(low, high)


def _key_for_move(
    keys: list[str],
    ids: list[UUID],
    *,
    before_id: UUID | None,
    after_id: UUID | None,
    what: str,
) -> str:
    """Key placing an item right after after_id and/or right before before_id."""
    if before_id is None and after_id is None:
        raise ValidationError(f"moving a {what} needs before_id or after_id")
    if after_id is not None and after_id not in ids:
        raise NotFoundError(what, after_id)
    if before_id is not None and before_id not in ids:
        raise NotFoundError(what, before_id)

    if after_id is not None and before_id is not None:
        return ordering.between(keys[ids.index(after_id)], keys[ids.index(before_id)])
    if after_id is not None:
        return _key_at(keys, ids.index(after_id) + 1)
    assert before_id is not None
    return _key_at(keys, ids.index(before_id))


def _rebalance_steps(steps: list[FlowStep]) -> tuple[FlowStep, ...]:
    ordered = sorted(steps, key=lambda s: s.order)
    if not any(ordering.needs_rebalance(s.order) for s in ordered):
        return tuple(ordered)
    keys = ordering.initial_keys(len(ordered))
    return tuple(replace(s, order=k) for s, k in zip(ordered, keys))


def _rebalance_components(components: list[Component]) -> tuple[Component, ...]:
    ordered = sorted(components, key=lambda c: c.order)
    if not any(ordering.needs_rebalance(c.order) for c in ordered):
        return tuple(ordered)
    keys = ordering.initial_keys(len(ordered))
    return tuple(replace(c, order=k) for c, k in zip(ordered, keys))


async def _editable_content(repos: Repositories, flow_id: UUID) -> FlowContent:
    flow = await get_flow(repos, flow_id, for_update=True)
    return await get_active_content(repos, flow)


async def _save(repos: Repositories, content: FlowContent) -> None:
    await repos.flows.save_content(content)
    flow = await get_flow(repos, content.flow_id)
    await repos.flows.update(replace(flow, updated_at=_utcnow()))


def _require_step(content: FlowContent, step_id: UUID) -> FlowStep:
    step = content.step(step_id)
    if step is None:
        raise NotFoundError("step", step_id)
    return step


def _require_component(content: FlowContent, component_id: UUID) -> tuple[FlowStep, Component]:
    found = content.find_component(component_id)
    if found is None:
        raise NotFoundError("component", component_id)
    return found


# ---- steps ----


async def add_step(
    repos: Repositories,
    flow_id: UUID,
    *,
    title: str,
    description: str = "",
    is_required: bool = True,
    after_step_id: UUID | None = None,
) -> FlowStep:
    """Insert a step after after_step_id, or append it when that is None."""
    content = await _editable_content(repos, flow_id)
    ordered = content.ordered_steps()
    keys = [s.order for s in ordered]
    if after_step_id is None:
        position = len(ordered)
    else:
        ids = [s.id for s in ordered]
        if after_step_id not in ids:
            raise NotFoundError("step", after_step_id)
        position = ids.index(after_step_id) + 1

    step = FlowStep.new(
        title=title,
        order=_key_at(keys, position),
        description=description,
        is_required=is_required,
    )
    steps = _rebalance_steps([*ordered, step])
    await _save(repos, replace(content, steps=steps))
    logger.info("Step added flow_id=%s step_id=%s", flow_id, step.id)
    return next(s for s in steps if s.id == step.id)


async def update_step(
    repos: Repositories, flow_id: UUID, step_id: UUID, **changes: Any
) -> FlowStep:
    _check_fields(changes, _STEP_FIELDS, "step")
    content = await _editable_content(repos, flow_id)
    step = replace(_require_step(content, step_id), **changes)
    await _save(repos, content.with_step(step))
    return step


async def move_step(
    repos: Repositories,
    flow_id: UUID,
    step_id: UUID,
    *,
    before_step_id: UUID | None = None,
    after_step_id: UUID | None = None,
) -> FlowStep:
    content = await _editable_content(repos, flow_id)
    step = _require_step(content, step_id)
    others = [s for s in content.ordered_steps() if s.id != step_id]
    order = _key_for_move(
        [s.order for s in others],
        [s.id for s in others],
        before_id=before_step_id,
        after_id=after_step_id,
        what="step",
    )
    steps = _rebalance_steps([*others, replace(step, order=order)])
    await _save(repos, replace(content, steps=steps))
    return next(s for s in steps if s.id == step_id)


async def remove_step(repos: Repositories, flow_id: UUID, step_id: UUID) -> None:
    content = await _editable_content(repos, flow_id)
    _require_step(content, step_id)
    await _save(repos, content.without_step(step_id))
    logger.info("Step removed flow_id=%s step_id=%s", flow_id, step_id)


# ---- components ----


async def add_component(
    repos: Repositories,
    flow_id: UUID,
    step_id: UUID,
    *,
    type: ComponentType,
    title: str,
    payload: ComponentPayload,
    description: str = "",
    is_required: bool = True,
    estimated_minutes: int = 0,
    max_attempts: int | None = None,
    minimum_score: int | None = None,
    after_component_id: UUID | None = None,
) -> Component:
    content = await _editable_content(repos, flow_id)
    step = _require_step(content, step_id)
    ordered = step.ordered_components()
    if after_component_id is None:
        position = len(ordered)
    else:
        ids = [c.id for c in ordered]
        if after_component_id not in ids:
            raise NotFoundError("component", after_component_id)
        position = ids.index(after_component_id) + 1

    component = Component.new(
        type=type,
        title=title,
        order=_key_at([c.order for c in ordered], position),
        payload=payload,
        description=description,
        is_required=is_required,
        estimated_minutes=estimated_minutes,
        max_attempts=max_attempts,
        minimum_score=minimum_score,
    )
    components = _rebalance_components([*ordered, component])
    await _save(repos, content.with_step(replace(step, components=components)))
    logger.info(
        "Component added flow_id=%s step_id=%s component_id=%s type=%s",
        flow_id,
        step_id,
        component.id,
        type,
    )
    return next(c for c in components if c.id == component.id)


async def update_component(
    repos: Repositories, flow_id: UUID, component_id: UUID, **changes: Any
) -> Component:
    _check_fields(changes, _COMPONENT_FIELDS, "component")
    content = await _editable_content(repos, flow_id)
    step, component = _require_component(content, component_id)
    updated = replace(component, **changes)
    components = tuple(updated if c.id == component_id else c for c in step.components)
    await _save(repos, content.with_step(replace(step, components=components)))
    return updated


async def move_component(
    repos: Repositories,
    flow_id: UUID,
    component_id: UUID,
    *,
    before_component_id: UUID | None = None,
    after_component_id: UUID | None = None,
) -> Component:
    """Reorder a component within its step."""
    content = await _editable_content(repos, flow_id)
    step, component = _require_component(content, component_id)
    others = [c for c in step.ordered_components() if c.id != component_id]
    order = _key_for_move(
        [c.order for c in others],
        [c.id for c in others],
        before_id=before_component_id,
        after_id=after_component_id,
        what="component",
    )
    components = _rebalance_components([*others, replace(component, order=order)])
    await _save(repos, content.with_step(replace(step, components=components)))
    return next(c for c in components if c.id == component_id)


async def remove_component(repos: Repositories, flow_id: UUID, component_id: UUID) -> None:
    content = await _editable_content(repos, flow_id)
    step, _ = _require_component(content, component_id)
    components = tuple(c for c in step.components if c.id != component_id)
    await _save(repos, content.with_step(replace(step, components=components)))
    logger.info("Component removed flow_id=%s component_id=%s", flow_id, component_id)
