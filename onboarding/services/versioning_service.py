"""Immutable numbered versions of flows, steps and components.

Versions share an original_id and are numbered 1, 2, 3 ... without gaps.
At most one version per original_id is active; the repositories make
activation atomic (see repos/version_repo.py, repos/pg_version_repo.py).
Re-activating the active version changes nothing: no updated_at bump,
no log line, no metric.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from onboarding.core.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    ValidationError,
    VersionInUseError,
)
from onboarding.core.metrics import CONCURRENCY_CONFLICTS, VERSION_ACTIVATIONS
from onboarding.models.flow import can_be_activated
from onboarding.models.versioning import EntityVersion, VersionKind
from onboarding.repos.registry import Repositories
from onboarding.services import flow_service

logger = logging.getLogger(__name__)


async def create_version(
    repos: Repositories,
    *,
    kind: VersionKind,
    original_id: UUID,
    content: dict[str, Any],
    created_by: UUID | None = None,
) -> EntityVersion:
    """Append version max + 1 (inactive).

    Two writers racing for the same number collide on the unique
    (original_id, version) constraint; the loser re-reads the maximum
    and tries once more.
    """
    for attempt in (1, 2):
        number = await repos.versions.get_max_version(original_id) + 1
        version = EntityVersion.new(
            kind=kind,
            original_id=original_id,
            version=number,
            content=content,
            created_by=created_by,
        )
        try:
            await repos.versions.add(version)
        except ConcurrencyConflictError:
            CONCURRENCY_CONFLICTS.labels(aggregate="version").inc()
            if attempt == 2:
                raise
            logger.warning(
                "Version number %d of %s taken, retrying", number, original_id
            )
            continue
        logger.info(
            "Version created kind=%s original_id=%s version=%d",
            kind,
            original_id,
            number,
        )
        return version
    raise AssertionError("unreachable")


async def get_version(repos: Repositories, version_id: UUID) -> EntityVersion:
    version = await repos.versions.get_by_id(version_id)
    if version is None:
        raise NotFoundError("version", version_id)
    return version


async def activate(
    repos: Repositories, version_id: UUID, *, now: datetime | None = None
) -> EntityVersion:
    existing = await get_version(repos, version_id)
    if existing.is_active:
        return existing

    now = now or datetime.now(UTC)
    try:
        activated = await repos.versions.activate(version_id, now)
    except KeyError:
        raise NotFoundError("version", version_id) from None

    # The repo only stamps updated_at when it actually flipped the flag
    if activated.updated_at == now:
        VERSION_ACTIVATIONS.labels(kind=str(activated.kind)).inc()
        logger.info(
            "Version activated kind=%s original_id=%s version=%d",
            activated.kind,
            activated.original_id,
            activated.version,
        )
    return activated


async def deactivate(
    repos: Repositories, original_id: UUID, *, now: datetime | None = None
) -> int:
    """Deactivate whatever is active for original_id; zero is fine."""
    count = await repos.versions.deactivate_all(original_id, now or datetime.now(UTC))
    if count:
        logger.info("Versions deactivated original_id=%s", original_id)
    return count


async def get_active(repos: Repositories, original_id: UUID) -> EntityVersion:
    version = await repos.versions.get_active(original_id)
    if version is None:
        raise NotFoundError("active version of", original_id)
    return version


async def list_versions(repos: Repositories, original_id: UUID) -> list[EntityVersion]:
    return await repos.versions.list_versions(original_id)


async def get_max_version(repos: Repositories, original_id: UUID) -> int:
    return await repos.versions.get_max_version(original_id)


async def delete_version(repos: Repositories, version_id: UUID) -> None:
    version = await get_version(repos, version_id)
    if version.is_active:
        raise VersionInUseError(f"version {version_id} is active")

    assignment_ids = await repos.assignments.ids_referencing_version(version_id)
    snapshot_ids = await repos.snapshots.ids_referencing_version(version_id)
    if assignment_ids or snapshot_ids:
        logger.warning(
            "Version delete blocked version_id=%s assignments=%d snapshots=%d",
            version_id,
            len(assignment_ids),
            len(snapshot_ids),
        )
        raise VersionInUseError(
            f"version {version_id} is referenced by {len(assignment_ids)} "
            f"assignment(s) and {len(snapshot_ids)} snapshot(s)",
            assignment_ids=assignment_ids,
        )

    await repos.versions.delete(version_id)
    logger.info("Version deleted version_id=%s", version_id)


@dataclass(frozen=True, slots=True)
class PublishResult:
    flow_version: EntityVersion
    step_versions: tuple[EntityVersion, ...] = ()
    component_versions: tuple[EntityVersion, ...] = ()


async def _version_if_changed(
    repos: Repositories,
    kind: VersionKind,
    original_id: UUID,
    content: dict[str, Any],
    created_by: UUID | None,
) -> EntityVersion | None:
    current = await repos.versions.get_active(original_id)
    if current is not None and current.content == content:
        return None
    return await create_version(
        repos, kind=kind, original_id=original_id, content=content, created_by=created_by
    )


async def publish_flow(
    repos: Repositories,
    flow_id: UUID,
    *,
    created_by: UUID | None = None,
    activate_versions: bool = True,
) -> PublishResult:
    """Freeze the flow's active content into versions.

    The flow always gets a new version.  Steps and components only get
    one when their serialized content differs from their active version.
    """
    flow = await flow_service.get_flow(repos, flow_id, for_update=True)
    content = await flow_service.get_active_content(repos, flow)
    if activate_versions and not can_be_activated(flow, content):
        raise ValidationError(
            "flow needs a name, a description and at least one enabled step "
            "before it can be published"
        )

    step_versions: list[EntityVersion] = []
    component_versions: list[EntityVersion] = []
    for step in content.ordered_steps():
        v = await _version_if_changed(
            repos, VersionKind.STEP, step.id, step.to_content(), created_by
        )
        if v is not None:
            step_versions.append(v)
        for component in step.ordered_components():
            v = await _version_if_changed(
                repos,
                VersionKind.COMPONENT,
                component.id,
                component.to_content(),
                created_by,
            )
            if v is not None:
                component_versions.append(v)

    flow_version = await create_version(
        repos,
        kind=VersionKind.FLOW,
        original_id=flow.id,
        content=flow.to_content(content),
        created_by=created_by,
    )

    if activate_versions:
        now = datetime.now(UTC)
        flow_version = await activate(repos, flow_version.id, now=now)
        step_versions = [await activate(repos, v.id, now=now) for v in step_versions]
        component_versions = [
            await activate(repos, v.id, now=now) for v in component_versions
        ]

    logger.info(
        "Flow published flow_id=%s version=%d steps=%d components=%d",
        flow_id,
        flow_version.version,
        len(step_versions),
        len(component_versions),
    )
    return PublishResult(
        flow_version=flow_version,
        step_versions=tuple(step_versions),
        component_versions=tuple(component_versions),
    )
