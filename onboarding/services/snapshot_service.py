"""Snapshots: frozen copies of a flow taken when it is assigned.

create_snapshot() reads the active content under the flow's row lock
and writes the copy in the same unit of work, so a concurrent edit can
land before or after the copy but never half inside it.

Snapshots are only ever added or deleted.  Deletion is refused while an
assignment that still needs the snapshot (Assigned, InProgress or
Paused) points at it; cleanup_old_snapshots() applies the same rule in
bulk and is what the snapshot_cleanup worker task runs.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from onboarding.core.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    ValidationError,
    VersionInUseError,
)
from onboarding.core.metrics import (
    CONCURRENCY_CONFLICTS,
    SNAPSHOTS_CREATED,
    SNAPSHOTS_DELETED,
)
from onboarding.models.flow import Flow, FlowContent, payload_matches
from onboarding.models.snapshot import FlowSnapshot
from onboarding.repos.registry import Repositories
from onboarding.services import flow_service

logger = logging.getLogger(__name__)


async def create_snapshot(
    repos: Repositories, flow_id: UUID, *, created_by: UUID | None = None
) -> FlowSnapshot:
    flow = await flow_service.get_flow(repos, flow_id, for_update=True)
    content = await flow_service.get_active_content(repos, flow)
    active_version = await repos.versions.get_active(flow_id)

    for attempt in (1, 2):
        number = await repos.snapshots.get_max_version(flow_id) + 1
        snapshot = FlowSnapshot.capture(
            flow=flow,
            content=content,
            version=number,
            created_at=datetime.now(UTC),
            flow_version_id=active_version.id if active_version else None,
            created_by=created_by,
        )
        try:
            await repos.snapshots.add(snapshot)
        except ConcurrencyConflictError:
            CONCURRENCY_CONFLICTS.labels(aggregate="snapshot").inc()
            if attempt == 2:
                raise
            logger.warning("Snapshot version %d of flow %s taken, retrying", number, flow_id)
            continue
        SNAPSHOTS_CREATED.inc()
        logger.info(
            "Snapshot created flow_id=%s snapshot_id=%s version=%d steps=%d",
            flow_id,
            snapshot.id,
            number,
            len(snapshot.steps),
        )
        return snapshot
    raise AssertionError("unreachable")


async def get_or_create_snapshot(
    repos: Repositories, flow_id: UUID, *, created_by: UUID | None = None
) -> FlowSnapshot:
    latest = await repos.snapshots.get_latest(flow_id)
    if latest is not None:
        return latest
    return await create_snapshot(repos, flow_id, created_by=created_by)


async def get_snapshot(repos: Repositories, snapshot_id: UUID) -> FlowSnapshot:
    snapshot = await repos.snapshots.get_by_id(snapshot_id)
    if snapshot is None:
        raise NotFoundError("snapshot", snapshot_id)
    return snapshot


async def get_latest_snapshot(repos: Repositories, flow_id: UUID) -> FlowSnapshot:
    snapshot = await repos.snapshots.get_latest(flow_id)
    if snapshot is None:
        raise NotFoundError("snapshot of flow", flow_id)
    return snapshot


async def get_snapshot_by_version(
    repos: Repositories, flow_id: UUID, version: int
) -> FlowSnapshot:
    snapshot = await repos.snapshots.get_by_version(flow_id, version)
    if snapshot is None:
        raise NotFoundError(f"snapshot version {version} of flow", flow_id)
    return snapshot


async def list_snapshots(repos: Repositories, flow_id: UUID) -> list[FlowSnapshot]:
    return await repos.snapshots.list_by_flow(flow_id)


async def get_snapshot_for_assignment(
    repos: Repositories, assignment_id: UUID
) -> FlowSnapshot:
    assignment = await repos.assignments.get_by_id(assignment_id)
    if assignment is None:
        raise NotFoundError("assignment", assignment_id)
    if assignment.snapshot_id is None:
        raise NotFoundError("snapshot of assignment", assignment_id)
    return await get_snapshot(repos, assignment.snapshot_id)


def validate_snapshot_integrity(snapshot: FlowSnapshot) -> list[str]:
    """Return the problems found; an empty list means the snapshot is sound."""
    problems: list[str] = []
    if not snapshot.title.strip():
        problems.append("snapshot title is blank")

    step_ids = [s.id for s in snapshot.steps]
    if len(set(step_ids)) != len(step_ids):
        problems.append("duplicate step ids")
    step_orders = [s.order for s in snapshot.steps]
    if len(set(step_orders)) != len(step_orders):
        problems.append("duplicate step order keys")

    for step in snapshot.ordered_steps():
        if not step.title.strip():
            problems.append(f"step {step.id} has a blank title")
        orders = [c.order for c in step.components]
        if len(set(orders)) != len(orders):
            problems.append(f"step {step.id} has duplicate component order keys")
        for c in step.components:
            if not c.title.strip():
                problems.append(f"component {c.id} has a blank title")
            if not payload_matches(c.type, c.payload):
                problems.append(f"component {c.id} payload does not match type {c.type}")
    return problems


def snapshot_differences(
    flow: Flow, content: FlowContent, snapshot: FlowSnapshot
) -> list[str]:
    """Human-readable list of how the live flow drifted from a snapshot."""
    differences: list[str] = []
    if flow.name != snapshot.title:
        differences.append(f"title changed: {snapshot.title!r} -> {flow.name!r}")
    if flow.description != snapshot.description:
        differences.append("description changed")

    live_steps = content.enabled_steps()
    if len(live_steps) != len(snapshot.steps):
        differences.append(
            f"step count changed: {len(snapshot.steps)} -> {len(live_steps)}"
        )

    live_by_id = {s.id: s for s in live_steps}
    for step in snapshot.ordered_steps():
        live = live_by_id.get(step.original_step_id)
        if live is None:
            differences.append(f"step {step.original_step_id} removed")
            continue
        if live.title != step.title:
            differences.append(f"step title changed: {step.title!r} -> {live.title!r}")
        live_components = live.enabled_components()
        if len(live_components) != len(step.components):
            differences.append(
                f"component count of step {step.original_step_id} changed: "
                f"{len(step.components)} -> {len(live_components)}"
            )

    snapshot_step_ids = {s.original_step_id for s in snapshot.steps}
    for step in live_steps:
        if step.id not in snapshot_step_ids:
            differences.append(f"step {step.id} added")
    return differences


async def get_snapshot_differences(repos: Repositories, snapshot_id: UUID) -> list[str]:
    snapshot = await get_snapshot(repos, snapshot_id)
    flow = await flow_service.get_flow(repos, snapshot.original_flow_id)
    content = await flow_service.get_active_content(repos, flow)
    return snapshot_differences(flow, content, snapshot)


async def delete_snapshot(repos: Repositories, snapshot_id: UUID) -> None:
    await get_snapshot(repos, snapshot_id)
    active = await repos.assignments.ids_referencing_snapshot(snapshot_id)
    if active:
        logger.warning(
            "Snapshot delete blocked snapshot_id=%s active_assignments=%d",
            snapshot_id,
            len(active),
        )
        raise VersionInUseError(
            f"snapshot {snapshot_id} is used by {len(active)} active assignment(s)",
            assignment_ids=active,
        )
    await repos.snapshots.delete(snapshot_id)
    SNAPSHOTS_DELETED.labels(reason="manual").inc()
    logger.info("Snapshot deleted snapshot_id=%s", snapshot_id)


async def cleanup_old_snapshots(
    repos: Repositories,
    *,
    older_than_days: int = 365,
    keep_minimum: int = 1,
    now: datetime | None = None,
) -> int:
    """Delete old snapshots nobody needs; return how many were deleted.

    Per flow the newest keep_minimum snapshots always survive, whatever
    their age.  Of the rest, those created before the cutoff and not
    referenced by an active assignment go.
    """
    if older_than_days < 1:
        raise ValidationError("older_than_days must be >= 1")
    if keep_minimum < 0:
        raise ValidationError("keep_minimum must be >= 0")

    cutoff = (now or datetime.now(UTC)) - timedelta(days=older_than_days)
    candidates = await repos.snapshots.list_older_than(cutoff)

    by_flow: dict[UUID, list[FlowSnapshot]] = {}
    for s in candidates:
        by_flow.setdefault(s.original_flow_id, []).append(s)

    deleted = 0
    for flow_id, old in by_flow.items():
        newest = sorted(
            await repos.snapshots.list_by_flow(flow_id),
            key=lambda s: s.version,
            reverse=True,
        )
        protected = {s.id for s in newest[:keep_minimum]}
        for snapshot in old:
            if snapshot.id in protected:
                continue
            if await repos.assignments.ids_referencing_snapshot(snapshot.id):
                continue
            await repos.snapshots.delete(snapshot.id)
            SNAPSHOTS_DELETED.labels(reason="cleanup").inc()
            deleted += 1

    logger.info(
        "Snapshot cleanup finished cutoff=%s deleted=%d", cutoff.isoformat(), deleted
    )
    return deleted
