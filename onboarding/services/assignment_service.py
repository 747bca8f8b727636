"""Assignment lifecycle: assign, start, pause, resume, complete, cancel.

Every transition is a read-modify-write guarded by row_version.  On a
ConcurrencyConflictError the whole read-validate-write is run once more
against fresh state (the transition may now be illegal, in which case
that error surfaces instead); a second conflict propagates.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from uuid import UUID

from onboarding.core.errors import (
    AlreadyAssignedError,
    ConcurrencyConflictError,
    NotFoundError,
    ValidationError,
)
from onboarding.core.metrics import ASSIGNMENT_TRANSITIONS, CONCURRENCY_CONFLICTS
from onboarding.models.assignment import (
    AssignmentStatus,
    FlowAssignment,
    calculate_due_date,
    default_assignment_days,
)
from onboarding.models.flow import FlowSettings
from onboarding.models.progress import FlowProgress
from onboarding.repos.registry import Repositories
from onboarding.services import flow_service, snapshot_service

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def get_assignment(repos: Repositories, assignment_id: UUID) -> FlowAssignment:
    assignment = await repos.assignments.get_by_id(assignment_id)
    if assignment is None:
        raise NotFoundError("assignment", assignment_id)
    return assignment


async def assign_flow(
    repos: Repositories,
    *,
    user_id: UUID,
    flow_id: UUID,
    assigned_by: UUID,
    buddy_id: UUID | None = None,
    due_date: datetime | None = None,
    now: datetime | None = None,
) -> FlowAssignment:
    """Freeze the flow into a snapshot and bind the user to it.

    Creates the snapshot, the assignment and the initial progress tree
    in one unit of work.  Every argument is checked before the snapshot
    is written.
    """
    now = now or _utcnow()
    flow = await flow_service.get_flow(repos, flow_id)
    if not flow.is_active:
        raise ValidationError(f"flow {flow_id} is not active")
    content = await flow_service.get_active_content(repos, flow)
    if not content.enabled_steps():
        raise ValidationError(f"flow {flow_id} has no steps to assign")
    if buddy_id is not None and buddy_id == user_id:
        raise ValidationError("buddy must be someone other than the assignee")
    if due_date is not None and due_date <= now:
        raise ValidationError("due_date must be after assigned_at")
    if await repos.assignments.find_active(user_id, flow_id) is not None:
        logger.warning("Duplicate assignment rejected user_id=%s flow_id=%s", user_id, flow_id)
        raise AlreadyAssignedError(
            f"user {user_id} already has an active assignment for flow {flow_id}"
        )

    snapshot = await snapshot_service.create_snapshot(
        repos, flow_id, created_by=assigned_by
    )
    total_steps = len(snapshot.steps)
    if due_date is None:
        days = default_assignment_days(total_steps, snapshot.settings.days_per_step)
        due_date = calculate_due_date(
            now, days, working_days_only=snapshot.settings.working_days_only
        )

    assignment = FlowAssignment.new(
        user_id=user_id,
        flow_id=flow_id,
        snapshot_id=snapshot.id,
        assigned_by=assigned_by,
        assigned_at=now,
        due_date=due_date,
        total_steps=total_steps,
        flow_version_id=snapshot.flow_version_id,
        content_id=content.id,
        buddy_id=buddy_id,
    )
    await repos.assignments.add(assignment)
    await repos.progress.add(
        FlowProgress.initial(
            assignment_id=assignment.id, user_id=user_id, snapshot=snapshot
        )
    )
    ASSIGNMENT_TRANSITIONS.labels(transition="assign").inc()
    logger.info(
        "Flow assigned assignment_id=%s user_id=%s flow_id=%s snapshot_id=%s due=%s",
        assignment.id,
        user_id,
        flow_id,
        snapshot.id,
        due_date.isoformat(),
    )
    return assignment


async def apply_transition(
    repos: Repositories,
    assignment_id: UUID,
    transition: str,
    change: Callable[[FlowAssignment], FlowAssignment | Awaitable[FlowAssignment]],
) -> FlowAssignment:
    """Read, apply change, compare-and-set; retry once on a lost race.

    change may be a coroutine function when it needs to read other state;
    that read is then repeated on retry too.
    """
    for attempt in (1, 2):
        current = await get_assignment(repos, assignment_id)
        updated = change(current)
        if inspect.isawaitable(updated):
            updated = await updated
        try:
            stored = await repos.assignments.update(updated)
        except ConcurrencyConflictError:
            CONCURRENCY_CONFLICTS.labels(aggregate="assignment").inc()
            if attempt == 2:
                raise
            logger.warning(
                "Assignment %s changed during %s, retrying", assignment_id, transition
            )
            continue
        ASSIGNMENT_TRANSITIONS.labels(transition=transition).inc()
        logger.info(
            "Assignment %s assignment_id=%s status=%s",
            transition,
            assignment_id,
            stored.status,
        )
        return stored
    raise AssertionError("unreachable")


async def _settings_for(repos: Repositories, assignment: FlowAssignment) -> FlowSettings:
    """Settings frozen into the assignment's snapshot, or the live flow's."""
    if assignment.snapshot_id is not None:
        snapshot = await repos.snapshots.get_by_id(assignment.snapshot_id)
        if snapshot is not None:
            return snapshot.settings
    flow = await flow_service.get_flow(repos, assignment.flow_id)
    return flow.settings


async def start(
    repos: Repositories, assignment_id: UUID, *, now: datetime | None = None
) -> FlowAssignment:
    return await apply_transition(
        repos, assignment_id, "start", lambda a: a.start(now or _utcnow())
    )


async def pause(
    repos: Repositories,
    assignment_id: UUID,
    reason: str,
    *,
    by_staff: bool = False,
    now: datetime | None = None,
) -> FlowAssignment:
    """Pause an in-progress assignment.

    Staff can always pause; the assignee only when the flow allows it.
    """
    assignment = await get_assignment(repos, assignment_id)
    allowed = by_staff or (await _settings_for(repos, assignment)).allow_self_pause
    return await apply_transition(
        repos,
        assignment_id,
        "pause",
        lambda a: a.pause(reason, now or _utcnow(), self_pause_allowed=allowed),
    )


async def resume(
    repos: Repositories, assignment_id: UUID, *, now: datetime | None = None
) -> FlowAssignment:
    return await apply_transition(
        repos, assignment_id, "resume", lambda a: a.resume(now or _utcnow())
    )


async def complete(
    repos: Repositories,
    assignment_id: UUID,
    *,
    final_score: int | None = None,
    completion_notes: str | None = None,
    now: datetime | None = None,
) -> FlowAssignment:
    """Complete explicitly.

    Requirements come from stored progress.  Without them, completion
    needs completion_notes as a recorded override.  final_score defaults
    to the sum of best component scores.
    """

    async def change(a: FlowAssignment) -> FlowAssignment:
        when = now or _utcnow()
        progress = await repos.progress.get_by_assignment_id(assignment_id)
        score = final_score
        if progress is not None:
            if score is None:
                score = progress.total_best_score
            if a.status == AssignmentStatus.IN_PROGRESS:
                a = a.with_progress(progress.completed_steps_count, when)
        return a.complete(
            when,
            requirements_met=progress is not None and progress.is_complete,
            final_score=score,
            completion_notes=completion_notes,
        )

    return await apply_transition(repos, assignment_id, "complete", change)


async def cancel(
    repos: Repositories,
    assignment_id: UUID,
    reason: str | None = None,
    *,
    now: datetime | None = None,
) -> FlowAssignment:
    return await apply_transition(
        repos, assignment_id, "cancel", lambda a: a.cancel(reason, now or _utcnow())
    )


async def submit_feedback(
    repos: Repositories,
    assignment_id: UUID,
    rating: int,
    feedback: str | None = None,
    *,
    now: datetime | None = None,
) -> FlowAssignment:
    if not 1 <= rating <= 5:
        raise ValidationError("rating must be between 1 and 5")
    return await apply_transition(
        repos,
        assignment_id,
        "feedback",
        lambda a: a.with_feedback(rating, feedback, now or _utcnow()),
    )


async def list_for_user(
    repos: Repositories, user_id: UUID, *, status: AssignmentStatus | None = None
) -> list[FlowAssignment]:
    return await repos.assignments.list_for_user(user_id, status=status)


async def list_overdue(
    repos: Repositories, *, now: datetime | None = None
) -> list[FlowAssignment]:
    return await repos.assignments.list_overdue(now or _utcnow())
