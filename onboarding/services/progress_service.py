"""Learner progress: component completion, scoring and rollup.

Each call validates against the assignment and the progress tree, then
writes the progress first and the assignment second.  The assignment
follows the stored progress: first activity starts it, the
completed_steps counter is refreshed, and once the flow is complete it is
completed with the sum of best scores.

Both writes are row_version compare-and-sets.  A lost race on the
progress write re-runs the whole operation once; a lost race on the
assignment write only re-reads and rewrites the assignment, so a
learner action is never applied twice.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from onboarding.core.errors import (
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from onboarding.core.metrics import (
    ASSIGNMENT_TRANSITIONS,
    COMPONENT_COMPLETIONS,
    CONCURRENCY_CONFLICTS,
)
from onboarding.models.assignment import AssignmentStatus, FlowAssignment
from onboarding.models.flow import ArticlePayload, QuizPayload, TaskPayload
from onboarding.models.progress import ComponentProgress, FlowProgress
from onboarding.models.snapshot import ComponentSnapshot
from onboarding.repos.registry import Repositories
from onboarding.services import assignment_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompletionResult:
    progress: FlowProgress
    assignment: FlowAssignment
    already_completed: bool = False
    component_completed: bool = False
    step_completed: bool = False
    next_step_unlocked: bool = False
    flow_completed: bool = False
    score: int | None = None
    max_score: int | None = None
    passed: bool | None = None

    @property
    def overall_percent(self) -> int:
        return self.progress.overall_percent


# (component progress, component snapshot) -> (new component progress, score, passed)
_Mutation = Callable[
    [ComponentProgress, ComponentSnapshot], tuple[ComponentProgress, int | None, bool | None]
]


async def get_progress(repos: Repositories, assignment_id: UUID) -> FlowProgress:
    progress = await repos.progress.get_by_assignment_id(assignment_id)
    if progress is None:
        raise NotFoundError("progress of assignment", assignment_id)
    return progress


async def _component_snapshot(
    repos: Repositories, assignment: FlowAssignment, component_snapshot_id: UUID
) -> ComponentSnapshot:
    if assignment.snapshot_id is None:
        raise NotFoundError("snapshot of assignment", assignment.id)
    snapshot = await repos.snapshots.get_by_id(assignment.snapshot_id)
    if snapshot is None:
        raise NotFoundError("snapshot", assignment.snapshot_id)
    found = snapshot.find_component(component_snapshot_id)
    if found is None:
        raise NotFoundError("component", component_snapshot_id)
    return found[1]


class _ProgressConflict(ConcurrencyConflictError):
    """The progress compare-and-set failed before anything else was written."""


def _check_can_record(assignment: FlowAssignment) -> None:
    """Learner activity is accepted while Assigned (it starts) or InProgress."""
    if assignment.status not in (AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS):
        raise InvalidStateTransitionError("record progress", assignment.status)


def _follow_progress(
    assignment: FlowAssignment, progress: FlowProgress, flow_completed: bool, now: datetime
) -> tuple[FlowAssignment, bool]:
    """Assignment state implied by stored progress; first activity starts it."""
    started = assignment.status == AssignmentStatus.ASSIGNED
    if started:
        assignment = assignment.start(now)
    assignment = assignment.with_progress(progress.completed_steps_count, now)
    if flow_completed:
        assignment = assignment.complete(
            now, requirements_met=True, final_score=progress.total_best_score
        )
    return assignment, started


async def _sync_assignment(
    repos: Repositories,
    assignment: FlowAssignment,
    progress: FlowProgress,
    flow_completed: bool,
    now: datetime,
) -> FlowAssignment:
    """Write the assignment after its progress has been stored.

    A conflict here re-reads the assignment and re-derives its state from
    the stored progress; the progress write itself is never repeated.
    """
    for attempt in (1, 2):
        updated, started = _follow_progress(assignment, progress, flow_completed, now)
        try:
            stored = await repos.assignments.update(updated)
        except ConcurrencyConflictError:
            CONCURRENCY_CONFLICTS.labels(aggregate="assignment").inc()
            if attempt == 2:
                raise
            logger.warning(
                "Assignment %s changed while recording progress, retrying", assignment.id
            )
            assignment = await assignment_service.get_assignment(repos, assignment.id)
            continue
        if started:
            ASSIGNMENT_TRANSITIONS.labels(transition="start").inc()
            logger.info("Assignment start assignment_id=%s (first activity)", stored.id)
        if flow_completed:
            ASSIGNMENT_TRANSITIONS.labels(transition="complete").inc()
            logger.info(
                "Assignment complete assignment_id=%s final_score=%s",
                stored.id,
                stored.final_score,
            )
        return stored
    raise AssertionError("unreachable")


async def _apply(
    repos: Repositories,
    assignment_id: UUID,
    component_snapshot_id: UUID,
    mutate: _Mutation,
    *,
    now: datetime,
    action: str,
) -> CompletionResult:
    """Retry once when the progress write loses a race.

    Nothing has been written when the progress compare-and-set fails, so
    the whole read-validate-mutate runs again against fresh state.
    """
    for attempt in (1, 2):
        try:
            return await _apply_once(
                repos, assignment_id, component_snapshot_id, mutate, now=now, action=action
            )
        except _ProgressConflict:
            CONCURRENCY_CONFLICTS.labels(aggregate="progress").inc()
            if attempt == 2:
                raise
            logger.warning(
                "Progress of assignment %s changed during %s, retrying",
                assignment_id,
                action,
            )
    raise AssertionError("unreachable")


async def _apply_once(
    repos: Repositories,
    assignment_id: UUID,
    component_snapshot_id: UUID,
    mutate: _Mutation,
    *,
    now: datetime,
    action: str,
) -> CompletionResult:
    assignment = await assignment_service.get_assignment(repos, assignment_id)
    component = await _component_snapshot(repos, assignment, component_snapshot_id)
    _check_can_record(assignment)
    progress = await get_progress(repos, assignment_id)

    located = progress.locate(component_snapshot_id)
    if located is None:
        raise NotFoundError("component progress", component_snapshot_id)
    step, current = located
    if not step.is_accessible:
        logger.warning(
            "Locked step rejected assignment_id=%s step=%s", assignment_id, step.step_snapshot_id
        )
        raise InvalidStateTransitionError(
            action, "locked", "previous step is not complete yet"
        )

    was_completed = current.is_completed
    updated, score, passed = mutate(current, component)
    new_step = step.with_component(updated, now)
    new_progress = progress.with_step(new_step, now)
    try:
        stored = await repos.progress.update(new_progress)
    except ConcurrencyConflictError as exc:
        raise _ProgressConflict(exc.message) from exc

    accessible_before = {s.step_snapshot_id for s in progress.steps if s.is_accessible}
    unlocked = any(
        s.is_accessible and s.step_snapshot_id not in accessible_before
        for s in stored.steps
    )
    flow_completed = stored.is_complete and not progress.is_complete
    assignment = await _sync_assignment(repos, assignment, stored, flow_completed, now)

    if updated.is_completed and not was_completed:
        outcome = "completed"
    elif was_completed:
        outcome = "repeat"
    else:
        outcome = "failed"
    COMPONENT_COMPLETIONS.labels(component_type=str(component.type), outcome=outcome).inc()
    logger.info(
        "Component %s assignment_id=%s component=%s outcome=%s progress=%d%%",
        action,
        assignment_id,
        component_snapshot_id,
        outcome,
        stored.overall_percent,
    )

    return CompletionResult(
        progress=stored,
        assignment=assignment,
        already_completed=was_completed,
        component_completed=updated.is_completed,
        step_completed=new_step.is_complete and not step.is_complete,
        next_step_unlocked=unlocked,
        flow_completed=flow_completed,
        score=score,
        max_score=component.max_score,
        passed=passed,
    )


async def complete_component(
    repos: Repositories,
    assignment_id: UUID,
    component_snapshot_id: UUID,
    *,
    score: int | None = None,
    now: datetime | None = None,
) -> CompletionResult:
    """Mark a component complete with an optional score.

    Repeating a completion records the attempt and keeps the best score;
    already_completed tells the caller nothing new was unlocked.
    """

    def mutate(cp: ComponentProgress, _: ComponentSnapshot):
        return cp.complete(score, when), score, None

    when = now or datetime.now(UTC)
    return await _apply(
        repos, assignment_id, component_snapshot_id, mutate, now=when, action="complete"
    )


def _score_interaction(
    component: ComponentSnapshot, answers: dict[int, int] | None, answer: str | None
) -> tuple[int | None, bool]:
    payload = component.payload
    if isinstance(payload, ArticlePayload):
        return None, True
    if isinstance(payload, QuizPayload):
        if not answers:
            raise ValidationError("quiz answers are required")
        score = payload.score(answers)
        threshold = (
            component.minimum_score
            if component.minimum_score is not None
            else payload.max_score
        )
        return score, score >= threshold
    if isinstance(payload, TaskPayload):
        if answer is None:
            raise ValidationError("task answer is required")
        correct = payload.check_answer(answer)
        score = payload.score if correct else 0
        if component.minimum_score is not None:
            return score, correct and score >= component.minimum_score
        return score, correct
    raise ValidationError(f"unsupported component type {component.type}")


async def record_interaction(
    repos: Repositories,
    assignment_id: UUID,
    component_snapshot_id: UUID,
    *,
    answers: dict[int, int] | None = None,
    answer: str | None = None,
    time_spent_minutes: int | None = None,
    now: datetime | None = None,
) -> CompletionResult:
    """Score a learner interaction against the snapshot component.

    Articles complete on read.  Quizzes pass at minimum_score, or full
    marks when none is set.  Tasks pass on the right code word.  A failed
    attempt is recorded without completing; once max_attempts is used up
    further attempts are refused.
    """

    def mutate(cp: ComponentProgress, component: ComponentSnapshot):
        if not cp.is_completed and not cp.can_attempt(component.max_attempts):
            raise InvalidStateTransitionError(
                "attempt component", "exhausted", f"max_attempts={component.max_attempts}"
            )
        score, passed = _score_interaction(component, answers, answer)
        if time_spent_minutes:
            cp = cp.add_time_spent(time_spent_minutes)
        if passed:
            return cp.complete(score, when), score, True
        return cp.register_attempt(score, when), score, False

    when = now or datetime.now(UTC)
    return await _apply(
        repos, assignment_id, component_snapshot_id, mutate, now=when, action="interact"
    )


async def add_time_spent(
    repos: Repositories,
    assignment_id: UUID,
    component_snapshot_id: UUID,
    minutes: int,
    *,
    now: datetime | None = None,
) -> CompletionResult:
    def mutate(cp: ComponentProgress, _: ComponentSnapshot):
        return cp.add_time_spent(minutes), None, None

    when = now or datetime.now(UTC)
    return await _apply(
        repos, assignment_id, component_snapshot_id, mutate, now=when, action="track time"
    )
