from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from onboarding.core.errors import (
    AlreadyAssignedError,
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from onboarding.models.assignment import AssignmentStatus, FlowAssignment
from onboarding.models.flow import FlowSettings
from onboarding.repos.registry import Repositories
from onboarding.services import assignment_service, flow_service
from tests.conftest import STAFF_ID, assign, build_flow

MONDAY = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class _ConflictingAssignments:
    """Delegates to the real repo but loses the first `conflicts` updates."""

    def __init__(self, inner, conflicts: int) -> None:
        self._inner = inner
        self._conflicts = conflicts
        self.update_calls = 0

    def __getattr__(self, name: str):
        return getattr(self._inner, name)

    async def update(self, assignment: FlowAssignment) -> FlowAssignment:
        self.update_calls += 1
        if self._conflicts > 0:
            self._conflicts -= 1
            raise ConcurrencyConflictError("lost the race")
        return await self._inner.update(assignment)


# ---- assign ----


def test_assign_creates_snapshot_and_progress(repos: Repositories) -> None:
    user_id = uuid4()

    async def scenario():
        flow = await build_flow(repos, steps=2)
        assignment = await assignment_service.assign_flow(
            repos, user_id=user_id, flow_id=flow.id, assigned_by=STAFF_ID, now=MONDAY
        )
        progress = await repos.progress.get_by_assignment_id(assignment.id)
        return assignment, progress

    assignment, progress = asyncio.run(scenario())
    assert assignment.status == AssignmentStatus.ASSIGNED
    assert assignment.user_id == user_id
    assert assignment.total_steps == 2
    assert assignment.snapshot_id is not None
    # Two steps at the default seven days each
    assert assignment.due_date == MONDAY + timedelta(days=14)
    assert progress is not None
    assert progress.snapshot_id == assignment.snapshot_id
    assert len(progress.steps) == 2


def test_default_due_date_in_working_days(repos: Repositories) -> None:
    async def scenario():
        flow = await build_flow(repos, steps=1)
        await flow_service.update_flow(
            repos, flow.id, settings=FlowSettings(days_per_step=7, working_days_only=True)
        )
        return await assignment_service.assign_flow(
            repos, user_id=uuid4(), flow_id=flow.id, assigned_by=STAFF_ID, now=MONDAY
        )

    assignment = asyncio.run(scenario())
    assert assignment.due_date == datetime(2026, 3, 11, 9, 0, tzinfo=UTC)


def test_explicit_due_date_wins(repos: Repositories) -> None:
    due = MONDAY + timedelta(days=3)

    async def scenario():
        flow = await build_flow(repos)
        return await assignment_service.assign_flow(
            repos,
            user_id=uuid4(),
            flow_id=flow.id,
            assigned_by=STAFF_ID,
            due_date=due,
            now=MONDAY,
        )

    assert asyncio.run(scenario()).due_date == due


def test_duplicate_active_assignment_is_rejected(repos: Repositories) -> None:
    user_id = uuid4()

    async def scenario():
        flow = await build_flow(repos)
        first = await assign(repos, flow.id, user_id)
        try:
            await assign(repos, flow.id, user_id)
        except AlreadyAssignedError:
            rejected = True
        else:
            rejected = False
        await assignment_service.cancel(repos, first.id, "Wrong flow")
        second = await assign(repos, flow.id, user_id)
        return first, rejected, second

    first, rejected, second = asyncio.run(scenario())
    assert rejected
    assert second.id != first.id
    assert second.snapshot_id != first.snapshot_id


def test_assign_rejects_inactive_flow(repos: Repositories) -> None:
    async def scenario():
        flow = await build_flow(repos)
        await flow_service.deactivate_flow(repos, flow.id)
        await assign(repos, flow.id)

    with pytest.raises(ValidationError, match="not active"):
        asyncio.run(scenario())


def test_assign_rejects_flow_without_steps(repos: Repositories) -> None:
    async def scenario():
        flow = await flow_service.create_flow(repos, name="Empty", description="Nothing")
        await assign(repos, flow.id)

    with pytest.raises(ValidationError, match="no steps"):
        asyncio.run(scenario())


def test_assign_rejects_self_buddy(repos: Repositories) -> None:
    user_id = uuid4()

    async def scenario():
        flow = await build_flow(repos)
        await assignment_service.assign_flow(
            repos, user_id=user_id, flow_id=flow.id, assigned_by=STAFF_ID, buddy_id=user_id
        )

    with pytest.raises(ValidationError, match="buddy"):
        asyncio.run(scenario())


def test_rejected_due_date_writes_nothing(repos: Repositories) -> None:
    flow = asyncio.run(build_flow(repos))
    with pytest.raises(ValidationError, match="due_date"):
        asyncio.run(
            assignment_service.assign_flow(
                repos,
                user_id=uuid4(),
                flow_id=flow.id,
                assigned_by=STAFF_ID,
                due_date=MONDAY - timedelta(days=1),
                now=MONDAY,
            )
        )
    assert asyncio.run(repos.snapshots.list_by_flow(flow.id)) == []


def test_assign_missing_flow(repos: Repositories) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(assign(repos, uuid4()))


# ---- transitions ----


def test_lifecycle(repos: Repositories) -> None:
    async def scenario():
        flow = await build_flow(repos)
        a = await assign(repos, flow.id)
        started = await assignment_service.start(repos, a.id)
        paused = await assignment_service.pause(repos, a.id, "Conference week")
        resumed = await assignment_service.resume(repos, a.id)
        return started, paused, resumed

    started, paused, resumed = asyncio.run(scenario())
    assert started.status == AssignmentStatus.IN_PROGRESS
    assert paused.status == AssignmentStatus.PAUSED
    assert paused.pause_reason == "Conference week"
    assert resumed.status == AssignmentStatus.IN_PROGRESS
    assert resumed.row_version == started.row_version + 2


def test_self_pause_respects_flow_settings(repos: Repositories) -> None:
    async def setup():
        flow = await build_flow(repos, allow_self_pause=False)
        a = await assign(repos, flow.id)
        await assignment_service.start(repos, a.id)
        return a

    a = asyncio.run(setup())
    with pytest.raises(InvalidStateTransitionError, match="self-pause"):
        asyncio.run(assignment_service.pause(repos, a.id, "Holiday"))

    paused = asyncio.run(assignment_service.pause(repos, a.id, "Holiday", by_staff=True))
    assert paused.status == AssignmentStatus.PAUSED


def test_complete_without_progress_needs_override(repos: Repositories) -> None:
    async def setup():
        flow = await build_flow(repos)
        a = await assign(repos, flow.id)
        await assignment_service.start(repos, a.id)
        return a

    a = asyncio.run(setup())
    with pytest.raises(InvalidStateTransitionError, match="override notes"):
        asyncio.run(assignment_service.complete(repos, a.id))

    done = asyncio.run(
        assignment_service.complete(repos, a.id, completion_notes="Joined mid-year")
    )
    assert done.status == AssignmentStatus.COMPLETED
    assert done.completion_notes == "Joined mid-year"
    assert done.final_score == 0


def test_complete_from_assigned_is_rejected(repos: Repositories) -> None:
    async def scenario():
        flow = await build_flow(repos)
        a = await assign(repos, flow.id)
        await assignment_service.complete(repos, a.id, completion_notes="Skip it")

    with pytest.raises(InvalidStateTransitionError, match="cannot complete"):
        asyncio.run(scenario())


@pytest.mark.parametrize("finish", ["complete", "cancel"])
def test_completing_a_finished_assignment_names_complete(
    repos: Repositories, finish: str
) -> None:
    async def setup():
        flow = await build_flow(repos)
        a = await assign(repos, flow.id)
        await assignment_service.start(repos, a.id)
        if finish == "complete":
            await assignment_service.complete(repos, a.id, completion_notes="Done offline")
        else:
            await assignment_service.cancel(repos, a.id, "Left the company")
        return a

    a = asyncio.run(setup())
    with pytest.raises(InvalidStateTransitionError) as excinfo:
        asyncio.run(assignment_service.complete(repos, a.id, completion_notes="Again"))
    assert excinfo.value.transition == "complete"
    assert excinfo.value.current == ("completed" if finish == "complete" else "cancelled")


def test_cancelled_is_terminal(repos: Repositories) -> None:
    async def setup():
        flow = await build_flow(repos)
        a = await assign(repos, flow.id)
        await assignment_service.cancel(repos, a.id)
        return a

    a = asyncio.run(setup())
    with pytest.raises(InvalidStateTransitionError):
        asyncio.run(assignment_service.start(repos, a.id))


def test_feedback(repos: Repositories) -> None:
    async def setup():
        flow = await build_flow(repos)
        a = await assign(repos, flow.id)
        await assignment_service.start(repos, a.id)
        await assignment_service.complete(repos, a.id, completion_notes="Done offline")
        return a

    a = asyncio.run(setup())
    with pytest.raises(ValidationError, match="rating"):
        asyncio.run(assignment_service.submit_feedback(repos, a.id, 6))
    rated = asyncio.run(assignment_service.submit_feedback(repos, a.id, 5, "Loved it"))
    assert rated.user_rating == 5
    assert rated.user_feedback == "Loved it"


# ---- optimistic locking ----


def test_stale_write_is_rejected(repos: Repositories) -> None:
    async def scenario():
        flow = await build_flow(repos)
        a = await assign(repos, flow.id)
        await repos.assignments.update(a.start(MONDAY))
        await repos.assignments.update(a.cancel("stale", MONDAY))

    with pytest.raises(ConcurrencyConflictError, match="row_version"):
        asyncio.run(scenario())


def test_transition_retries_once_after_a_conflict(repos: Repositories) -> None:
    flaky = _ConflictingAssignments(repos.assignments, conflicts=1)
    flaky_repos = replace(repos, assignments=flaky)

    async def scenario():
        flow = await build_flow(repos)
        a = await assign(repos, flow.id)
        return await assignment_service.start(flaky_repos, a.id)

    started = asyncio.run(scenario())
    assert started.status == AssignmentStatus.IN_PROGRESS
    assert flaky.update_calls == 2


def test_second_conflict_propagates(repos: Repositories) -> None:
    flaky = _ConflictingAssignments(repos.assignments, conflicts=2)
    flaky_repos = replace(repos, assignments=flaky)

    async def scenario():
        flow = await build_flow(repos)
        a = await assign(repos, flow.id)
        await assignment_service.start(flaky_repos, a.id)

    with pytest.raises(ConcurrencyConflictError):
        asyncio.run(scenario())


# ---- queries ----


def test_list_for_user_filters_by_status(repos: Repositories) -> None:
    user_id = uuid4()

    async def scenario():
        a = await build_flow(repos, name="A")
        b = await build_flow(repos, name="B")
        first = await assign(repos, a.id, user_id)
        await assign(repos, b.id, user_id)
        await assignment_service.start(repos, first.id)
        everything = await assignment_service.list_for_user(repos, user_id)
        in_progress = await assignment_service.list_for_user(
            repos, user_id, status=AssignmentStatus.IN_PROGRESS
        )
        return first, everything, in_progress

    first, everything, in_progress = asyncio.run(scenario())
    assert len(everything) == 2
    assert [a.id for a in in_progress] == [first.id]


def test_list_overdue(repos: Repositories) -> None:
    async def scenario():
        flow = await build_flow(repos)
        late = await assign(repos, flow.id)
        paused = await assign(repos, flow.id)
        await assignment_service.start(repos, paused.id)
        await assignment_service.pause(repos, paused.id, "Leave")
        now = late.due_date + timedelta(days=1)
        return late, await assignment_service.list_overdue(repos, now=now)

    late, overdue = asyncio.run(scenario())
    assert [a.id for a in overdue] == [late.id]
