from __future__ import annotations

import asyncio
from dataclasses import replace
from uuid import UUID, uuid4

import pytest

from onboarding.core.errors import (
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from onboarding.models.assignment import AssignmentStatus, FlowAssignment
from onboarding.models.flow import ArticlePayload, ComponentType, Flow, FlowSettings
from onboarding.models.progress import FlowProgress
from onboarding.repos.registry import Repositories
from onboarding.services import assignment_service, flow_service, progress_service
from tests.conftest import STAFF_ID, assign, quiz_payload, snapshot_of, task_payload


async def _onboarding_flow(
    repos: Repositories,
    *,
    sequential: bool = True,
    quiz_minimum: int | None = None,
) -> Flow:
    """Welcome (article) -> Tooling (quiz + task) -> Culture (optional article)."""
    flow = await flow_service.create_flow(
        repos,
        name="Engineering onboarding",
        description="Everything a new engineer needs",
        created_by=STAFF_ID,
        settings=FlowSettings(requires_sequential_completion=sequential),
    )
    welcome = await flow_service.add_step(repos, flow.id, title="Welcome")
    await flow_service.add_component(
        repos,
        flow.id,
        welcome.id,
        type=ComponentType.ARTICLE,
        title="Handbook",
        payload=ArticlePayload(content="Read the handbook"),
    )
    tooling = await flow_service.add_step(repos, flow.id, title="Tooling")
    await flow_service.add_component(
        repos,
        flow.id,
        tooling.id,
        type=ComponentType.QUIZ,
        title="Tooling quiz",
        payload=quiz_payload(),
        max_attempts=2,
        minimum_score=quiz_minimum,
    )
    await flow_service.add_component(
        repos,
        flow.id,
        tooling.id,
        type=ComponentType.TASK,
        title="Code word",
        payload=task_payload("Onboard", score=5),
    )
    culture = await flow_service.add_step(
        repos, flow.id, title="Culture", is_required=False
    )
    await flow_service.add_component(
        repos,
        flow.id,
        culture.id,
        type=ComponentType.ARTICLE,
        title="Company history",
        payload=ArticlePayload(content="Founded in a garage"),
    )
    return flow


async def _setup(
    repos: Repositories, **flow_options
) -> tuple[FlowAssignment, dict[str, UUID]]:
    flow = await _onboarding_flow(repos, **flow_options)
    assignment = await assign(repos, flow.id)
    snapshot = await snapshot_of(repos, assignment)
    ids = {c.title: c.id for s in snapshot.steps for c in s.components}
    return assignment, ids


def _progress(repos: Repositories, assignment: FlowAssignment) -> FlowProgress:
    return asyncio.run(progress_service.get_progress(repos, assignment.id))


# ---- sequential access ----


def test_locked_step_rejects_activity(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    with pytest.raises(InvalidStateTransitionError, match="previous step"):
        asyncio.run(
            progress_service.complete_component(repos, assignment.id, ids["Code word"])
        )


def test_completing_a_step_unlocks_the_next(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    before = _progress(repos, assignment)
    assert [s.is_accessible for s in before.steps] == [True, False, False]

    result = asyncio.run(
        progress_service.record_interaction(repos, assignment.id, ids["Handbook"])
    )
    assert result.component_completed
    assert result.step_completed
    assert result.next_step_unlocked
    assert [s.is_accessible for s in result.progress.steps] == [True, True, False]


def test_non_sequential_flow_allows_any_order(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos, sequential=False))
    result = asyncio.run(
        progress_service.complete_component(repos, assignment.id, ids["Company history"])
    )
    assert result.step_completed
    assert not result.flow_completed


# ---- assignment side effects ----


def test_first_activity_starts_the_assignment(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    assert assignment.status == AssignmentStatus.ASSIGNED

    result = asyncio.run(
        progress_service.complete_component(repos, assignment.id, ids["Handbook"])
    )
    assert result.assignment.status == AssignmentStatus.IN_PROGRESS
    assert result.assignment.started_at is not None


def test_one_of_three_steps_is_33_percent(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    result = asyncio.run(
        progress_service.complete_component(repos, assignment.id, ids["Handbook"])
    )
    assert result.overall_percent == 33
    assert result.assignment.completed_steps == 1
    assert result.assignment.progress_percent == 33


def test_required_steps_complete_the_flow(repos: Repositories) -> None:
    """The optional Culture step never blocks completion."""
    assignment, ids = asyncio.run(_setup(repos))

    async def scenario():
        await progress_service.record_interaction(repos, assignment.id, ids["Handbook"])
        await progress_service.record_interaction(
            repos, assignment.id, ids["Tooling quiz"], answers={0: 0, 1: 0}
        )
        return await progress_service.record_interaction(
            repos, assignment.id, ids["Code word"], answer="onboard"
        )

    result = asyncio.run(scenario())
    assert result.flow_completed
    assert result.progress.is_complete
    assert result.progress.completed_steps_count == 2
    assert result.overall_percent == 67
    assert result.assignment.status == AssignmentStatus.COMPLETED
    assert result.assignment.final_score == 7


def test_activity_on_paused_assignment_is_rejected(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))

    async def scenario():
        await assignment_service.start(repos, assignment.id)
        await assignment_service.pause(repos, assignment.id, "Travel")
        await progress_service.complete_component(repos, assignment.id, ids["Handbook"])

    with pytest.raises(InvalidStateTransitionError, match="record progress"):
        asyncio.run(scenario())


def test_activity_on_cancelled_assignment_is_rejected(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    asyncio.run(assignment_service.cancel(repos, assignment.id))
    with pytest.raises(InvalidStateTransitionError):
        asyncio.run(
            progress_service.complete_component(repos, assignment.id, ids["Handbook"])
        )


# ---- scoring ----


def test_quiz_needs_full_marks_without_minimum(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos, sequential=False))
    result = asyncio.run(
        progress_service.record_interaction(
            repos, assignment.id, ids["Tooling quiz"], answers={0: 0, 1: 1}
        )
    )
    assert result.score == 1
    assert result.max_score == 2
    assert result.passed is False
    assert result.component_completed is False

    located = result.progress.locate(ids["Tooling quiz"])
    assert located is not None
    assert located[1].attempts_count == 1
    assert located[1].best_score == 1


def test_quiz_passes_at_minimum_score(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos, sequential=False, quiz_minimum=1))
    result = asyncio.run(
        progress_service.record_interaction(
            repos, assignment.id, ids["Tooling quiz"], answers={0: 0, 1: 1}
        )
    )
    assert result.passed is True
    assert result.component_completed is True


def test_quiz_attempts_run_out(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos, sequential=False))

    async def attempt():
        return await progress_service.record_interaction(
            repos, assignment.id, ids["Tooling quiz"], answers={0: 1, 1: 1}
        )

    asyncio.run(attempt())
    asyncio.run(attempt())
    with pytest.raises(InvalidStateTransitionError, match="max_attempts=2"):
        asyncio.run(attempt())


def test_quiz_needs_answers(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos, sequential=False))
    with pytest.raises(ValidationError, match="quiz answers"):
        asyncio.run(
            progress_service.record_interaction(repos, assignment.id, ids["Tooling quiz"])
        )


def test_task_code_word(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos, sequential=False))

    wrong = asyncio.run(
        progress_service.record_interaction(
            repos, assignment.id, ids["Code word"], answer="offboard"
        )
    )
    assert wrong.passed is False
    assert wrong.score == 0

    right = asyncio.run(
        progress_service.record_interaction(
            repos, assignment.id, ids["Code word"], answer="  ONBOARD "
        )
    )
    assert right.passed is True
    assert right.score == 5
    assert right.component_completed


def test_explicit_score_becomes_best_score(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos, sequential=False))
    result = asyncio.run(
        progress_service.complete_component(
            repos, assignment.id, ids["Code word"], score=3
        )
    )
    located = result.progress.locate(ids["Code word"])
    assert located is not None
    assert located[1].best_score == 3
    assert result.progress.total_best_score == 3


def test_repeat_completion_reports_already_completed(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))

    async def scenario():
        await progress_service.complete_component(repos, assignment.id, ids["Handbook"])
        return await progress_service.complete_component(
            repos, assignment.id, ids["Handbook"]
        )

    again = asyncio.run(scenario())
    assert again.already_completed
    assert not again.next_step_unlocked
    assert not again.step_completed
    located = again.progress.locate(ids["Handbook"])
    assert located is not None
    assert located[1].attempts_count == 2


# ---- time tracking ----


def test_time_spent_accumulates(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))

    async def scenario():
        await progress_service.add_time_spent(repos, assignment.id, ids["Handbook"], 10)
        return await progress_service.record_interaction(
            repos, assignment.id, ids["Handbook"], time_spent_minutes=5
        )

    result = asyncio.run(scenario())
    assert result.progress.time_spent_minutes == 15


def test_time_spent_must_be_positive(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    with pytest.raises(ValidationError):
        asyncio.run(
            progress_service.add_time_spent(repos, assignment.id, ids["Handbook"], 0)
        )


# ---- lookups and conflicts ----


def test_unknown_component(repos: Repositories) -> None:
    assignment, _ = asyncio.run(_setup(repos))
    with pytest.raises(NotFoundError, match="component"):
        asyncio.run(progress_service.complete_component(repos, assignment.id, uuid4()))


def test_progress_of_unknown_assignment(repos: Repositories) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(progress_service.get_progress(repos, uuid4()))


class _ConflictingProgress:
    def __init__(self, inner, conflicts: int) -> None:
        self._inner = inner
        self._conflicts = conflicts

    def __getattr__(self, name: str):
        return getattr(self._inner, name)

    async def update(self, progress: FlowProgress) -> FlowProgress:
        if self._conflicts > 0:
            self._conflicts -= 1
            raise ConcurrencyConflictError("progress changed")
        return await self._inner.update(progress)


def test_progress_conflict_is_retried_once(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    flaky = replace(repos, progress=_ConflictingProgress(repos.progress, conflicts=1))

    result = asyncio.run(
        progress_service.complete_component(flaky, assignment.id, ids["Handbook"])
    )
    assert result.component_completed
    assert result.overall_percent == 33


def test_progress_conflict_twice_propagates(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    flaky = replace(repos, progress=_ConflictingProgress(repos.progress, conflicts=2))

    with pytest.raises(ConcurrencyConflictError):
        asyncio.run(
            progress_service.complete_component(flaky, assignment.id, ids["Handbook"])
        )


class _ConcurrentAssignmentWriter:
    """Another request touches the assignment just before each of our updates."""

    def __init__(self, inner, writes: int) -> None:
        self._inner = inner
        self._writes = writes
        self.update_calls = 0

    def __getattr__(self, name: str):
        return getattr(self._inner, name)

    async def update(self, assignment: FlowAssignment) -> FlowAssignment:
        self.update_calls += 1
        if self._writes > 0:
            self._writes -= 1
            current = await self._inner.get_by_id(assignment.id)
            await self._inner.update(current)
        return await self._inner.update(assignment)


def _component(repos: Repositories, assignment: FlowAssignment, component_id: UUID):
    located = _progress(repos, assignment).locate(component_id)
    assert located is not None
    return located[1]


def test_assignment_conflict_does_not_repeat_time_tracking(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    racing = _ConcurrentAssignmentWriter(repos.assignments, writes=1)

    result = asyncio.run(
        progress_service.add_time_spent(
            replace(repos, assignments=racing), assignment.id, ids["Handbook"], 10
        )
    )
    assert racing.update_calls == 2
    assert result.progress.time_spent_minutes == 10
    assert _component(repos, assignment, ids["Handbook"]).time_spent_minutes == 10
    assert result.assignment.status == AssignmentStatus.IN_PROGRESS


def test_assignment_conflict_uses_one_quiz_attempt(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos, sequential=False))
    racing = _ConcurrentAssignmentWriter(repos.assignments, writes=1)

    result = asyncio.run(
        progress_service.record_interaction(
            replace(repos, assignments=racing),
            assignment.id,
            ids["Tooling quiz"],
            answers={0: 1, 1: 1},
        )
    )
    assert result.passed is False
    assert _component(repos, assignment, ids["Tooling quiz"]).attempts_count == 1

    # the second of two allowed attempts is still available
    again = asyncio.run(
        progress_service.record_interaction(
            repos, assignment.id, ids["Tooling quiz"], answers={0: 0, 1: 0}
        )
    )
    assert again.passed is True


def test_assignment_conflict_twice_propagates_after_one_progress_write(
    repos: Repositories,
) -> None:
    assignment, ids = asyncio.run(_setup(repos))
    racing = _ConcurrentAssignmentWriter(repos.assignments, writes=2)

    with pytest.raises(ConcurrencyConflictError):
        asyncio.run(
            progress_service.add_time_spent(
                replace(repos, assignments=racing), assignment.id, ids["Handbook"], 10
            )
        )
    assert racing.update_calls == 2
    assert _component(repos, assignment, ids["Handbook"]).time_spent_minutes == 10


def test_rejected_activity_leaves_the_assignment_untouched(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos))

    with pytest.raises(InvalidStateTransitionError, match="previous step"):
        asyncio.run(
            progress_service.complete_component(repos, assignment.id, ids["Code word"])
        )
    stored = asyncio.run(assignment_service.get_assignment(repos, assignment.id))
    assert stored.status == AssignmentStatus.ASSIGNED
    assert stored.row_version == assignment.row_version


def test_invalid_answer_leaves_the_assignment_untouched(repos: Repositories) -> None:
    assignment, ids = asyncio.run(_setup(repos, sequential=False))

    with pytest.raises(ValidationError, match="quiz answers"):
        asyncio.run(
            progress_service.record_interaction(repos, assignment.id, ids["Tooling quiz"])
        )
    stored = asyncio.run(assignment_service.get_assignment(repos, assignment.id))
    assert stored.status == AssignmentStatus.ASSIGNED
    assert stored.started_at is None
