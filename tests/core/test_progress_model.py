from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from onboarding.core.errors import InvalidStateTransitionError, ValidationError
from onboarding.models.progress import (
    ComponentProgress,
    FlowProgress,
    ProgressStatus,
    StepProgress,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _component(order: str = "i", *, required: bool = True) -> ComponentProgress:
    return ComponentProgress(component_snapshot_id=uuid4(), is_required=required, order=order)


def _step(order: str, *components: ComponentProgress, required: bool = True) -> StepProgress:
    return StepProgress(
        step_snapshot_id=uuid4(), is_required=required, order=order, components=components
    )


def _progress(*steps: StepProgress, sequential: bool = True) -> FlowProgress:
    progress = FlowProgress(
        id=uuid4(),
        assignment_id=uuid4(),
        user_id=uuid4(),
        snapshot_id=uuid4(),
        is_sequential=sequential,
        steps=steps,
    )
    # with_step refreshes accessibility for the whole list
    return progress.with_step(steps[0], NOW) if steps else progress


def _complete(progress: FlowProgress, step: StepProgress, at: datetime = NOW) -> FlowProgress:
    current = progress.step(step.step_snapshot_id)
    assert current is not None
    for c in current.components:
        current = current.with_component(c.complete(None, at), at)
    return progress.with_step(current, at)


# ---- component ----


def test_component_complete_keeps_first_completion_and_best_score() -> None:
    c = _component().complete(3, NOW)
    c = c.complete(1, NOW + timedelta(hours=1))
    assert c.status == ProgressStatus.COMPLETED
    assert c.attempts_count == 2
    assert c.best_score == 3
    assert c.last_score == 1
    assert c.completed_at == NOW


def test_failed_attempt_does_not_complete() -> None:
    c = _component().register_attempt(0, NOW)
    assert c.status == ProgressStatus.IN_PROGRESS
    assert c.attempts_count == 1
    assert c.can_attempt(1) is False
    assert c.can_attempt(None) is True


def test_negative_score_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _component().complete(-1, NOW)


def test_time_spent_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        _component().add_time_spent(0)
    assert _component().add_time_spent(5).add_time_spent(3).time_spent_minutes == 8


def test_passing_score() -> None:
    c = _component().complete(4, NOW)
    assert c.has_passing_score(4) is True
    assert c.has_passing_score(5) is False
    assert c.has_passing_score(None) is True


# ---- step ----


def test_step_complete_when_required_components_are() -> None:
    required = _component("i")
    optional = _component("r", required=False)
    step = _step("i", required, optional)
    step = replace(step, is_accessible=True)

    step = step.with_component(required.complete(None, NOW), NOW)
    assert step.is_complete
    assert step.completed_at == NOW
    assert step.progress_percent == 50


def test_step_without_required_components_needs_all() -> None:
    a = _component("i", required=False)
    b = _component("r", required=False)
    step = _step("i", a, b).with_component(a.complete(None, NOW), NOW)
    assert not step.is_complete
    assert step.next_available_component_id() == b.component_snapshot_id


def test_locked_step_cannot_start() -> None:
    with pytest.raises(InvalidStateTransitionError):
        _step("i", _component()).start(NOW)


# ---- flow rollup ----


def test_sequential_flow_unlocks_one_step_at_a_time() -> None:
    first = _step("9", _component())
    second = _step("i", _component())
    third = _step("r", _component())
    progress = _progress(first, second, third)

    assert [s.is_accessible for s in progress.steps] == [True, False, False]
    assert progress.current_step_id == first.step_snapshot_id

    progress = _complete(progress, first)
    assert [s.is_accessible for s in progress.steps] == [True, True, False]
    assert progress.overall_percent == 33
    assert progress.current_step_id == second.step_snapshot_id


def test_non_sequential_flow_opens_every_step() -> None:
    progress = _progress(_step("i", _component()), _step("r", _component()), sequential=False)
    assert all(s.is_accessible for s in progress.steps)


def test_optional_steps_do_not_block_completion() -> None:
    required = _step("i", _component())
    optional = _step("r", _component(), required=False)
    progress = _progress(required, optional, sequential=False)

    progress = _complete(progress, required, NOW + timedelta(hours=1))
    assert progress.is_complete
    assert progress.completed_at == NOW + timedelta(hours=1)
    assert progress.overall_percent == 50


def test_all_optional_flow_needs_every_step() -> None:
    a = _step("i", _component(), required=False)
    b = _step("r", _component(), required=False)
    progress = _complete(_progress(a, b, sequential=False), a)
    assert not progress.is_complete
    assert _complete(progress, b).is_complete


def test_empty_flow_is_never_complete() -> None:
    progress = _progress()
    assert progress.is_complete is False
    assert progress.overall_percent == 0


def test_total_best_score_sums_components() -> None:
    a = _component("i")
    b = _component("r")
    step = replace(_step("i", a, b), is_accessible=True)
    step = step.with_component(a.complete(2, NOW), NOW)
    step = step.with_component(b.register_attempt(5, NOW), NOW)
    progress = _progress(step)
    assert progress.total_best_score == 7
    assert progress.completed_components_count == 1
    assert progress.total_components_count == 2
