from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from uuid import uuid4

import pytest

from onboarding.core.errors import InvalidStateTransitionError, ValidationError
from onboarding.models.assignment import (
    AssignmentStatus,
    FlowAssignment,
    calculate_due_date,
    default_assignment_days,
    percent,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)  # a Monday


def _assignment(total_steps: int = 3) -> FlowAssignment:
    return FlowAssignment.new(
        user_id=uuid4(),
        flow_id=uuid4(),
        snapshot_id=uuid4(),
        assigned_by=uuid4(),
        assigned_at=NOW,
        due_date=NOW + timedelta(days=21),
        total_steps=total_steps,
    )


# ---- percent ----


@pytest.mark.parametrize(
    ("completed", "total", "expected"),
    [(1, 3, 33), (2, 3, 67), (1, 8, 12), (3, 8, 38), (1, 2, 50), (0, 0, 0), (5, 4, 100)],
)
def test_percent_rounds_half_to_even(completed: int, total: int, expected: int) -> None:
    assert percent(completed, total) == expected


# ---- due dates ----


def test_default_assignment_days_has_a_floor() -> None:
    assert default_assignment_days(0, 7) == 7
    assert default_assignment_days(1, 3) == 7
    assert default_assignment_days(3, 5) == 15


def test_calendar_due_date() -> None:
    assert calculate_due_date(NOW, 10) == NOW + timedelta(days=10)


def test_working_day_due_date_skips_weekends() -> None:
    # Five working days from Monday lands on the next Monday
    due = calculate_due_date(NOW, 5, working_days_only=True)
    assert due == NOW + timedelta(days=7)


def test_working_day_due_date_skips_holidays() -> None:
    holiday = date(2026, 3, 3)
    due = calculate_due_date(NOW, 1, working_days_only=True, holidays=frozenset({holiday}))
    assert due.date() == date(2026, 3, 4)


def test_due_date_needs_positive_days() -> None:
    with pytest.raises(ValidationError):
        calculate_due_date(NOW, 0)


# ---- construction ----


def test_due_date_must_follow_assignment() -> None:
    with pytest.raises(ValidationError, match="due_date"):
        FlowAssignment.new(
            user_id=uuid4(),
            flow_id=uuid4(),
            snapshot_id=uuid4(),
            assigned_by=uuid4(),
            assigned_at=NOW,
            due_date=NOW,
            total_steps=1,
        )


def test_buddy_cannot_be_the_assignee() -> None:
    user_id = uuid4()
    with pytest.raises(ValidationError, match="buddy"):
        FlowAssignment.new(
            user_id=user_id,
            flow_id=uuid4(),
            snapshot_id=uuid4(),
            assigned_by=uuid4(),
            assigned_at=NOW,
            due_date=NOW + timedelta(days=7),
            total_steps=1,
            buddy_id=user_id,
        )


# ---- transitions ----


def test_happy_path() -> None:
    a = _assignment()
    assert a.status == AssignmentStatus.ASSIGNED

    a = a.start(NOW)
    assert a.status == AssignmentStatus.IN_PROGRESS
    assert a.started_at == NOW

    a = a.pause("Sick leave", NOW + timedelta(days=1))
    assert a.status == AssignmentStatus.PAUSED
    assert a.pause_reason == "Sick leave"

    a = a.resume(NOW + timedelta(days=2))
    assert a.status == AssignmentStatus.IN_PROGRESS
    assert a.paused_at is None
    assert a.pause_reason is None

    a = a.complete(NOW + timedelta(days=3), requirements_met=True, final_score=7)
    assert a.status == AssignmentStatus.COMPLETED
    assert a.final_score == 7
    assert a.progress_percent == 100
    assert a.is_terminal


def test_start_twice_is_rejected() -> None:
    a = _assignment().start(NOW)
    with pytest.raises(InvalidStateTransitionError, match="cannot start"):
        a.start(NOW)


def test_resume_requires_paused() -> None:
    with pytest.raises(InvalidStateTransitionError):
        _assignment().start(NOW).resume(NOW)


def test_pause_requires_a_reason() -> None:
    with pytest.raises(ValidationError, match="pause reason"):
        _assignment().start(NOW).pause("  ", NOW)


def test_self_pause_can_be_disallowed() -> None:
    with pytest.raises(InvalidStateTransitionError, match="self-pause"):
        _assignment().start(NOW).pause("Holiday", NOW, self_pause_allowed=False)


def test_complete_from_assigned_is_rejected_even_with_override() -> None:
    with pytest.raises(InvalidStateTransitionError, match="cannot complete"):
        _assignment().complete(NOW, requirements_met=False, completion_notes="HR override")


def test_complete_without_requirements_needs_notes() -> None:
    a = _assignment().start(NOW)
    with pytest.raises(InvalidStateTransitionError, match="override notes"):
        a.complete(NOW, requirements_met=False)

    done = a.complete(NOW, requirements_met=False, completion_notes=" Transferred team ")
    assert done.completion_notes == "Transferred team"


@pytest.mark.parametrize("status", ["completed", "cancelled"])
def test_terminal_states_reject_cancel(status: str) -> None:
    a = _assignment().start(NOW)
    if status == "completed":
        a = a.complete(NOW, requirements_met=True)
    else:
        a = a.cancel("Left the company", NOW)
    with pytest.raises(InvalidStateTransitionError):
        a.cancel(None, NOW)


def test_cancel_from_paused() -> None:
    a = _assignment().start(NOW).pause("Travel", NOW).cancel(None, NOW)
    assert a.status == AssignmentStatus.CANCELLED
    assert a.cancellation_reason is None


def test_progress_cannot_change_after_completion() -> None:
    a = _assignment().start(NOW).complete(NOW, requirements_met=True)
    with pytest.raises(InvalidStateTransitionError):
        a.with_progress(1, NOW)


def test_feedback_only_after_completion() -> None:
    a = _assignment().start(NOW)
    with pytest.raises(InvalidStateTransitionError):
        a.with_feedback(5, "Great", NOW)
    done = a.complete(NOW, requirements_met=True).with_feedback(4, " Useful ", NOW)
    assert done.user_rating == 4
    assert done.user_feedback == "Useful"


# ---- derived ----


def test_progress_percent_follows_completed_steps() -> None:
    a = _assignment(total_steps=3).start(NOW).with_progress(1, NOW)
    assert a.progress_percent == 33


def test_overdue_only_while_assigned_or_in_progress() -> None:
    a = _assignment()
    later = a.due_date + timedelta(seconds=1)
    assert a.is_overdue(later)
    assert not a.is_overdue(a.due_date)

    paused = a.start(NOW).pause("Break", NOW)
    assert not paused.is_overdue(later)
    assert paused.is_active
