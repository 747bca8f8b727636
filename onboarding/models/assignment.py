"""Flow assignment: a user bound to a flow snapshot, plus its lifecycle.

State machine::

    Assigned ──start──▶ InProgress ──complete──▶ Completed
                          │    ▲
                     pause│    │resume
                          ▼    │
                          Paused

    Assigned | InProgress | Paused ──cancel──▶ Cancelled

Completed and Cancelled are terminal.  Overdue is not a state: it is the
predicate ``status in (Assigned, InProgress) and due_date < now``.

Every transition returns a new FlowAssignment; the caller persists it
with a row_version compare-and-set (see repos/assignment_repo.py), so a
transition validated against a stale read can never be written.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_EVEN, Decimal
from enum import StrEnum
from uuid import UUID, uuid4

from onboarding.core.errors import InvalidStateTransitionError, ValidationError

MIN_ASSIGNMENT_DAYS = 7


class AssignmentStatus(StrEnum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED})
ACTIVE_STATUSES = frozenset(
    {AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS, AssignmentStatus.PAUSED}
)
OVERDUE_STATUSES = frozenset({AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS})


def percent(completed: int, total: int) -> int:
    """completed × 100 / total, rounded half-to-even, clamped to [0, 100].

    The single rounding rule for every progress percentage in the
    service: 1/3 → 33, 2/3 → 67, 1/8 → 12, 3/8 → 38.
    """
    if total <= 0:
        return 0
    value = (Decimal(completed) * 100 / Decimal(total)).quantize(
        Decimal(1), rounding=ROUND_HALF_EVEN
    )
    return max(0, min(100, int(value)))


def calculate_due_date(
    start: datetime,
    days: int,
    *,
    working_days_only: bool = False,
    holidays: frozenset[date] = frozenset(),
) -> datetime:
    """Add calendar days, or working days (Mon-Fri minus holidays)."""
    if days <= 0:
        raise ValidationError("days must be > 0")
    if not working_days_only:
        return start + timedelta(days=days)

    current = start
    remaining = days
    while remaining > 0:
        current += timedelta(days=1)
        if current.weekday() < 5 and current.date() not in holidays:
            remaining -= 1
    return current


def default_assignment_days(total_steps: int, days_per_step: int) -> int:
    return max(MIN_ASSIGNMENT_DAYS, total_steps * days_per_step)


@dataclass(frozen=True, slots=True)
class FlowAssignment:
    id: UUID
    user_id: UUID
    flow_id: UUID
    snapshot_id: UUID | None
    assigned_by: UUID
    assigned_at: datetime
    due_date: datetime
    updated_at: datetime
    total_steps: int
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    completed_steps: int = 0
    flow_version_id: UUID | None = None
    content_id: UUID | None = None
    buddy_id: UUID | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    paused_at: datetime | None = None
    pause_reason: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    completion_notes: str | None = None
    attempt_count: int = 1
    final_score: int | None = None
    user_rating: int | None = None
    user_feedback: str | None = None
    row_version: int = 1

    def __post_init__(self) -> None:
        if self.total_steps < 0:
            raise ValidationError("total_steps must be >= 0")
        if not 0 <= self.completed_steps <= self.total_steps:
            raise ValidationError("completed_steps must be within [0, total_steps]")
        if self.buddy_id is not None and self.buddy_id == self.user_id:
            raise ValidationError("buddy must be someone other than the assignee")
        if self.user_rating is not None and not 1 <= self.user_rating <= 5:
            raise ValidationError("user_rating must be between 1 and 5")

    @staticmethod
    def new(
        *,
        user_id: UUID,
        flow_id: UUID,
        snapshot_id: UUID,
        assigned_by: UUID,
        assigned_at: datetime,
        due_date: datetime,
        total_steps: int,
        flow_version_id: UUID | None = None,
        content_id: UUID | None = None,
        buddy_id: UUID | None = None,
    ) -> FlowAssignment:
        if due_date <= assigned_at:
            raise ValidationError("due_date must be after assigned_at")
        return FlowAssignment(
            id=uuid4(),
            user_id=user_id,
            flow_id=flow_id,
            snapshot_id=snapshot_id,
            assigned_by=assigned_by,
            assigned_at=assigned_at,
            due_date=due_date,
            updated_at=assigned_at,
            total_steps=total_steps,
            flow_version_id=flow_version_id,
            content_id=content_id,
            buddy_id=buddy_id,
        )

    # ---- derived ----

    @property
    def progress_percent(self) -> int:
        if self.status == AssignmentStatus.COMPLETED:
            return 100
        return percent(self.completed_steps, self.total_steps)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_overdue(self, now: datetime) -> bool:
        return self.status in OVERDUE_STATUSES and self.due_date < now

    # ---- transitions ----

    def _require(self, transition: str, *allowed: AssignmentStatus) -> None:
        if self.status not in allowed:
            raise InvalidStateTransitionError(transition, self.status)

    def start(self, now: datetime) -> FlowAssignment:
        self._require("start", AssignmentStatus.ASSIGNED)
        return replace(
            self, status=AssignmentStatus.IN_PROGRESS, started_at=now, updated_at=now
        )

    def pause(
        self, reason: str, now: datetime, *, self_pause_allowed: bool = True
    ) -> FlowAssignment:
        self._require("pause", AssignmentStatus.IN_PROGRESS)
        if not self_pause_allowed:
            raise InvalidStateTransitionError(
                "pause", self.status, "flow settings do not allow self-pause"
            )
        if not reason or not reason.strip():
            raise ValidationError("pause reason must be non-empty")
        return replace(
            self,
            status=AssignmentStatus.PAUSED,
            paused_at=now,
            pause_reason=reason.strip(),
            updated_at=now,
        )

    def resume(self, now: datetime) -> FlowAssignment:
        self._require("resume", AssignmentStatus.PAUSED)
        return replace(
            self,
            status=AssignmentStatus.IN_PROGRESS,
            paused_at=None,
            pause_reason=None,
            updated_at=now,
        )

    def complete(
        self,
        now: datetime,
        *,
        requirements_met: bool,
        final_score: int | None = None,
        completion_notes: str | None = None,
    ) -> FlowAssignment:
        """Finish the assignment.

        Without requirements_met the caller must supply completion_notes,
        which is recorded as the explicit override.  The state check comes
        first: an Assigned assignment cannot be completed, override or not.
        """
        self._require("complete", AssignmentStatus.IN_PROGRESS)
        notes = completion_notes.strip() if completion_notes else None
        if not requirements_met and not notes:
            raise InvalidStateTransitionError(
                "complete",
                self.status,
                "required steps are incomplete and no override notes were given",
            )
        if final_score is not None and final_score < 0:
            raise ValidationError("final_score must be >= 0")
        return replace(
            self,
            status=AssignmentStatus.COMPLETED,
            completed_at=now,
            final_score=final_score,
            completion_notes=notes,
            updated_at=now,
        )

    def cancel(self, reason: str | None, now: datetime) -> FlowAssignment:
        self._require("cancel", *ACTIVE_STATUSES)
        return replace(
            self,
            status=AssignmentStatus.CANCELLED,
            cancelled_at=now,
            cancellation_reason=reason.strip() if reason else None,
            updated_at=now,
        )

    def with_progress(self, completed_steps: int, now: datetime) -> FlowAssignment:
        if self.is_terminal:
            raise InvalidStateTransitionError("record progress", self.status)
        return replace(self, completed_steps=completed_steps, updated_at=now)

    def with_feedback(
        self, rating: int, feedback: str | None, now: datetime
    ) -> FlowAssignment:
        self._require("leave feedback", AssignmentStatus.COMPLETED)
        return replace(
            self,
            user_rating=rating,
            user_feedback=feedback.strip() if feedback else None,
            updated_at=now,
        )
