"""Per-assignment progress tree: FlowProgress → StepProgress → ComponentProgress.

The tree mirrors the assignment's snapshot and is the single source of
truth for completion.  Counts and percentages are properties computed
from the leaves on every read, so they cannot drift from the stored
component records.  The assignment's completed_steps counter is a
denormalized copy refreshed from here after every change.

Completion rules:
  - a step is complete when all of its required components are; a step
    with no required components is complete once all of its components are
  - a flow is complete when all of its required steps are (optional steps
    never block), or, with no required steps, when every step is
  - in a sequential flow step i is accessible iff i == 0 or step i-1 is
    complete; otherwise every step is accessible
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from uuid import UUID, uuid4

from onboarding.core.errors import InvalidStateTransitionError, ValidationError
from onboarding.models.assignment import percent
from onboarding.models.snapshot import FlowSnapshot


class ProgressStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class ComponentProgress:
    component_snapshot_id: UUID
    is_required: bool
    order: str
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    attempts_count: int = 0
    best_score: int | None = None
    last_score: int | None = None
    time_spent_minutes: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_attempt_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == ProgressStatus.COMPLETED

    def start(self, now: datetime) -> ComponentProgress:
        if self.status != ProgressStatus.NOT_STARTED:
            return self
        return replace(self, status=ProgressStatus.IN_PROGRESS, started_at=now)

    def complete(self, score: int | None, now: datetime) -> ComponentProgress:
        """Mark completed and record the attempt.

        completed_at keeps the first completion; repeat completions only
        update scores and the attempt counter.
        """
        if score is not None and score < 0:
            raise ValidationError("score must be >= 0")
        return replace(
            self,
            status=ProgressStatus.COMPLETED,
            attempts_count=self.attempts_count + 1,
            last_score=score,
            best_score=_best(self.best_score, score),
            started_at=self.started_at or now,
            completed_at=self.completed_at or now,
            last_attempt_at=now,
        )

    def register_attempt(self, score: int | None, now: datetime) -> ComponentProgress:
        """Record an attempt that did not complete the component."""
        if score is not None and score < 0:
            raise ValidationError("score must be >= 0")
        return replace(
            self,
            status=(
                ProgressStatus.COMPLETED
                if self.is_completed
                else ProgressStatus.IN_PROGRESS
            ),
            attempts_count=self.attempts_count + 1,
            last_score=score,
            best_score=_best(self.best_score, score),
            started_at=self.started_at or now,
            last_attempt_at=now,
        )

    def add_time_spent(self, minutes: int) -> ComponentProgress:
        if minutes <= 0:
            raise ValidationError("time spent must be positive")
        return replace(self, time_spent_minutes=self.time_spent_minutes + minutes)

    def reset(self) -> ComponentProgress:
        return ComponentProgress(
            component_snapshot_id=self.component_snapshot_id,
            is_required=self.is_required,
            order=self.order,
        )

    def can_attempt(self, max_attempts: int | None) -> bool:
        return max_attempts is None or self.attempts_count < max_attempts

    def has_passing_score(self, minimum_score: int | None) -> bool:
        if minimum_score is None:
            return self.is_completed
        return self.best_score is not None and self.best_score >= minimum_score


def _best(current: int | None, score: int | None) -> int | None:
    if score is None:
        return current
    if current is None:
        return score
    return max(current, score)


@dataclass(frozen=True, slots=True)
class StepProgress:
    step_snapshot_id: UUID
    is_required: bool
    order: str
    is_accessible: bool = False
    components: tuple[ComponentProgress, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def total_components_count(self) -> int:
        return len(self.components)

    @property
    def completed_components_count(self) -> int:
        return sum(1 for c in self.components if c.is_completed)

    @property
    def is_complete(self) -> bool:
        required = [c for c in self.components if c.is_required]
        if required:
            return all(c.is_completed for c in required)
        return all(c.is_completed for c in self.components)

    @property
    def progress_percent(self) -> int:
        return percent(self.completed_components_count, self.total_components_count)

    @property
    def time_spent_minutes(self) -> int:
        return sum(c.time_spent_minutes for c in self.components)

    def component(self, component_snapshot_id: UUID) -> ComponentProgress | None:
        return next(
            (
                c
                for c in self.components
                if c.component_snapshot_id == component_snapshot_id
            ),
            None,
        )

    def start(self, now: datetime) -> StepProgress:
        if not self.is_accessible:
            raise InvalidStateTransitionError("start step", "locked")
        if self.started_at is not None:
            return self
        return replace(self, started_at=now)

    def with_component(self, updated: ComponentProgress, now: datetime) -> StepProgress:
        """Swap in an updated component and recompute completion stamps."""
        components = tuple(
            updated if c.component_snapshot_id == updated.component_snapshot_id else c
            for c in self.components
        )
        step = replace(self, components=components, started_at=self.started_at or now)
        if step.is_complete and step.completed_at is None:
            step = replace(step, completed_at=now)
        elif not step.is_complete and step.completed_at is not None:
            step = replace(step, completed_at=None)
        return step

    def next_available_component_id(self) -> UUID | None:
        for c in sorted(self.components, key=lambda c: c.order):
            if not c.is_completed:
                return c.component_snapshot_id
        return None

    def incomplete_required_component_ids(self) -> list[UUID]:
        return [
            c.component_snapshot_id
            for c in sorted(self.components, key=lambda c: c.order)
            if c.is_required and not c.is_completed
        ]


@dataclass(frozen=True, slots=True)
class FlowProgress:
    id: UUID
    assignment_id: UUID
    user_id: UUID
    snapshot_id: UUID
    is_sequential: bool
    steps: tuple[StepProgress, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_activity_at: datetime | None = None
    row_version: int = 1

    @staticmethod
    def initial(
        *, assignment_id: UUID, user_id: UUID, snapshot: FlowSnapshot
    ) -> FlowProgress:
        steps = tuple(
            StepProgress(
                step_snapshot_id=s.id,
                is_required=s.is_required,
                order=s.order,
                components=tuple(
                    ComponentProgress(
                        component_snapshot_id=c.id,
                        is_required=c.is_required,
                        order=c.order,
                    )
                    for c in s.ordered_components()
                ),
            )
            for s in snapshot.ordered_steps()
        )
        is_sequential = snapshot.settings.requires_sequential_completion
        return FlowProgress(
            id=uuid4(),
            assignment_id=assignment_id,
            user_id=user_id,
            snapshot_id=snapshot.id,
            is_sequential=is_sequential,
            steps=_refresh_access(steps, is_sequential),
        )

    # ---- rollup ----

    @property
    def total_steps_count(self) -> int:
        return len(self.steps)

    @property
    def completed_steps_count(self) -> int:
        return sum(1 for s in self.steps if s.is_complete)

    @property
    def is_complete(self) -> bool:
        if not self.steps:
            return False
        required = [s for s in self.steps if s.is_required]
        if required:
            return all(s.is_complete for s in required)
        return all(s.is_complete for s in self.steps)

    @property
    def overall_percent(self) -> int:
        return percent(self.completed_steps_count, self.total_steps_count)

    @property
    def total_components_count(self) -> int:
        return sum(s.total_components_count for s in self.steps)

    @property
    def completed_components_count(self) -> int:
        return sum(s.completed_components_count for s in self.steps)

    @property
    def time_spent_minutes(self) -> int:
        return sum(s.time_spent_minutes for s in self.steps)

    @property
    def total_best_score(self) -> int:
        return sum(
            c.best_score or 0 for s in self.steps for c in s.components
        )

    @property
    def current_step_id(self) -> UUID | None:
        """First accessible step that is not complete yet."""
        for s in self.steps:
            if s.is_accessible and not s.is_complete:
                return s.step_snapshot_id
        return None

    # ---- lookups ----

    def step(self, step_snapshot_id: UUID) -> StepProgress | None:
        return next(
            (s for s in self.steps if s.step_snapshot_id == step_snapshot_id), None
        )

    def locate(
        self, component_snapshot_id: UUID
    ) -> tuple[StepProgress, ComponentProgress] | None:
        for s in self.steps:
            c = s.component(component_snapshot_id)
            if c is not None:
                return s, c
        return None

    def is_step_accessible(self, step_snapshot_id: UUID) -> bool:
        step = self.step(step_snapshot_id)
        return step is not None and step.is_accessible

    # ---- updates ----

    def with_step(self, updated: StepProgress, now: datetime) -> FlowProgress:
        steps = tuple(
            updated if s.step_snapshot_id == updated.step_snapshot_id else s
            for s in self.steps
        )
        progress = replace(
            self,
            steps=_refresh_access(steps, self.is_sequential),
            started_at=self.started_at or now,
            last_activity_at=now,
        )
        if progress.is_complete and progress.completed_at is None:
            progress = replace(progress, completed_at=now)
        return progress


def _refresh_access(
    steps: tuple[StepProgress, ...], is_sequential: bool
) -> tuple[StepProgress, ...]:
    ordered = sorted(steps, key=lambda s: s.order)
    refreshed: list[StepProgress] = []
    previous_complete = True
    for s in ordered:
        accessible = previous_complete if is_sequential else True
        if s.is_accessible != accessible:
            s = replace(s, is_accessible=accessible)
        refreshed.append(s)
        previous_complete = s.is_complete
    return tuple(refreshed)
