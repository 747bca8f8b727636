"""Frozen, self-contained copies of a flow taken at assignment time.

Snapshot records only point back at the live flow through the
traceability ids (original_flow_id / original_step_id /
original_component_id); they never reference live rows, so editing or
deleting the live flow cannot change what an assignee is evaluated
against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from onboarding.models.flow import (
    Component,
    ComponentPayload,
    ComponentType,
    Flow,
    FlowContent,
    FlowSettings,
    FlowStep,
)


@dataclass(frozen=True, slots=True)
class ComponentSnapshot:
    id: UUID
    original_component_id: UUID
    type: ComponentType
    title: str
    description: str
    order: str
    is_required: bool
    estimated_minutes: int
    payload: ComponentPayload
    max_attempts: int | None = None
    minimum_score: int | None = None

    @staticmethod
    def of(component: Component) -> ComponentSnapshot:
        # Payloads are frozen all the way down, so sharing them is a copy
        return ComponentSnapshot(
            id=uuid4(),
            original_component_id=component.id,
            type=component.type,
            title=component.title,
            description=component.description,
            order=component.order,
            is_required=component.is_required,
            estimated_minutes=component.estimated_minutes,
            payload=component.payload,
            max_attempts=component.max_attempts,
            minimum_score=component.minimum_score,
        )

    @property
    def has_attempts_limit(self) -> bool:
        return self.max_attempts is not None

    @property
    def requires_minimum_score(self) -> bool:
        return self.minimum_score is not None

    @property
    def max_score(self) -> int:
        return self.payload.max_score


@dataclass(frozen=True, slots=True)
class StepSnapshot:
    id: UUID
    original_step_id: UUID
    title: str
    description: str
    order: str
    is_required: bool
    components: tuple[ComponentSnapshot, ...] = ()

    @staticmethod
    def of(step: FlowStep) -> StepSnapshot:
        return StepSnapshot(
            id=uuid4(),
            original_step_id=step.id,
            title=step.title,
            description=step.description,
            order=step.order,
            is_required=step.is_required,
            components=tuple(
                ComponentSnapshot.of(c) for c in step.enabled_components()
            ),
        )

    def ordered_components(self) -> list[ComponentSnapshot]:
        return sorted(self.components, key=lambda c: c.order)

    @property
    def estimated_minutes(self) -> int:
        return sum(c.estimated_minutes for c in self.components)


@dataclass(frozen=True, slots=True)
class FlowSnapshot:
    id: UUID
    original_flow_id: UUID
    version: int
    title: str
    description: str
    created_at: datetime
    content_version: int
    settings: FlowSettings = field(default_factory=FlowSettings)
    is_required: bool = False
    estimated_hours: int = 0
    tags: tuple[str, ...] = ()
    flow_version_id: UUID | None = None
    created_by: UUID | None = None
    steps: tuple[StepSnapshot, ...] = ()

    @staticmethod
    def capture(
        *,
        flow: Flow,
        content: FlowContent,
        version: int,
        created_at: datetime,
        flow_version_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> FlowSnapshot:
        """Copy the flow and its enabled steps/components, ordered by key."""
        return FlowSnapshot(
            id=uuid4(),
            original_flow_id=flow.id,
            version=version,
            title=flow.name,
            description=flow.description,
            created_at=created_at,
            content_version=content.version,
            settings=flow.settings,
            is_required=flow.is_required,
            estimated_hours=flow.estimated_hours,
            tags=flow.tags,
            flow_version_id=flow_version_id,
            created_by=created_by,
            steps=tuple(StepSnapshot.of(s) for s in content.enabled_steps()),
        )

    def ordered_steps(self) -> list[StepSnapshot]:
        return sorted(self.steps, key=lambda s: s.order)

    def total_components_count(self) -> int:
        return sum(len(s.components) for s in self.steps)

    def step(self, step_id: UUID) -> StepSnapshot | None:
        return next((s for s in self.steps if s.id == step_id), None)

    def find_component(
        self, component_id: UUID
    ) -> tuple[StepSnapshot, ComponentSnapshot] | None:
        for s in self.steps:
            for c in s.components:
                if c.id == component_id:
                    return s, c
        return None
