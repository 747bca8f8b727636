from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from onboarding.core.errors import ConcurrencyConflictError
from onboarding.models.assignment import (
    ACTIVE_STATUSES,
    OVERDUE_STATUSES,
    AssignmentStatus,
    FlowAssignment,
)


class AssignmentRepo(Protocol):
    async def get_by_id(self, assignment_id: UUID) -> FlowAssignment | None: ...
    async def add(self, assignment: FlowAssignment) -> None: ...
    async def update(self, assignment: FlowAssignment) -> FlowAssignment: ...
    async def find_active(self, user_id: UUID, flow_id: UUID) -> FlowAssignment | None: ...
    async def list_for_user(
        self, user_id: UUID, *, status: AssignmentStatus | None = None
    ) -> list[FlowAssignment]: ...
    async def list_overdue(self, now: datetime) -> list[FlowAssignment]: ...
    async def ids_referencing_snapshot(
        self, snapshot_id: UUID, *, active_only: bool = True
    ) -> list[UUID]: ...
    async def ids_referencing_version(self, flow_version_id: UUID) -> list[UUID]: ...


class InMemoryAssignmentRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, FlowAssignment] = {}

    def clear(self) -> None:
        self._by_id.clear()

    async def get_by_id(self, assignment_id: UUID) -> FlowAssignment | None:
        return self._by_id.get(assignment_id)

    async def add(self, assignment: FlowAssignment) -> None:
        if assignment.id in self._by_id:
            raise ValueError("assignment already exists")
        self._by_id[assignment.id] = assignment

    async def update(self, assignment: FlowAssignment) -> FlowAssignment:
        """Compare-and-set on row_version; returns the stored copy."""
        current = self._by_id.get(assignment.id)
        if current is None:
            raise KeyError("assignment not found")
        if current.row_version != assignment.row_version:
            raise ConcurrencyConflictError(
                f"assignment {assignment.id} was modified concurrently "
                f"(expected row_version {assignment.row_version}, "
                f"found {current.row_version})"
            )
        stored = replace(assignment, row_version=assignment.row_version + 1)
        self._by_id[assignment.id] = stored
        return stored

    async def find_active(self, user_id: UUID, flow_id: UUID) -> FlowAssignment | None:
        return next(
            (
                a
                for a in self._by_id.values()
                if a.user_id == user_id
                and a.flow_id == flow_id
                and a.status in ACTIVE_STATUSES
            ),
            None,
        )

    async def list_for_user(
        self, user_id: UUID, *, status: AssignmentStatus | None = None
    ) -> list[FlowAssignment]:
        return sorted(
            (
                a
                for a in self._by_id.values()
                if a.user_id == user_id and (status is None or a.status == status)
            ),
            key=lambda a: a.assigned_at,
        )

    async def list_overdue(self, now: datetime) -> list[FlowAssignment]:
        return sorted(
            (
                a
                for a in self._by_id.values()
                if a.status in OVERDUE_STATUSES and a.due_date < now
            ),
            key=lambda a: a.due_date,
        )

    async def ids_referencing_snapshot(
        self, snapshot_id: UUID, *, active_only: bool = True
    ) -> list[UUID]:
        return [
            a.id
            for a in self._by_id.values()
            if a.snapshot_id == snapshot_id
            and (not active_only or a.status in ACTIVE_STATUSES)
        ]

    async def ids_referencing_version(self, flow_version_id: UUID) -> list[UUID]:
        return [
            a.id for a in self._by_id.values() if a.flow_version_id == flow_version_id
        ]
