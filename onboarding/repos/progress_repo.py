from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from onboarding.core.errors import ConcurrencyConflictError
from onboarding.models.progress import FlowProgress


class ProgressRepo(Protocol):
    async def get_by_assignment_id(self, assignment_id: UUID) -> FlowProgress | None: ...
    async def add(self, progress: FlowProgress) -> None: ...
    async def update(self, progress: FlowProgress) -> FlowProgress: ...


class InMemoryProgressRepo:
    def __init__(self) -> None:
        self._by_assignment: dict[UUID, FlowProgress] = {}

    def clear(self) -> None:
        self._by_assignment.clear()

    async def get_by_assignment_id(self, assignment_id: UUID) -> FlowProgress | None:
        return self._by_assignment.get(assignment_id)

    async def add(self, progress: FlowProgress) -> None:
        if progress.assignment_id in self._by_assignment:
            raise ValueError("progress already exists for assignment")
        self._by_assignment[progress.assignment_id] = progress

    async def update(self, progress: FlowProgress) -> FlowProgress:
        current = self._by_assignment.get(progress.assignment_id)
        if current is None:
            raise KeyError("progress not found")
        if current.row_version != progress.row_version:
            raise ConcurrencyConflictError(
                f"progress for assignment {progress.assignment_id} was "
                "modified concurrently"
            )
        stored = replace(progress, row_version=progress.row_version + 1)
        self._by_assignment[progress.assignment_id] = stored
        return stored
