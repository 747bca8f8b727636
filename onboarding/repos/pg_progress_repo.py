"""PostgreSQL implementation of ProgressRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.errors import ConcurrencyConflictError
from onboarding.db.tables import ComponentProgressRow, FlowProgressRow, StepProgressRow
from onboarding.models.progress import (
    ComponentProgress,
    FlowProgress,
    ProgressStatus,
    StepProgress,
)


class PgProgressRepo:
    """Satisfies the ProgressRepo Protocol using PostgreSQL via SQLAlchemy.

    The flow_progress row carries the row_version; step and component
    rows are rewritten under it on every update.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_assignment_id(self, assignment_id: UUID) -> FlowProgress | None:
        stmt = (
            select(FlowProgressRow)
            .where(FlowProgressRow.assignment_id == assignment_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return await self._load(row)

    async def add(self, progress: FlowProgress) -> None:
        self._session.add(
            FlowProgressRow(
                id=progress.id,
                assignment_id=progress.assignment_id,
                user_id=progress.user_id,
                snapshot_id=progress.snapshot_id,
                is_sequential=progress.is_sequential,
                started_at=progress.started_at,
                completed_at=progress.completed_at,
                last_activity_at=progress.last_activity_at,
                row_version=progress.row_version,
            )
        )
        await self._session.flush()
        await self._insert_children(progress)

    async def update(self, progress: FlowProgress) -> FlowProgress:
        stmt = (
            update(FlowProgressRow)
            .where(
                FlowProgressRow.id == progress.id,
                FlowProgressRow.row_version == progress.row_version,
            )
            .values(
                started_at=progress.started_at,
                completed_at=progress.completed_at,
                last_activity_at=progress.last_activity_at,
                row_version=progress.row_version + 1,
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            if await self.get_by_assignment_id(progress.assignment_id) is None:
                raise KeyError("progress not found")
            raise ConcurrencyConflictError(
                f"progress for assignment {progress.assignment_id} was "
                "modified concurrently"
            )
        await self._session.execute(
            delete(ComponentProgressRow).where(
                ComponentProgressRow.flow_progress_id == progress.id
            )
        )
        await self._session.execute(
            delete(StepProgressRow).where(StepProgressRow.flow_progress_id == progress.id)
        )
        await self._insert_children(progress)
        stored = await self.get_by_assignment_id(progress.assignment_id)
        assert stored is not None
        return stored

    async def _insert_children(self, progress: FlowProgress) -> None:
        for s in progress.steps:
            self._session.add(
                StepProgressRow(
                    flow_progress_id=progress.id,
                    step_snapshot_id=s.step_snapshot_id,
                    order_key=s.order,
                    is_required=s.is_required,
                    is_accessible=s.is_accessible,
                    started_at=s.started_at,
                    completed_at=s.completed_at,
                )
            )
            for c in s.components:
                self._session.add(
                    ComponentProgressRow(
                        flow_progress_id=progress.id,
                        component_snapshot_id=c.component_snapshot_id,
                        step_snapshot_id=s.step_snapshot_id,
                        order_key=c.order,
                        is_required=c.is_required,
                        status=str(c.status),
                        attempts_count=c.attempts_count,
                        best_score=c.best_score,
                        last_score=c.last_score,
                        time_spent_minutes=c.time_spent_minutes,
                        started_at=c.started_at,
                        completed_at=c.completed_at,
                        last_attempt_at=c.last_attempt_at,
                    )
                )
        await self._session.flush()

    async def _load(self, row: FlowProgressRow) -> FlowProgress:
        step_rows = (
            (
                await self._session.execute(
                    select(StepProgressRow)
                    .where(StepProgressRow.flow_progress_id == row.id)
                    .order_by(StepProgressRow.order_key)
                    .execution_options(populate_existing=True)
                )
            )
            .scalars()
            .all()
        )
        component_rows = (
            (
                await self._session.execute(
                    select(ComponentProgressRow)
                    .where(ComponentProgressRow.flow_progress_id == row.id)
                    .order_by(ComponentProgressRow.order_key)
                    .execution_options(populate_existing=True)
                )
            )
            .scalars()
            .all()
        )
        by_step: dict[UUID, list[ComponentProgress]] = {}
        for c in component_rows:
            by_step.setdefault(c.step_snapshot_id, []).append(
                ComponentProgress(
                    component_snapshot_id=c.component_snapshot_id,
                    is_required=c.is_required,
                    order=c.order_key,
                    status=ProgressStatus(c.status),
                    attempts_count=c.attempts_count,
                    best_score=c.best_score,
                    last_score=c.last_score,
                    time_spent_minutes=c.time_spent_minutes,
                    started_at=c.started_at,
                    completed_at=c.completed_at,
                    last_attempt_at=c.last_attempt_at,
                )
            )
        return FlowProgress(
            id=row.id,
            assignment_id=row.assignment_id,
            user_id=row.user_id,
            snapshot_id=row.snapshot_id,
            is_sequential=row.is_sequential,
            steps=tuple(
                StepProgress(
                    step_snapshot_id=s.step_snapshot_id,
                    is_required=s.is_required,
                    order=s.order_key,
                    is_accessible=s.is_accessible,
                    components=tuple(by_step.get(s.step_snapshot_id, ())),
                    started_at=s.started_at,
                    completed_at=s.completed_at,
                )
                for s in step_rows
            ),
            started_at=row.started_at,
            completed_at=row.completed_at,
            last_activity_at=row.last_activity_at,
            row_version=row.row_version,
        )
