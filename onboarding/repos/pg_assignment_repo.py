"""PostgreSQL implementation of AssignmentRepo."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.errors import AlreadyAssignedError, ConcurrencyConflictError
from onboarding.db.tables import FlowAssignmentRow
from onboarding.models.assignment import (
    ACTIVE_STATUSES,
    OVERDUE_STATUSES,
    AssignmentStatus,
    FlowAssignment,
)

_ACTIVE = [str(s) for s in ACTIVE_STATUSES]
_OVERDUE = [str(s) for s in OVERDUE_STATUSES]


class PgAssignmentRepo:
    """Satisfies the AssignmentRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, assignment_id: UUID) -> FlowAssignment | None:
        stmt = (
            select(FlowAssignmentRow)
            .where(FlowAssignmentRow.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_assignment(row)

    async def add(self, assignment: FlowAssignment) -> None:
        row = FlowAssignmentRow(id=assignment.id, **_values(assignment))
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError as exc:
            raise AlreadyAssignedError(
                f"user {assignment.user_id} already has an active assignment "
                f"for flow {assignment.flow_id}"
            ) from exc

    async def update(self, assignment: FlowAssignment) -> FlowAssignment:
        """Compare-and-set on row_version; returns the stored copy."""
        values = _values(assignment)
        values["row_version"] = assignment.row_version + 1
        stmt = (
            update(FlowAssignmentRow)
            .where(
                FlowAssignmentRow.id == assignment.id,
                FlowAssignmentRow.row_version == assignment.row_version,
            )
            .values(**values)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            if await self.get_by_id(assignment.id) is None:
                raise KeyError("assignment not found")
            raise ConcurrencyConflictError(
                f"assignment {assignment.id} was modified concurrently "
                f"(expected row_version {assignment.row_version})"
            )
        stored = await self.get_by_id(assignment.id)
        assert stored is not None
        return stored

    async def find_active(self, user_id: UUID, flow_id: UUID) -> FlowAssignment | None:
        stmt = select(FlowAssignmentRow).where(
            FlowAssignmentRow.user_id == user_id,
            FlowAssignmentRow.flow_id == flow_id,
            FlowAssignmentRow.status.in_(_ACTIVE),
        )
        row = (await self._session.execute(stmt)).scalars().first()
        if row is None:
            return None
        return _row_to_assignment(row)

    async def list_for_user(
        self, user_id: UUID, *, status: AssignmentStatus | None = None
    ) -> list[FlowAssignment]:
        stmt = (
            select(FlowAssignmentRow)
            .where(FlowAssignmentRow.user_id == user_id)
            .order_by(FlowAssignmentRow.assigned_at)
        )
        if status is not None:
            stmt = stmt.where(FlowAssignmentRow.status == str(status))
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_assignment(r) for r in rows]

    async def list_overdue(self, now: datetime) -> list[FlowAssignment]:
        stmt = (
            select(FlowAssignmentRow)
            .where(
                FlowAssignmentRow.status.in_(_OVERDUE),
                FlowAssignmentRow.due_date < now,
            )
            .order_by(FlowAssignmentRow.due_date)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_assignment(r) for r in rows]

    async def ids_referencing_snapshot(
        self, snapshot_id: UUID, *, active_only: bool = True
    ) -> list[UUID]:
        stmt = select(FlowAssignmentRow.id).where(
            FlowAssignmentRow.snapshot_id == snapshot_id
        )
        if active_only:
            stmt = stmt.where(FlowAssignmentRow.status.in_(_ACTIVE))
        return list((await self._session.execute(stmt)).scalars().all())

    async def ids_referencing_version(self, flow_version_id: UUID) -> list[UUID]:
        stmt = select(FlowAssignmentRow.id).where(
            FlowAssignmentRow.flow_version_id == flow_version_id
        )
        return list((await self._session.execute(stmt)).scalars().all())


def _values(a: FlowAssignment) -> dict:
    return {
        "user_id": a.user_id,
        "flow_id": a.flow_id,
        "snapshot_id": a.snapshot_id,
        "flow_version_id": a.flow_version_id,
        "content_id": a.content_id,
        "buddy_id": a.buddy_id,
        "assigned_by": a.assigned_by,
        "status": str(a.status),
        "completed_steps": a.completed_steps,
        "total_steps": a.total_steps,
        "assigned_at": a.assigned_at,
        "due_date": a.due_date,
        "started_at": a.started_at,
        "completed_at": a.completed_at,
        "paused_at": a.paused_at,
        "pause_reason": a.pause_reason,
        "cancelled_at": a.cancelled_at,
        "cancellation_reason": a.cancellation_reason,
        "completion_notes": a.completion_notes,
        "attempt_count": a.attempt_count,
        "final_score": a.final_score,
        "user_rating": a.user_rating,
        "user_feedback": a.user_feedback,
        "row_version": a.row_version,
        "updated_at": a.updated_at,
    }


def _row_to_assignment(row: FlowAssignmentRow) -> FlowAssignment:
    return FlowAssignment(
        id=row.id,
        user_id=row.user_id,
        flow_id=row.flow_id,
        snapshot_id=row.snapshot_id,
        assigned_by=row.assigned_by,
        assigned_at=row.assigned_at,
        due_date=row.due_date,
        updated_at=row.updated_at,
        total_steps=row.total_steps,
        status=AssignmentStatus(row.status),
        completed_steps=row.completed_steps,
        flow_version_id=row.flow_version_id,
        content_id=row.content_id,
        buddy_id=row.buddy_id,
        started_at=row.started_at,
        completed_at=row.completed_at,
        paused_at=row.paused_at,
        pause_reason=row.pause_reason,
        cancelled_at=row.cancelled_at,
        cancellation_reason=row.cancellation_reason,
        completion_notes=row.completion_notes,
        attempt_count=row.attempt_count,
        final_score=row.final_score,
        user_rating=row.user_rating,
        user_feedback=row.user_feedback,
        row_version=row.row_version,
    )
