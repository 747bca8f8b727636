"""PostgreSQL implementation of SnapshotRepo."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.errors import ConcurrencyConflictError
from onboarding.db.tables import ComponentSnapshotRow, FlowSnapshotRow, StepSnapshotRow
from onboarding.models.flow import (
    ComponentType,
    FlowSettings,
    payload_from_dict,
    payload_to_dict,
)
from onboarding.models.snapshot import ComponentSnapshot, FlowSnapshot, StepSnapshot


class PgSnapshotRepo:
    """Satisfies the SnapshotRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, snapshot: FlowSnapshot) -> None:
        row = FlowSnapshotRow(
            id=snapshot.id,
            original_flow_id=snapshot.original_flow_id,
            flow_version_id=snapshot.flow_version_id,
            version=snapshot.version,
            content_version=snapshot.content_version,
            title=snapshot.title,
            description=snapshot.description,
            is_required=snapshot.is_required,
            estimated_hours=snapshot.estimated_hours,
            tags=list(snapshot.tags),
            settings=snapshot.settings.to_dict(),
            created_by=snapshot.created_by,
            created_at=snapshot.created_at,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                f"snapshot version {snapshot.version} of flow "
                f"{snapshot.original_flow_id} already exists"
            ) from exc

        for step in snapshot.steps:
            self._session.add(
                StepSnapshotRow(
                    id=step.id,
                    snapshot_id=snapshot.id,
                    original_step_id=step.original_step_id,
                    title=step.title,
                    description=step.description,
                    order_key=step.order,
                    is_required=step.is_required,
                )
            )
        await self._session.flush()
        for step in snapshot.steps:
            for c in step.components:
                self._session.add(
                    ComponentSnapshotRow(
                        id=c.id,
                        step_snapshot_id=step.id,
                        original_component_id=c.original_component_id,
                        type=str(c.type),
                        title=c.title,
                        description=c.description,
                        order_key=c.order,
                        is_required=c.is_required,
                        estimated_minutes=c.estimated_minutes,
                        max_attempts=c.max_attempts,
                        minimum_score=c.minimum_score,
                        payload=payload_to_dict(c.payload),
                    )
                )
        await self._session.flush()

    async def get_by_id(self, snapshot_id: UUID) -> FlowSnapshot | None:
        stmt = select(FlowSnapshotRow).where(FlowSnapshotRow.id == snapshot_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return await self._load(row)

    async def get_latest(self, flow_id: UUID) -> FlowSnapshot | None:
        stmt = (
            select(FlowSnapshotRow)
            .where(FlowSnapshotRow.original_flow_id == flow_id)
            .order_by(FlowSnapshotRow.version.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return await self._load(row)

    async def get_by_version(self, flow_id: UUID, version: int) -> FlowSnapshot | None:
        stmt = select(FlowSnapshotRow).where(
            FlowSnapshotRow.original_flow_id == flow_id,
            FlowSnapshotRow.version == version,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return await self._load(row)

    async def get_max_version(self, flow_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(FlowSnapshotRow.version), 0)).where(
            FlowSnapshotRow.original_flow_id == flow_id
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def list_by_flow(self, flow_id: UUID) -> list[FlowSnapshot]:
        stmt = (
            select(FlowSnapshotRow)
            .where(FlowSnapshotRow.original_flow_id == flow_id)
            .order_by(FlowSnapshotRow.version)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [await self._load(r) for r in rows]

    async def list_older_than(self, cutoff: datetime) -> list[FlowSnapshot]:
        stmt = (
            select(FlowSnapshotRow)
            .where(FlowSnapshotRow.created_at < cutoff)
            .order_by(FlowSnapshotRow.original_flow_id, FlowSnapshotRow.version)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [await self._load(r) for r in rows]

    async def ids_referencing_version(self, flow_version_id: UUID) -> list[UUID]:
        stmt = select(FlowSnapshotRow.id).where(
            FlowSnapshotRow.flow_version_id == flow_version_id
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def delete(self, snapshot_id: UUID) -> None:
        # Step and component snapshot rows cascade
        await self._session.execute(
            delete(FlowSnapshotRow).where(FlowSnapshotRow.id == snapshot_id)
        )

    async def _load(self, row: FlowSnapshotRow) -> FlowSnapshot:
        step_rows = (
            (
                await self._session.execute(
                    select(StepSnapshotRow)
                    .where(StepSnapshotRow.snapshot_id == row.id)
                    .order_by(StepSnapshotRow.order_key)
                )
            )
            .scalars()
            .all()
        )
        components: dict[UUID, list[ComponentSnapshot]] = {}
        if step_rows:
            component_rows = (
                (
                    await self._session.execute(
                        select(ComponentSnapshotRow)
                        .where(
                            ComponentSnapshotRow.step_snapshot_id.in_(
                                [s.id for s in step_rows]
                            )
                        )
                        .order_by(ComponentSnapshotRow.order_key)
                    )
                )
                .scalars()
                .all()
            )
            for c in component_rows:
                components.setdefault(c.step_snapshot_id, []).append(
                    _row_to_component_snapshot(c)
                )

        return FlowSnapshot(
            id=row.id,
            original_flow_id=row.original_flow_id,
            version=row.version,
            title=row.title,
            description=row.description or "",
            created_at=row.created_at,
            content_version=row.content_version,
            settings=FlowSettings.from_dict(row.settings or {}),
            is_required=row.is_required,
            estimated_hours=row.estimated_hours,
            tags=tuple(row.tags) if row.tags else (),
            flow_version_id=row.flow_version_id,
            created_by=row.created_by,
            steps=tuple(
                StepSnapshot(
                    id=s.id,
                    original_step_id=s.original_step_id,
                    title=s.title,
                    description=s.description or "",
                    order=s.order_key,
                    is_required=s.is_required,
                    components=tuple(components.get(s.id, ())),
                )
                for s in step_rows
            ),
        )


def _row_to_component_snapshot(row: ComponentSnapshotRow) -> ComponentSnapshot:
    component_type = ComponentType(row.type)
    return ComponentSnapshot(
        id=row.id,
        original_component_id=row.original_component_id,
        type=component_type,
        title=row.title,
        description=row.description or "",
        order=row.order_key,
        is_required=row.is_required,
        estimated_minutes=row.estimated_minutes,
        payload=payload_from_dict(component_type, row.payload),
        max_attempts=row.max_attempts,
        minimum_score=row.minimum_score,
    )
