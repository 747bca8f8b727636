"""PostgreSQL implementation of FlowRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.db.tables import ComponentRow, FlowContentRow, FlowRow, FlowStepRow
from onboarding.models.flow import (
    Component,
    ComponentType,
    Flow,
    FlowContent,
    FlowSettings,
    FlowStep,
    payload_from_dict,
    payload_to_dict,
)


class PgFlowRepo:
    """Satisfies the FlowRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, flow_id: UUID, *, for_update: bool = False) -> Flow | None:
        stmt = select(FlowRow).where(FlowRow.id == flow_id)
        if for_update:
            # Serializes content edits against snapshot copies of the same flow
            stmt = stmt.with_for_update()
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_flow(row)

    async def list_flows(self, *, include_inactive: bool = False) -> list[Flow]:
        stmt = select(FlowRow).order_by(FlowRow.created_at)
        if not include_inactive:
            stmt = stmt.where(FlowRow.is_active.is_(True))
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_flow(r) for r in rows]

    async def add(self, flow: Flow) -> None:
        self._session.add(
            FlowRow(
                id=flow.id,
                name=flow.name,
                description=flow.description,
                created_by=flow.created_by,
                is_active=flow.is_active,
                is_required=flow.is_required,
                estimated_hours=flow.estimated_hours,
                tags=list(flow.tags),
                settings=flow.settings.to_dict(),
                active_content_id=flow.active_content_id,
                created_at=flow.created_at,
                updated_at=flow.updated_at,
            )
        )
        await self._session.flush()

    async def update(self, flow: Flow) -> None:
        stmt = (
            update(FlowRow)
            .where(FlowRow.id == flow.id)
            .values(
                name=flow.name,
                description=flow.description,
                is_active=flow.is_active,
                is_required=flow.is_required,
                estimated_hours=flow.estimated_hours,
                tags=list(flow.tags),
                settings=flow.settings.to_dict(),
                active_content_id=flow.active_content_id,
                updated_at=flow.updated_at,
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("flow not found")

    async def get_content(self, content_id: UUID) -> FlowContent | None:
        stmt = select(FlowContentRow).where(FlowContentRow.id == content_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return await self._load_content(row)

    async def list_contents(self, flow_id: UUID) -> list[FlowContent]:
        stmt = (
            select(FlowContentRow)
            .where(FlowContentRow.flow_id == flow_id)
            .order_by(FlowContentRow.version)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [await self._load_content(r) for r in rows]

    async def get_max_content_version(self, flow_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(FlowContentRow.version), 0)).where(
            FlowContentRow.flow_id == flow_id
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def add_content(self, content: FlowContent) -> None:
        self._session.add(
            FlowContentRow(
                id=content.id,
                flow_id=content.flow_id,
                version=content.version,
                created_by=content.created_by,
                created_at=content.created_at,
            )
        )
        await self._session.flush()
        await self._insert_steps(content)

    async def save_content(self, content: FlowContent) -> None:
        # Rewrite the step tree.  Both levels are deleted through the ORM so
        # the session forgets the old rows before the same ids are re-added.
        step_ids = select(FlowStepRow.id).where(FlowStepRow.content_id == content.id)
        await self._session.execute(
            delete(ComponentRow).where(ComponentRow.step_id.in_(step_ids))
        )
        await self._session.execute(
            delete(FlowStepRow).where(FlowStepRow.content_id == content.id)
        )
        await self._insert_steps(content)

    async def _insert_steps(self, content: FlowContent) -> None:
        for step in content.steps:
            self._session.add(
                FlowStepRow(
                    id=step.id,
                    content_id=content.id,
                    title=step.title,
                    description=step.description,
                    order_key=step.order,
                    is_required=step.is_required,
                    is_enabled=step.is_enabled,
                )
            )
        await self._session.flush()
        for step in content.steps:
            for c in step.components:
                self._session.add(
                    ComponentRow(
                        id=c.id,
                        step_id=step.id,
                        type=str(c.type),
                        title=c.title,
                        description=c.description,
                        order_key=c.order,
                        is_required=c.is_required,
                        is_enabled=c.is_enabled,
                        estimated_minutes=c.estimated_minutes,
                        max_attempts=c.max_attempts,
                        minimum_score=c.minimum_score,
                        payload=payload_to_dict(c.payload),
                    )
                )
        await self._session.flush()

    async def _load_content(self, row: FlowContentRow) -> FlowContent:
        step_rows = (
            (
                await self._session.execute(
                    select(FlowStepRow)
                    .where(FlowStepRow.content_id == row.id)
                    .order_by(FlowStepRow.order_key)
                    .execution_options(populate_existing=True)
                )
            )
            .scalars()
            .all()
        )
        components_by_step: dict[UUID, list[Component]] = {}
        if step_rows:
            component_rows = (
                (
                    await self._session.execute(
                        select(ComponentRow)
                        .where(ComponentRow.step_id.in_([s.id for s in step_rows]))
                        .order_by(ComponentRow.order_key)
                        .execution_options(populate_existing=True)
                    )
                )
                .scalars()
                .all()
            )
            for c in component_rows:
                components_by_step.setdefault(c.step_id, []).append(_row_to_component(c))

        return FlowContent(
            id=row.id,
            flow_id=row.flow_id,
            version=row.version,
            created_at=row.created_at,
            created_by=row.created_by,
            steps=tuple(
                FlowStep(
                    id=s.id,
                    title=s.title,
                    order=s.order_key,
                    description=s.description,
                    is_required=s.is_required,
                    is_enabled=s.is_enabled,
                    components=tuple(components_by_step.get(s.id, ())),
                )
                for s in step_rows
            ),
        )


def _row_to_flow(row: FlowRow) -> Flow:
    return Flow(
        id=row.id,
        name=row.name,
        description=row.description or "",
        created_by=row.created_by,
        is_active=row.is_active,
        is_required=row.is_required,
        estimated_hours=row.estimated_hours,
        tags=tuple(row.tags) if row.tags else (),
        settings=FlowSettings.from_dict(row.settings or {}),
        active_content_id=row.active_content_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_component(row: ComponentRow) -> Component:
    component_type = ComponentType(row.type)
    return Component(
        id=row.id,
        type=component_type,
        title=row.title,
        order=row.order_key,
        payload=payload_from_dict(component_type, row.payload),
        description=row.description or "",
        is_required=row.is_required,
        is_enabled=row.is_enabled,
        estimated_minutes=row.estimated_minutes,
        max_attempts=row.max_attempts,
        minimum_score=row.minimum_score,
    )
