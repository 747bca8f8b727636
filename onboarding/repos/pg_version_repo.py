"""PostgreSQL implementation of VersionRepo."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.errors import ConcurrencyConflictError
from onboarding.db.tables import EntityVersionRow
from onboarding.models.versioning import EntityVersion, VersionKind


class PgVersionRepo:
    """Satisfies the VersionRepo Protocol using PostgreSQL via SQLAlchemy.

    Activation locks every sibling row (SELECT ... FOR UPDATE) before
    flipping flags, so two concurrent activations of the same original_id
    run one after the other.  The partial unique index on
    (original_id) WHERE is_active is the backstop.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, version_id: UUID) -> EntityVersion | None:
        stmt = (
            select(EntityVersionRow)
            .where(EntityVersionRow.id == version_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_version(row)

    async def get_active(self, original_id: UUID) -> EntityVersion | None:
        stmt = select(EntityVersionRow).where(
            EntityVersionRow.original_id == original_id,
            EntityVersionRow.is_active.is_(True),
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_version(row)

    async def get_max_version(self, original_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(EntityVersionRow.version), 0)).where(
            EntityVersionRow.original_id == original_id
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def list_versions(self, original_id: UUID) -> list[EntityVersion]:
        stmt = (
            select(EntityVersionRow)
            .where(EntityVersionRow.original_id == original_id)
            .order_by(EntityVersionRow.version)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_version(r) for r in rows]

    async def list_active(self, kind: VersionKind) -> list[EntityVersion]:
        stmt = select(EntityVersionRow).where(
            EntityVersionRow.kind == str(kind),
            EntityVersionRow.is_active.is_(True),
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_version(r) for r in rows]

    async def add(self, version: EntityVersion) -> None:
        row = EntityVersionRow(
            id=version.id,
            kind=str(version.kind),
            original_id=version.original_id,
            version=version.version,
            is_active=version.is_active,
            content=version.content,
            created_by=version.created_by,
            created_at=version.created_at,
            updated_at=version.updated_at,
        )
        try:
            # SAVEPOINT so a lost race leaves the outer transaction usable
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                f"version {version.version} of {version.original_id} already exists"
            ) from exc

    async def activate(self, version_id: UUID, now: datetime) -> EntityVersion:
        target = await self.get_by_id(version_id)
        if target is None:
            raise KeyError("version not found")

        lock = (
            select(EntityVersionRow.id)
            .where(EntityVersionRow.original_id == target.original_id)
            .with_for_update()
        )
        await self._session.execute(lock)

        # Re-read under the lock; a concurrent activation may have won
        current = await self.get_by_id(version_id)
        if current is None:
            raise KeyError("version not found")
        if current.is_active:
            return current

        try:
            await self._session.execute(
                update(EntityVersionRow)
                .where(
                    EntityVersionRow.original_id == target.original_id,
                    EntityVersionRow.is_active.is_(True),
                )
                .values(is_active=False, updated_at=now)
            )
            await self._session.execute(
                update(EntityVersionRow)
                .where(EntityVersionRow.id == version_id)
                .values(is_active=True, updated_at=now)
            )
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                f"concurrent activation for {target.original_id}"
            ) from exc

        activated = await self.get_by_id(version_id)
        assert activated is not None
        return activated

    async def deactivate_all(self, original_id: UUID, now: datetime) -> int:
        stmt = (
            update(EntityVersionRow)
            .where(
                EntityVersionRow.original_id == original_id,
                EntityVersionRow.is_active.is_(True),
            )
            .values(is_active=False, updated_at=now)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def delete(self, version_id: UUID) -> None:
        await self._session.execute(
            delete(EntityVersionRow).where(EntityVersionRow.id == version_id)
        )


def _row_to_version(row: EntityVersionRow) -> EntityVersion:
    return EntityVersion(
        id=row.id,
        kind=VersionKind(row.kind),
        original_id=row.original_id,
        version=row.version,
        is_active=row.is_active,
        content=dict(row.content or {}),
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
