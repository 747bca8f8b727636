from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from onboarding.core.errors import ConcurrencyConflictError
from onboarding.models.snapshot import FlowSnapshot


class SnapshotRepo(Protocol):
    async def add(self, snapshot: FlowSnapshot) -> None: ...
    async def get_by_id(self, snapshot_id: UUID) -> FlowSnapshot | None: ...
    async def get_latest(self, flow_id: UUID) -> FlowSnapshot | None: ...
    async def get_by_version(self, flow_id: UUID, version: int) -> FlowSnapshot | None: ...
    async def get_max_version(self, flow_id: UUID) -> int: ...
    async def list_by_flow(self, flow_id: UUID) -> list[FlowSnapshot]: ...
    async def list_older_than(self, cutoff: datetime) -> list[FlowSnapshot]: ...
    async def ids_referencing_version(self, flow_version_id: UUID) -> list[UUID]: ...
    async def delete(self, snapshot_id: UUID) -> None: ...


class InMemorySnapshotRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, FlowSnapshot] = {}

    def clear(self) -> None:
        self._by_id.clear()

    def _for_flow(self, flow_id: UUID) -> list[FlowSnapshot]:
        return sorted(
            (s for s in self._by_id.values() if s.original_flow_id == flow_id),
            key=lambda s: s.version,
        )

    async def add(self, snapshot: FlowSnapshot) -> None:
        if any(s.version == snapshot.version for s in self._for_flow(snapshot.original_flow_id)):
            raise ConcurrencyConflictError(
                f"snapshot version {snapshot.version} of flow "
                f"{snapshot.original_flow_id} already exists"
            )
        self._by_id[snapshot.id] = snapshot

    async def get_by_id(self, snapshot_id: UUID) -> FlowSnapshot | None:
        return self._by_id.get(snapshot_id)

    async def get_latest(self, flow_id: UUID) -> FlowSnapshot | None:
        snapshots = self._for_flow(flow_id)
        return snapshots[-1] if snapshots else None

    async def get_by_version(self, flow_id: UUID, version: int) -> FlowSnapshot | None:
        return next((s for s in self._for_flow(flow_id) if s.version == version), None)

    async def get_max_version(self, flow_id: UUID) -> int:
        return max((s.version for s in self._for_flow(flow_id)), default=0)

    async def list_by_flow(self, flow_id: UUID) -> list[FlowSnapshot]:
        return self._for_flow(flow_id)

    async def list_older_than(self, cutoff: datetime) -> list[FlowSnapshot]:
        return sorted(
            (s for s in self._by_id.values() if s.created_at < cutoff),
            key=lambda s: (s.original_flow_id, s.version),
        )

    async def ids_referencing_version(self, flow_version_id: UUID) -> list[UUID]:
        return [s.id for s in self._by_id.values() if s.flow_version_id == flow_version_id]

    async def delete(self, snapshot_id: UUID) -> None:
        self._by_id.pop(snapshot_id, None)
