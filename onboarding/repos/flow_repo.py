from __future__ import annotations

from typing import Protocol
from uuid import UUID

from onboarding.models.flow import Flow, FlowContent


class FlowRepo(Protocol):
    async def get_by_id(self, flow_id: UUID, *, for_update: bool = False) -> Flow | None: ...
    async def list_flows(self, *, include_inactive: bool = False) -> list[Flow]: ...
    async def add(self, flow: Flow) -> None: ...
    async def update(self, flow: Flow) -> None: ...
    async def get_content(self, content_id: UUID) -> FlowContent | None: ...
    async def list_contents(self, flow_id: UUID) -> list[FlowContent]: ...
    async def get_max_content_version(self, flow_id: UUID) -> int: ...
    async def add_content(self, content: FlowContent) -> None: ...
    async def save_content(self, content: FlowContent) -> None: ...


class InMemoryFlowRepo:
    def __init__(self) -> None:
        self._flows: dict[UUID, Flow] = {}
        self._contents: dict[UUID, FlowContent] = {}

    def clear(self) -> None:
        self._flows.clear()
        self._contents.clear()

    async def get_by_id(self, flow_id: UUID, *, for_update: bool = False) -> Flow | None:
        return self._flows.get(flow_id)

    async def list_flows(self, *, include_inactive: bool = False) -> list[Flow]:
        flows = sorted(self._flows.values(), key=lambda f: f.created_at)
        if include_inactive:
            return flows
        return [f for f in flows if f.is_active]

    async def add(self, flow: Flow) -> None:
        if flow.id in self._flows:
            raise ValueError("flow already exists")
        self._flows[flow.id] = flow

    async def update(self, flow: Flow) -> None:
        if flow.id not in self._flows:
            raise KeyError("flow not found")
        self._flows[flow.id] = flow

    async def get_content(self, content_id: UUID) -> FlowContent | None:
        return self._contents.get(content_id)

    async def list_contents(self, flow_id: UUID) -> list[FlowContent]:
        return sorted(
            (c for c in self._contents.values() if c.flow_id == flow_id),
            key=lambda c: c.version,
        )

    async def get_max_content_version(self, flow_id: UUID) -> int:
        return max(
            (c.version for c in self._contents.values() if c.flow_id == flow_id),
            default=0,
        )

    async def add_content(self, content: FlowContent) -> None:
        for existing in self._contents.values():
            if existing.flow_id == content.flow_id and existing.version == content.version:
                raise ValueError("content version already exists")
        self._contents[content.id] = content

    async def save_content(self, content: FlowContent) -> None:
        if content.id not in self._contents:
            raise KeyError("content not found")
        self._contents[content.id] = content
