from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from onboarding.core.errors import ConcurrencyConflictError
from onboarding.models.versioning import EntityVersion, VersionKind


class VersionRepo(Protocol):
    async def get_by_id(self, version_id: UUID) -> EntityVersion | None: ...
    async def get_active(self, original_id: UUID) -> EntityVersion | None: ...
    async def get_max_version(self, original_id: UUID) -> int: ...
    async def list_versions(self, original_id: UUID) -> list[EntityVersion]: ...
    async def list_active(self, kind: VersionKind) -> list[EntityVersion]: ...
    async def add(self, version: EntityVersion) -> None: ...
    async def activate(self, version_id: UUID, now: datetime) -> EntityVersion: ...
    async def deactivate_all(self, original_id: UUID, now: datetime) -> int: ...
    async def delete(self, version_id: UUID) -> None: ...


class InMemoryVersionRepo:
    """Dict-backed versions.

    activate() and deactivate_all() run without awaiting, so on a single
    event loop each one is an indivisible critical section: concurrent
    activations are serialized and the one-active invariant holds.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, EntityVersion] = {}

    def clear(self) -> None:
        self._by_id.clear()

    def _siblings(self, original_id: UUID) -> list[EntityVersion]:
        return [v for v in self._by_id.values() if v.original_id == original_id]

    async def get_by_id(self, version_id: UUID) -> EntityVersion | None:
        return self._by_id.get(version_id)

    async def get_active(self, original_id: UUID) -> EntityVersion | None:
        return next((v for v in self._siblings(original_id) if v.is_active), None)

    async def get_max_version(self, original_id: UUID) -> int:
        return max((v.version for v in self._siblings(original_id)), default=0)

    async def list_versions(self, original_id: UUID) -> list[EntityVersion]:
        return sorted(self._siblings(original_id), key=lambda v: v.version)

    async def list_active(self, kind: VersionKind) -> list[EntityVersion]:
        return [v for v in self._by_id.values() if v.kind == kind and v.is_active]

    async def add(self, version: EntityVersion) -> None:
        for v in self._siblings(version.original_id):
            if v.version == version.version:
                raise ConcurrencyConflictError(
                    f"version {version.version} of {version.original_id} already exists"
                )
        if version.is_active and any(
            v.is_active for v in self._siblings(version.original_id)
        ):
            raise ConcurrencyConflictError(
                f"{version.original_id} already has an active version"
            )
        self._by_id[version.id] = version

    async def activate(self, version_id: UUID, now: datetime) -> EntityVersion:
        target = self._by_id.get(version_id)
        if target is None:
            raise KeyError("version not found")
        if target.is_active:
            return target
        for v in self._siblings(target.original_id):
            if v.is_active:
                self._by_id[v.id] = replace(v, is_active=False, updated_at=now)
        activated = replace(target, is_active=True, updated_at=now)
        self._by_id[version_id] = activated
        return activated

    async def deactivate_all(self, original_id: UUID, now: datetime) -> int:
        count = 0
        for v in self._siblings(original_id):
            if v.is_active:
                self._by_id[v.id] = replace(v, is_active=False, updated_at=now)
                count += 1
        return count

    async def delete(self, version_id: UUID) -> None:
        self._by_id.pop(version_id, None)
