from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from onboarding.core.errors import ValidationError


class VersionKind(StrEnum):
    FLOW = "flow"
    STEP = "step"
    COMPONENT = "component"


@dataclass(frozen=True, slots=True)
class EntityVersion:
    """One immutable, numbered version of a flow, step or component.

    original_id is the stable identity shared by every version of the
    same logical entity.  At most one version per original_id is active;
    the repositories enforce that (partial unique index in PostgreSQL).
    content is a JSON-able copy taken at creation and never mutated.
    """

    id: UUID
    kind: VersionKind
    original_id: UUID
    version: int
    created_at: datetime
    updated_at: datetime
    is_active: bool = False
    created_by: UUID | None = None
    content: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.version < 1:
            raise ValidationError("version must be >= 1")

    @staticmethod
    def new(
        *,
        kind: VersionKind,
        original_id: UUID,
        version: int,
        content: dict[str, Any],
        created_by: UUID | None = None,
    ) -> EntityVersion:
        now = datetime.now(UTC)
        return EntityVersion(
            id=uuid4(),
            kind=kind,
            original_id=original_id,
            version=version,
            created_at=now,
            updated_at=now,
            created_by=created_by,
            content=copy.deepcopy(content),
        )
