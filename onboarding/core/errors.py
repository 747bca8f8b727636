"""Domain error taxonomy.

Services raise these; routers never catch them.  A single exception
handler (see app wiring in onboarding/core/exception_handlers.py) maps
each error_code to an HTTP status, so the core stays transport-agnostic.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID


class DomainError(Exception):
    """Base class for every error the core raises on purpose."""

    error_code = "DOMAIN_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class NotFoundError(DomainError):
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(DomainError, ValueError):
    """Invalid argument, rejected before anything is persisted."""

    error_code = "VALIDATION_ERROR"


class InvalidStateTransitionError(DomainError):
    error_code = "INVALID_STATE_TRANSITION"

    def __init__(self, transition: str, current: str, reason: str = "") -> None:
        current = str(current)
        message = f"cannot {transition} from status {current!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.transition = transition
        self.current = current

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["transition"] = self.transition
        data["current"] = self.current
        return data


class VersionInUseError(DomainError):
    """Deletion blocked by live references."""

    error_code = "VERSION_IN_USE"

    def __init__(
        self, message: str, assignment_ids: Sequence[UUID] = ()
    ) -> None:
        super().__init__(message)
        self.assignment_ids = tuple(assignment_ids)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["assignment_ids"] = [str(a) for a in self.assignment_ids]
        return data


class ConcurrencyConflictError(DomainError):
    """Optimistic-lock mismatch: the row changed since it was read."""

    error_code = "CONCURRENCY_CONFLICT"


class AlreadyAssignedError(DomainError):
    error_code = "ALREADY_ASSIGNED"
