from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

# Roles that may author flows, publish versions and manage other
# people's assignments.
STAFF_ROLES = frozenset({"admin", "moderator"})


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    user_id: subject claim, a UUID issued by the identity provider
    roles: platform roles (admin, moderator, buddy, user)
    """

    user_id: UUID
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str] | frozenset[str]) -> bool:
        return bool(self.roles & roles)

    @property
    def is_staff(self) -> bool:
        return self.has_any_role(STAFF_ROLES)
