from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from onboarding.models.assignment import FlowAssignment
from onboarding.models.principal import STAFF_ROLES, Principal
from onboarding.repos.registry import Repositories, unit_of_work
from onboarding.services import token_service

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal."""
    if credentials is None:
        raise _unauthorized("Not authenticated")
    try:
        claims = token_service.decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise _unauthorized("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise _unauthorized("Invalid token") from None

    try:
        user_id = UUID(claims["sub"])
    except ValueError:
        logger.warning("Token subject is not a UUID: %r", claims["sub"])
        raise _unauthorized("Invalid token subject") from None

    principal = Principal(user_id=user_id, roles=frozenset(claims.get("roles", [])))
    request.state.user_id = str(user_id)
    logger.debug("Token validated for user=%s roles=%s", principal.user_id, principal.roles)
    return principal


def require_any_role(roles: set[str] | frozenset[str]):
    """Dependency factory: demand at least one of the given roles.

    Usage: Depends(require_any_role({"admin", "moderator"}))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Access denied: user=%s has none of roles=%s",
                principal.user_id,
                sorted(roles),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


require_staff = require_any_role(STAFF_ROLES)

CurrentUser = Annotated[Principal, Depends(require_user)]
Staff = Annotated[Principal, Depends(require_staff)]


def ensure_can_view(principal: Principal, assignment: FlowAssignment) -> None:
    """Assignee, buddy and staff may read an assignment."""
    if principal.is_staff or principal.user_id in (assignment.user_id, assignment.buddy_id):
        return
    logger.warning(
        "Access denied: user=%s on assignment=%s", principal.user_id, assignment.id
    )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your assignment")


def ensure_can_act(principal: Principal, assignment: FlowAssignment) -> None:
    """Only the assignee (or staff) records progress or changes status."""
    if principal.is_staff or principal.user_id == assignment.user_id:
        return
    logger.warning(
        "Access denied: user=%s acting on assignment=%s", principal.user_id, assignment.id
    )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your assignment")


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


async def get_repos() -> AsyncGenerator[Repositories, None]:
    """One request, one unit of work.

    With DATABASE_URL the repositories share a session that commits when
    the handler returns and rolls back if it raises.  Otherwise the
    process-wide in-memory repositories are used.
    """
    async with unit_of_work() as repos:
        yield repos


Repos = Annotated[Repositories, Depends(get_repos)]
