"""Repository bundles handed to the services.

The in-memory bundle is a process-wide singleton (dev and tests); the
PostgreSQL bundle is built per request around one AsyncSession, so every
repository in it shares a single transaction.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.db.engine import async_session_factory, session_scope
from onboarding.repos.assignment_repo import AssignmentRepo, InMemoryAssignmentRepo
from onboarding.repos.flow_repo import FlowRepo, InMemoryFlowRepo
from onboarding.repos.pg_assignment_repo import PgAssignmentRepo
from onboarding.repos.pg_flow_repo import PgFlowRepo
from onboarding.repos.pg_progress_repo import PgProgressRepo
from onboarding.repos.pg_snapshot_repo import PgSnapshotRepo
from onboarding.repos.pg_version_repo import PgVersionRepo
from onboarding.repos.progress_repo import InMemoryProgressRepo, ProgressRepo
from onboarding.repos.snapshot_repo import InMemorySnapshotRepo, SnapshotRepo
from onboarding.repos.version_repo import InMemoryVersionRepo, VersionRepo


@dataclass(frozen=True, slots=True)
class Repositories:
    flows: FlowRepo
    versions: VersionRepo
    snapshots: SnapshotRepo
    assignments: AssignmentRepo
    progress: ProgressRepo


_in_memory = Repositories(
    flows=InMemoryFlowRepo(),
    versions=InMemoryVersionRepo(),
    snapshots=InMemorySnapshotRepo(),
    assignments=InMemoryAssignmentRepo(),
    progress=InMemoryProgressRepo(),
)


def in_memory_repositories() -> Repositories:
    return _in_memory


def clear_in_memory_repositories() -> None:
    """Reset every in-memory store (test isolation)."""
    _in_memory.flows.clear()  # type: ignore[attr-defined]
    _in_memory.versions.clear()  # type: ignore[attr-defined]
    _in_memory.snapshots.clear()  # type: ignore[attr-defined]
    _in_memory.assignments.clear()  # type: ignore[attr-defined]
    _in_memory.progress.clear()  # type: ignore[attr-defined]


def pg_repositories(session: AsyncSession) -> Repositories:
    return Repositories(
        flows=PgFlowRepo(session),
        versions=PgVersionRepo(session),
        snapshots=PgSnapshotRepo(session),
        assignments=PgAssignmentRepo(session),
        progress=PgProgressRepo(session),
    )


@asynccontextmanager
async def unit_of_work() -> AsyncIterator[Repositories]:
    """Repositories for one request or task.

    With DATABASE_URL they share one session that commits on success and
    rolls back if the body raises.  Otherwise the in-memory set is used.
    """
    if async_session_factory is None:
        yield in_memory_repositories()
        return
    async with session_scope() as session:
        yield pg_repositories(session)
