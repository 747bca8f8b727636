from __future__ import annotations

from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from onboarding.main import app
from onboarding.models.assignment import FlowAssignment
from onboarding.models.flow import (
    ArticlePayload,
    ComponentType,
    Flow,
    FlowSettings,
    QuizOption,
    QuizPayload,
    QuizQuestion,
    TaskPayload,
)
from onboarding.models.snapshot import FlowSnapshot
from onboarding.repos.registry import (
    Repositories,
    clear_in_memory_repositories,
    in_memory_repositories,
)
from onboarding.services import assignment_service, flow_service, token_service
from onboarding.services.task_queue import task_queue

STAFF_ID = UUID("00000000-0000-4000-8000-00000000000a")


@pytest.fixture(autouse=True)
def reset_repositories() -> None:
    """Every test starts from empty in-memory stores."""
    clear_in_memory_repositories()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def repos() -> Repositories:
    return in_memory_repositories()


def mint_token(
    user_id: UUID | None = None,
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=str(user_id or uuid4()), roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def learner_id() -> UUID:
    return uuid4()


@pytest.fixture
def token(learner_id: UUID) -> str:
    """Token for learner_id with the default role (user)."""
    return mint_token(learner_id)


@pytest.fixture
def staff_token() -> str:
    """Token with the moderator role."""
    return mint_token(STAFF_ID, roles=["moderator"])


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(uuid4(), roles=["admin"])


# ---------------------------------------------------------------------------
# Flow test helpers
# ---------------------------------------------------------------------------


def quiz_payload() -> QuizPayload:
    """Two questions, one point each; the first option is always right."""
    return QuizPayload(
        questions=(
            QuizQuestion(
                text="Where is the wiki?",
                order="i",
                options=(
                    QuizOption(text="wiki.internal", is_correct=True),
                    QuizOption(text="On a sticky note", message="Try again"),
                ),
            ),
            QuizQuestion(
                text="Who approves leave?",
                order="r",
                options=(
                    QuizOption(text="Your manager", is_correct=True),
                    QuizOption(text="Nobody"),
                ),
            ),
        )
    )


def task_payload(code_word: str = "Onboard", score: int = 5) -> TaskPayload:
    return TaskPayload(code_word=code_word, score=score, instruction="Find the word")


async def build_flow(
    repos: Repositories,
    *,
    name: str = "Welcome aboard",
    steps: int = 2,
    sequential: bool = True,
    allow_self_pause: bool = True,
) -> Flow:
    """A flow with the given number of steps, one required article each."""
    flow = await flow_service.create_flow(
        repos,
        name=name,
        description="Your first weeks at the company",
        created_by=STAFF_ID,
        settings=FlowSettings(
            requires_sequential_completion=sequential,
            allow_self_pause=allow_self_pause,
        ),
    )
    for i in range(steps):
        step = await flow_service.add_step(repos, flow.id, title=f"Step {i + 1}")
        await flow_service.add_component(
            repos,
            flow.id,
            step.id,
            type=ComponentType.ARTICLE,
            title=f"Reading {i + 1}",
            payload=ArticlePayload(content=f"Chapter {i + 1} of the handbook"),
        )
    return await flow_service.get_flow(repos, flow.id)


async def assign(
    repos: Repositories, flow_id: UUID, user_id: UUID | None = None
) -> FlowAssignment:
    return await assignment_service.assign_flow(
        repos, user_id=user_id or uuid4(), flow_id=flow_id, assigned_by=STAFF_ID
    )


async def snapshot_of(repos: Repositories, assignment: FlowAssignment) -> FlowSnapshot:
    assert assignment.snapshot_id is not None
    snapshot = await repos.snapshots.get_by_id(assignment.snapshot_id)
    assert snapshot is not None
    return snapshot
