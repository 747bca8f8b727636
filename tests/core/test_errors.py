from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from onboarding.core.errors import (
    AlreadyAssignedError,
    ConcurrencyConflictError,
    DomainError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
    VersionInUseError,
)
from onboarding.core.exception_handlers import register_exception_handlers
from onboarding.models.assignment import AssignmentStatus


def _app_raising(exc: Exception) -> TestClient:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    async def boom() -> None:
        raise exc

    return TestClient(app, raise_server_exceptions=False)


# ---- payloads ----


def test_not_found_message_names_the_entity() -> None:
    entity_id = uuid4()
    err = NotFoundError("flow", entity_id)
    assert err.to_dict() == {"error": "NOT_FOUND", "message": f"flow {entity_id} not found"}


def test_validation_error_is_a_value_error() -> None:
    assert issubclass(ValidationError, ValueError)
    assert issubclass(ValidationError, DomainError)


def test_invalid_transition_carries_the_current_status() -> None:
    err = InvalidStateTransitionError("resume", "in_progress", "not paused")
    data = err.to_dict()
    assert data["transition"] == "resume"
    assert data["current"] == "in_progress"
    assert data["message"] == "cannot resume from status 'in_progress': not paused"


def test_invalid_transition_renders_enum_status_as_its_value() -> None:
    err = InvalidStateTransitionError("complete", AssignmentStatus.COMPLETED)
    assert err.message == "cannot complete from status 'completed'"
    assert err.to_dict()["current"] == "completed"
    assert type(err.current) is str


def test_version_in_use_lists_blocking_assignments() -> None:
    blocking = [uuid4(), uuid4()]
    data = VersionInUseError("in use", assignment_ids=blocking).to_dict()
    assert data["assignment_ids"] == [str(a) for a in blocking]


# ---- HTTP mapping ----


@pytest.mark.parametrize(
    ("exc", "status_code"),
    [
        (NotFoundError("assignment", "x"), 404),
        (ValidationError("bad input"), 422),
        (InvalidStateTransitionError("start", "completed"), 409),
        (VersionInUseError("in use"), 409),
        (ConcurrencyConflictError("stale row_version"), 409),
        (AlreadyAssignedError("already assigned"), 409),
        (DomainError("something else"), 400),
    ],
)
def test_domain_errors_map_to_status_codes(exc: DomainError, status_code: int) -> None:
    resp = _app_raising(exc).get("/boom")
    assert resp.status_code == status_code
    assert resp.json()["error"] == exc.error_code


def test_non_domain_errors_are_not_swallowed() -> None:
    resp = _app_raising(RuntimeError("bug")).get("/boom")
    assert resp.status_code == 500
