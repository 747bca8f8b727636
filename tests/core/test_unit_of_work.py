from __future__ import annotations

import asyncio

import pytest

from onboarding.db import engine
from onboarding.repos import registry
from onboarding.repos.registry import in_memory_repositories, unit_of_work


def test_unit_of_work_without_database_uses_in_memory_repositories(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(registry, "async_session_factory", None)

    async def scenario():
        async with unit_of_work() as repos:
            return repos

    assert asyncio.run(scenario()) is in_memory_repositories()


def test_session_scope_requires_a_database(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(engine, "async_session_factory", None)

    async def scenario():
        async with engine.session_scope():
            pass

    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        asyncio.run(scenario())


class _FakeSession:
    def __init__(self) -> None:
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self) -> _FakeSession:
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True


def test_session_scope_commits_or_rolls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    sessions: list[_FakeSession] = []

    def factory() -> _FakeSession:
        sessions.append(_FakeSession())
        return sessions[-1]

    monkeypatch.setattr(engine, "async_session_factory", factory)

    async def ok():
        async with engine.session_scope():
            pass

    async def failing():
        async with engine.session_scope():
            raise ValueError("boom")

    asyncio.run(ok())
    with pytest.raises(ValueError):
        asyncio.run(failing())

    assert (sessions[0].committed, sessions[0].rolled_back) == (True, False)
    assert (sessions[1].committed, sessions[1].rolled_back) == (False, True)
