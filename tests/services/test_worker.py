from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from onboarding import worker
from onboarding.repos.registry import Repositories
from onboarding.services import snapshot_service
from onboarding.services.task_queue import SNAPSHOT_CLEANUP, task_queue
from tests.conftest import build_flow


async def _age_snapshots(repos: Repositories, flow_id, days: int) -> None:
    """Rewrite every snapshot of the flow as if it were taken `days` ago."""
    old = datetime.now(UTC) - timedelta(days=days)
    for snapshot in await repos.snapshots.list_by_flow(flow_id):
        await repos.snapshots.delete(snapshot.id)
        await repos.snapshots.add(replace(snapshot, created_at=old))


def test_snapshot_cleanup_is_registered() -> None:
    assert worker.HANDLERS[SNAPSHOT_CLEANUP] is worker.handle_snapshot_cleanup


def test_run_once_on_empty_queue() -> None:
    assert asyncio.run(worker.run_once(SNAPSHOT_CLEANUP, timeout=0)) is False


def test_cleanup_task_deletes_old_snapshots(repos: Repositories) -> None:
    async def scenario():
        flow = await build_flow(repos)
        for _ in range(3):
            await snapshot_service.create_snapshot(repos, flow.id)
        await _age_snapshots(repos, flow.id, days=100)
        await task_queue.enqueue(
            SNAPSHOT_CLEANUP, {"older_than_days": 30, "keep_minimum": 1}
        )
        took = await worker.run_once(SNAPSHOT_CLEANUP, timeout=0)
        remaining = await snapshot_service.list_snapshots(repos, flow.id)
        return took, remaining

    took, remaining = asyncio.run(scenario())
    assert took is True
    assert [s.version for s in remaining] == [3]


def test_cleanup_task_defaults_to_settings(
    repos: Repositories, monkeypatch: pytest.MonkeyPatch
) -> None:
    # Settings retention is 365 days by default; 100-day-old snapshots survive
    async def scenario():
        flow = await build_flow(repos)
        await snapshot_service.create_snapshot(repos, flow.id)
        await snapshot_service.create_snapshot(repos, flow.id)
        await _age_snapshots(repos, flow.id, days=100)
        await worker.handle_snapshot_cleanup({})
        return await snapshot_service.list_snapshots(repos, flow.id)

    assert len(asyncio.run(scenario())) == 2


def test_failing_task_is_logged_and_dropped(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    async def explode(payload: dict) -> None:
        raise RuntimeError("handler bug")

    monkeypatch.setitem(worker.HANDLERS, "broken", explode)

    async def scenario():
        await task_queue.enqueue("broken", {"n": 1})
        took = await worker.run_once("broken", timeout=0)
        return took, await task_queue.queue_length("broken")

    with caplog.at_level(logging.ERROR, logger="onboarding.worker"):
        took, left = asyncio.run(scenario())

    assert took is True
    assert left == 0
    assert any("failed" in r.getMessage() for r in caplog.records)
