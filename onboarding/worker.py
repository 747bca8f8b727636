"""Background worker process.

RUN:  python -m onboarding.worker

Same image as the API, different command:
  api:    uvicorn onboarding.main:app --host 0.0.0.0 --port 8000
  worker: python -m onboarding.worker

The loop polls every registered queue in turn, runs one task at a time
and logs the outcome.  A failing task is logged and dropped; the next
cleanup request will pick up whatever it missed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from onboarding.core.config import SETTINGS
from onboarding.core.logging import setup_logging
from onboarding.repos.registry import unit_of_work
from onboarding.services import snapshot_service
from onboarding.services.task_queue import SNAPSHOT_CLEANUP, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("onboarding.worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


@register_handler(SNAPSHOT_CLEANUP)
async def handle_snapshot_cleanup(payload: dict) -> None:
    """Delete snapshots past retention that no active assignment uses.

    The payload may override retention; otherwise settings apply.
    """
    older_than_days = int(payload.get("older_than_days", SETTINGS.snapshot_retention_days))
    keep_minimum = int(payload.get("keep_minimum", SETTINGS.snapshot_keep_minimum))
    async with unit_of_work() as repos:
        deleted = await snapshot_service.cleanup_old_snapshots(
            repos, older_than_days=older_than_days, keep_minimum=keep_minimum
        )
    logger.info(
        "Snapshot cleanup task done older_than_days=%d keep_minimum=%d deleted=%d",
        older_than_days,
        keep_minimum,
        deleted,
    )


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def run_once(queue_name: str, timeout: int = 1) -> bool:
    """Process at most one task from queue_name; True if one was taken."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False
    try:
        await HANDLERS[queue_name](task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    queues = list(HANDLERS)
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        for queue_name in queues:
            await run_once(queue_name)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
