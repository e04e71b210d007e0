"""Tracking for background work started on behalf of a response.

Write-through happens after the response is already on its way back to the
page. Every such task is registered here so the host can drain it before
tearing the worker down; a task that is never awaited is a lost write.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Coroutine

log = structlog.get_logger()


class PendingWork:
    """Holds strong references to background tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def add(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        """Schedule ``coro`` and keep it alive until it completes."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            log.warning("pending_work_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            log.error("pending_work_failed", task=task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait for every registered task, including ones added while waiting."""
        while self._tasks:
            tasks = list(self._tasks)
            log.debug("pending_work_draining", count=len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
