"""Detached background tasks for fire-and-forget cache writes."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from safecache.observability.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Coroutine

logger = get_logger(__name__)


class DetachedTasks:
    """Run coroutines in the background without handing a task back to the caller.

    Tasks are held here only so the event loop does not garbage-collect them
    mid-flight. A failing task is logged from its done-callback and never
    re-raised, so nothing surfaces as an unhandled task exception.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        """Schedule ``coro`` on the running loop."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Background cache task failed",
                task=task.get_name(),
                error=str(exc),
            )

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait up to ``timeout`` seconds for pending tasks, then cancel the rest."""
        if not self._tasks:
            return
        pending = set(self._tasks)
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning(
                "Cancelled unfinished background cache tasks",
                count=len(still_pending),
            )
            await asyncio.gather(*still_pending, return_exceptions=True)
