"""Lifecycle tracking for fire-and-forget asyncio background tasks."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


class TaskManager:
    """Track background tasks so they can be awaited or cancelled as a group.

    Tasks remove themselves once done. Failures are logged rather than
    re-raised to whoever eventually waits on the group.
    """

    def __init__(self, label: str = "background") -> None:
        self.label = label
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending_count(self) -> int:
        """Return the number of tasks that have not finished yet."""
        return sum(1 for task in self._tasks if not task.done())

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Schedule ``coro`` on the running loop and track the task."""
        task = asyncio.create_task(coro)
        self.add(task)
        return task

    def add(self, task: asyncio.Task[Any]) -> None:
        """Track an already-created task until it completes."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(self._log_exception)

    def _log_exception(self, task: asyncio.Task[Any]) -> None:
        """Log unhandled exceptions so they are not silently lost."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning(
                "task.anonymous.exception",
                extra={
                    "event": "task.anonymous.exception",
                    "group": self.label,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )

    async def wait_idle(self) -> None:
        """Wait for every tracked task to finish without cancelling any."""
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            await asyncio.wait(pending)

    async def cancel_all(self) -> None:
        """Cancel every tracked task and await them all."""
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:  # noqa: BLE001 - already logged by the done callback.
                pass
        self._tasks.clear()
