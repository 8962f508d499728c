"""Fire-and-forget side effects.

Presence updates, profile status, owner notifications and auto-reactions
must never hold up a session's event task. They run as independent tasks
owned by a BackgroundTasks instance; a failure is logged at debug level
and discarded.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Tracks fire-and-forget tasks so they can be awaited or cancelled.

    Usage:
        tasks = BackgroundTasks()
        tasks.spawn(handle.send_presence("available"), "presence:alice")
        await tasks.wait_idle()     # in tests
        await tasks.cancel_all()    # on shutdown
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(self._run(coro, label), name=label)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], label: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Background task '{label}' failed: {type(e).__name__}: {e}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self, timeout: float = 5.0) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) is done."""
        async with asyncio.timeout(timeout):
            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
