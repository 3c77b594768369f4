"""Tracked fire-and-forget tasks for post-commit side effects.

A side effect spawned here is not tied to the request that caused it: it
keeps running if the client disconnects. Failures are logged, never
propagated. drain() awaits everything still in flight (shutdown, tests).
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTasks:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _run(coro: Coroutine[Any, Any, Any], name: str | None) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Background task %s failed", name or "<unnamed>")

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight tasks, including ones spawned while draining."""
        while self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
            if pending:
                logger.warning("%d background tasks still running after drain timeout", len(pending))
                return
