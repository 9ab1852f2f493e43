"""Supervised background executor for detached work.

Turn processing, response validation and post-turn side effects run here so
they outlive the HTTP connection that started them. Failures are captured and
logged instead of escaping into the request flow.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class TaskFailure:
    """Record of a background task that raised."""
    name: str
    error: str
    failed_at: datetime = field(default_factory=datetime.utcnow)


class BackgroundExecutor:
    """
    Runs coroutines as supervised asyncio tasks.

    Strong references are kept until each task finishes so the event loop
    does not garbage-collect work in flight.
    """

    def __init__(self, max_failures_kept: int = 100):
        self._tasks: Set[asyncio.Task] = set()
        self._failures: List[TaskFailure] = []
        self._max_failures_kept = max_failures_kept
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    @property
    def failures(self) -> List[TaskFailure]:
        return list(self._failures)

    def submit(self, coro: Awaitable[Any], name: str = "background") -> Optional[asyncio.Task]:
        """
        Schedule a coroutine for eventual completion.

        Args:
            coro: Coroutine to run
            name: Label used in logs

        Returns:
            The created task, or None if the executor has been shut down
        """
        if self._closed:
            logger.warning(f"[Background] Executor closed, dropping task {name}")
            coro.close()
            return None

        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"[Background] Task {task.get_name()} was cancelled")
            return

        exc = task.exception()
        if exc is not None:
            logger.error(f"[Background] Task {task.get_name()} failed: {exc}", exc_info=exc)
            self._failures.append(TaskFailure(name=task.get_name(), error=str(exc)))
            del self._failures[:-self._max_failures_kept]

    async def drain(self) -> None:
        """Wait until every submitted task, including ones scheduled meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop accepting work and wait for what is already running."""
        self._closed = True
        await self.drain()

    def stats(self) -> Dict[str, Any]:
        return {
            "pending": self.pending_count,
            "failures": len(self._failures),
            "closed": self._closed,
        }


_executor: Optional[BackgroundExecutor] = None


def get_background_executor() -> BackgroundExecutor:
    """Get or create the process-wide background executor."""
    global _executor

    if _executor is None or _executor._closed:
        _executor = BackgroundExecutor()

    return _executor
