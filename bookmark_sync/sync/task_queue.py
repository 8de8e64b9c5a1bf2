"""Strictly ordered execution of read-modify-write tasks.

Callers submit zero-arg async callables and await their result. Tasks run one
at a time in submission order on a worker task that exits when the queue
drains and is respawned by the next submission.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SerialTaskQueue:
    """Single serialization point for storage mutations.

    Usage::

        queue = SerialTaskQueue()
        link_added = await queue.run(lambda: _append_link(link), operation_name="add_link")

    A task must not submit to the same queue and await the result; it would
    wait on itself.
    """

    def __init__(self, name: str = "storage") -> None:
        self._name = name
        self._items: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future[Any], str]] = (
            deque()
        )
        self._worker_task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return len(self._items)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str = "storage_write",
    ) -> T:
        """Submit ``operation`` and wait for its result (or exception)."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._items.append((operation, future, operation_name))
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(
                self._worker(), name=f"serial-task-queue-{self._name}"
            )
        return await future

    async def join(self) -> None:
        """Wait until every submitted task has finished."""
        while self._worker_task is not None and not self._worker_task.done():
            await asyncio.shield(self._worker_task)

    async def _worker(self) -> None:
        while self._items:
            operation, future, operation_name = self._items.popleft()
            if future.done():
                # caller went away before the task started
                continue
            try:
                result = await operation()
            except asyncio.CancelledError:
                future.cancel()
                while self._items:
                    self._items.popleft()[1].cancel()
                raise
            except Exception as exc:
                logger.debug(
                    "serial_task_failed",
                    extra={"queue": self._name, "operation": operation_name, "error": str(exc)},
                )
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
