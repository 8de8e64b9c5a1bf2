"""Per-key debounce of produced operations before they reach the queue."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from bookmark_sync.domain.exceptions import InvalidOperationError
from bookmark_sync.sync.constants import DEFAULT_BATCH_WINDOW_SECONDS

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from bookmark_sync.domain.models import SyncOperation

logger = logging.getLogger(__name__)


class OperationBatcher:
    """Coalesce bursts of operations keyed by local bookmark id.

    Only the newest operation per key survives. A key is flushed to ``sink``
    once ``window_seconds`` pass without another operation for it.
    """

    def __init__(
        self,
        sink: Callable[[SyncOperation], Awaitable[bool]],
        window_seconds: float = DEFAULT_BATCH_WINDOW_SECONDS,
    ) -> None:
        self._sink = sink
        self._window = window_seconds
        self._pending: dict[str, SyncOperation] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add(self, operation: SyncOperation) -> None:
        key = operation.batch_key
        replaced = self._pending.get(key)
        self._pending[key] = operation
        if replaced is not None:
            logger.debug(
                "operation_coalesced",
                extra={
                    "batch_key": key,
                    "replaced_type": replaced.type.value,
                    "operation_type": operation.type.value,
                },
            )

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._timers[key] = asyncio.create_task(
            self._flush_after_window(key), name=f"operation-batch-{key}"
        )

    async def _flush_after_window(self, key: str) -> None:
        await asyncio.sleep(self._window)
        current = asyncio.current_task()
        if self._timers.get(key) is current:
            del self._timers[key]
        if current is not None:
            self._inflight.add(current)
        try:
            await self._flush_key(key)
        finally:
            if current is not None:
                self._inflight.discard(current)

    async def _flush_key(self, key: str) -> None:
        operation = self._pending.pop(key, None)
        if operation is None:
            return
        try:
            await self._sink(operation)
        except InvalidOperationError as exc:
            logger.warning(
                "batched_operation_rejected",
                extra={"operation_id": operation.id, "error": exc.message},
            )
        except Exception:
            logger.exception(
                "batched_operation_enqueue_failed", extra={"operation_id": operation.id}
            )

    async def flush(self) -> None:
        """Enqueue everything pending now, without waiting for the window."""
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            if timer not in self._inflight:
                timer.cancel()
        for timer in timers:
            if timer not in self._inflight:
                with contextlib.suppress(asyncio.CancelledError):
                    await timer

        for key in list(self._pending):
            await self._flush_key(key)

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
