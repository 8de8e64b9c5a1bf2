"""Draining of the operation queue under the advisory processing lock."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bookmark_sync.adapters.raindrop.client import RaindropAuthError
from bookmark_sync.core.logging_utils import generate_correlation_id
from bookmark_sync.domain.exceptions import InvalidOperationError
from bookmark_sync.domain.results import QueueRunResult

if TYPE_CHECKING:
    from bookmark_sync.domain.models import SyncOperation
    from bookmark_sync.sync.guard import ReentrancyGuard
    from bookmark_sync.sync.operation_handlers import OperationDispatcher
    from bookmark_sync.sync.operation_queue import OperationQueue
    from bookmark_sync.sync.stats import SyncStatsStore

logger = logging.getLogger(__name__)


def _describe(operation: SyncOperation) -> str:
    return f"{operation.source.value}_{operation.type.value}"


class QueueProcessor:
    def __init__(
        self,
        queue: OperationQueue,
        dispatcher: OperationDispatcher,
        guard: ReentrancyGuard,
        stats: SyncStatsStore,
    ) -> None:
        self._queue = queue
        self._dispatcher = dispatcher
        self._guard = guard
        self._stats = stats

    async def process(self, *, correlation_id: str | None = None) -> QueueRunResult:
        """Run every pending operation once, in enqueue order.

        Yields immediately (``skipped``) while another run holds a fresh lock.
        Successful operations are removed; failures count a retry. An
        authentication failure stops the run and leaves the operation pending.
        """
        cid = correlation_id or generate_correlation_id()
        result = QueueRunResult()

        if not await self._queue.acquire_lock(owner=cid):
            logger.debug("queue_processing_skipped_locked", extra={"correlation_id": cid})
            result.skipped = True
            return result

        try:
            with self._guard.hold("queue"):
                pending = (await self._queue.get_state()).pending
                if pending:
                    logger.info(
                        "queue_processing_start",
                        extra={"correlation_id": cid, "pending": len(pending)},
                    )
                for operation in pending:
                    result.processed += 1
                    try:
                        await self._dispatcher.handle(operation)
                    except InvalidOperationError as exc:
                        await self._queue.record_failure(operation.id, exc.message, permanent=True)
                        await self._stats.add_error(_describe(operation), exc.message, operation.id)
                        result.failed += 1
                    except RaindropAuthError as exc:
                        result.processed -= 1
                        await self._stats.add_error(_describe(operation), str(exc), operation.id)
                        logger.warning(
                            "queue_processing_halted_auth",
                            extra={"correlation_id": cid, "operation_id": operation.id},
                        )
                        break
                    except Exception as exc:
                        outcome = await self._queue.record_failure(operation.id, str(exc))
                        await self._stats.add_error(_describe(operation), str(exc), operation.id)
                        logger.warning(
                            "queue_operation_failed",
                            extra={
                                "correlation_id": cid,
                                "operation_id": operation.id,
                                "outcome": outcome,
                                "error": str(exc),
                            },
                        )
                        if outcome == "failed":
                            result.failed += 1
                    else:
                        await self._queue.remove(operation.id)
                        result.succeeded += 1

                if result.processed:
                    outcome_label = "success" if result.succeeded == result.processed else "partial"
                    await self._stats.record_pass(outcome_label)
                    logger.info(
                        "queue_processing_complete",
                        extra={
                            "correlation_id": cid,
                            "processed": result.processed,
                            "succeeded": result.succeeded,
                            "failed": result.failed,
                        },
                    )
        finally:
            await self._queue.release_lock()

        return result

    async def force_process(self, *, correlation_id: str | None = None) -> QueueRunResult:
        """Drop any held lock, then process. Used for user-triggered retries."""
        await self._queue.release_lock()
        return await self.process(correlation_id=correlation_id)
