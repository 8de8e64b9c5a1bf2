"""Durable queue of pending sync operations with an advisory processing lock."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.domain.exceptions import InvalidOperationError
from bookmark_sync.domain.models import (
    OperationSource,
    OperationType,
    ProcessingLock,
    QueueState,
    SyncOperation,
)
from bookmark_sync.sync.constants import (
    DEFAULT_FAILED_QUEUE_LIMIT,
    DEFAULT_LOCK_STALE_SECONDS,
    DEFAULT_MAX_RETRIES,
    STORAGE_KEY_QUEUE,
    STORAGE_KEY_QUEUE_LOCK,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from bookmark_sync.sync.state import SyncStateStore

logger = logging.getLogger(__name__)

FailureOutcome = Literal["retry", "failed", "missing"]

# Payload fields each (source, type) needs before it can be queued
REQUIRED_FIELDS: dict[tuple[OperationSource, OperationType], tuple[str, ...]] = {
    (OperationSource.LOCAL, OperationType.CREATE): ("url", "title", "collection_id", "local_id"),
    (OperationSource.LOCAL, OperationType.UPDATE): ("remote_id",),
    (OperationSource.LOCAL, OperationType.DELETE): ("remote_id",),
    (OperationSource.LOCAL, OperationType.MOVE): ("remote_id", "new_collection_id"),
    (OperationSource.REMOTE, OperationType.CREATE): ("remote_id", "parent_folder_id"),
    (OperationSource.REMOTE, OperationType.UPDATE): ("remote_id", "local_id"),
    (OperationSource.REMOTE, OperationType.DELETE): ("local_id",),
}


def validate_operation(operation: SyncOperation) -> None:
    """Reject unsupported operations and ones missing required payload fields.

    Raises:
        InvalidOperationError: The operation can never succeed as given.
    """
    key = (operation.source, operation.type)
    required = REQUIRED_FIELDS.get(key)
    if required is None:
        raise InvalidOperationError(
            f"Unsupported operation: {operation.source.value} {operation.type.value}",
            details={"operation_id": operation.id},
        )
    missing = [name for name in required if getattr(operation.data, name) is None]
    if missing:
        raise InvalidOperationError(
            f"Missing required fields for {operation.source.value} {operation.type.value}: "
            + ", ".join(missing),
            details={"operation_id": operation.id, "missing": missing},
        )


def _parse(raw: Any) -> QueueState:
    return QueueState.model_validate(raw) if raw else QueueState()


def _dump(state: QueueState) -> dict[str, Any]:
    return state.model_dump(mode="json", by_alias=True)


class OperationQueue:
    """``pending`` and ``failed`` partitions persisted as one record.

    ``pending`` keeps enqueue order. ``failed`` is capped; the oldest entries
    are evicted first.
    """

    def __init__(
        self,
        state: SyncStateStore,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        failed_limit: int = DEFAULT_FAILED_QUEUE_LIMIT,
        lock_stale_seconds: float = DEFAULT_LOCK_STALE_SECONDS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._state = state
        self.max_retries = max_retries
        self.failed_limit = failed_limit
        self.lock_stale_ms = int(lock_stale_seconds * 1000)
        self._clock = clock

    async def get_state(self) -> QueueState:
        return _parse(await self._state.read(STORAGE_KEY_QUEUE))

    async def pending_count(self) -> int:
        return len((await self.get_state()).pending)

    async def enqueue(self, operation: SyncOperation) -> bool:
        """Append ``operation`` to ``pending``.

        Returns False when an operation with the same (type, source, local id,
        remote id) is already pending.

        Raises:
            InvalidOperationError: Missing required fields or unsupported type.
        """
        validate_operation(operation)
        if "max_retries" not in operation.model_fields_set:
            operation = operation.model_copy(update={"max_retries": self.max_retries})

        def _enqueue(raw: Any) -> tuple[Any, bool]:
            state = _parse(raw)
            if any(op.dedupe_key == operation.dedupe_key for op in state.pending):
                return _dump(state), False
            state.pending.append(operation)
            return _dump(state), True

        added = await self._state.mutate(STORAGE_KEY_QUEUE, _enqueue, operation_name="enqueue")
        logger.info(
            "operation_enqueued" if added else "operation_deduplicated",
            extra={
                "operation_id": operation.id,
                "operation_type": operation.type.value,
                "source": operation.source.value,
                "local_id": operation.data.local_id,
                "remote_id": operation.data.remote_id,
            },
        )
        return added

    async def remove(self, operation_id: str) -> bool:
        def _remove(raw: Any) -> tuple[Any, bool]:
            state = _parse(raw)
            before = len(state.pending)
            state.pending = [op for op in state.pending if op.id != operation_id]
            return _dump(state), len(state.pending) != before

        return await self._state.mutate(STORAGE_KEY_QUEUE, _remove, operation_name="dequeue")

    async def record_failure(
        self, operation_id: str, error: str, *, permanent: bool = False
    ) -> FailureOutcome:
        """Count a failed attempt.

        The operation moves to ``failed`` once ``retries >= max_retries`` (or
        immediately when ``permanent``); otherwise it stays pending.
        """

        def _fail(raw: Any) -> tuple[Any, FailureOutcome]:
            state = _parse(raw)
            position = next(
                (i for i, op in enumerate(state.pending) if op.id == operation_id), None
            )
            if position is None:
                return _dump(state), "missing"

            operation = state.pending[position]
            operation = operation.model_copy(
                update={"retries": operation.retries + 1, "last_error": error}
            )
            if permanent or operation.retries >= operation.max_retries:
                del state.pending[position]
                state.failed.append(operation)
                if len(state.failed) > self.failed_limit:
                    state.failed = state.failed[-self.failed_limit :]
                return _dump(state), "failed"

            state.pending[position] = operation
            return _dump(state), "retry"

        return await self._state.mutate(
            STORAGE_KEY_QUEUE, _fail, operation_name="record_operation_failure"
        )

    async def retry_failed(self) -> int:
        """Move every failed operation back to pending with its retry count reset."""

        def _retry(raw: Any) -> tuple[Any, int]:
            state = _parse(raw)
            revived = [
                op.model_copy(update={"retries": 0, "last_error": None}) for op in state.failed
            ]
            state.pending.extend(revived)
            state.failed = []
            return _dump(state), len(revived)

        count = await self._state.mutate(STORAGE_KEY_QUEUE, _retry, operation_name="retry_failed")
        logger.info("failed_operations_requeued", extra={"count": count})
        return count

    async def clear(self) -> None:
        await self._state.mutate(
            STORAGE_KEY_QUEUE, lambda _: (_dump(QueueState()), None), operation_name="clear_queue"
        )
        logger.info("operation_queue_cleared")

    # ------------------------------------------------------------------
    # Processing lock
    # ------------------------------------------------------------------

    async def get_lock(self) -> ProcessingLock | None:
        raw = await self._state.read(STORAGE_KEY_QUEUE_LOCK)
        return ProcessingLock.model_validate(raw) if raw else None

    async def acquire_lock(self, owner: str = "") -> bool:
        """Take the processing lock unless a fresh one is held.

        A lock older than the staleness threshold is treated as abandoned and
        reclaimed.
        """

        def _acquire(raw: Any) -> tuple[Any, bool]:
            now = self._clock()
            if raw:
                existing = ProcessingLock.model_validate(raw)
                age = now - existing.timestamp
                if age < self.lock_stale_ms:
                    return raw, False
                logger.warning(
                    "queue_lock_reclaimed",
                    extra={"stale_owner": existing.owner, "age_ms": age},
                )
            lock = ProcessingLock(timestamp=now, owner=owner)
            return lock.model_dump(mode="json", by_alias=True), True

        return await self._state.mutate(
            STORAGE_KEY_QUEUE_LOCK, _acquire, operation_name="acquire_queue_lock"
        )

    async def release_lock(self) -> None:
        await self._state.remove(STORAGE_KEY_QUEUE_LOCK)
