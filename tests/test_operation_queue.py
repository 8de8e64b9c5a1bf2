"""Tests for the durable operation queue and its processing lock."""

from __future__ import annotations

import unittest

from fakes import FakeClock

from bookmark_sync.domain.exceptions import InvalidOperationError
from bookmark_sync.domain.models import (
    OperationSource,
    OperationType,
    SyncOperation,
    SyncOperationData,
)
from bookmark_sync.infrastructure.persistence.memory import MemoryKeyValueStore
from bookmark_sync.sync.operation_queue import OperationQueue, validate_operation
from bookmark_sync.sync.state import SyncStateStore


def _local_update(remote_id: int = 1, local_id: str = "b1") -> SyncOperation:
    return SyncOperation(
        type=OperationType.UPDATE,
        source=OperationSource.LOCAL,
        data=SyncOperationData(local_id=local_id, remote_id=remote_id, title="T"),
    )


class TestValidateOperation(unittest.TestCase):
    def test_local_create_requires_payload(self):
        operation = SyncOperation(
            type=OperationType.CREATE,
            source=OperationSource.LOCAL,
            data=SyncOperationData(local_id="b1", url="https://x.com"),
        )
        with self.assertRaises(InvalidOperationError) as ctx:
            validate_operation(operation)
        assert ctx.exception.details["missing"] == ["title", "collection_id"]

    def test_remote_move_is_unsupported(self):
        operation = SyncOperation(
            type=OperationType.MOVE,
            source=OperationSource.REMOTE,
            data=SyncOperationData(remote_id=1),
        )
        with self.assertRaises(InvalidOperationError) as ctx:
            validate_operation(operation)
        assert "Unsupported operation" in ctx.exception.message

    def test_complete_operation_passes(self):
        validate_operation(_local_update())


class TestEnqueue(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.kv = MemoryKeyValueStore()
        self.queue = OperationQueue(SyncStateStore(self.kv), max_retries=2)

    async def test_enqueue_preserves_order(self):
        first = _local_update(1, "b1")
        second = _local_update(2, "b2")
        assert await self.queue.enqueue(first)
        assert await self.queue.enqueue(second)

        state = await self.queue.get_state()
        assert [op.id for op in state.pending] == [first.id, second.id]
        assert await self.queue.pending_count() == 2

    async def test_duplicate_pending_operation_is_dropped(self):
        assert await self.queue.enqueue(_local_update())
        assert not await self.queue.enqueue(_local_update())
        assert await self.queue.pending_count() == 1

    async def test_invalid_operation_is_rejected(self):
        operation = SyncOperation(type=OperationType.DELETE, source=OperationSource.LOCAL)
        with self.assertRaises(InvalidOperationError):
            await self.queue.enqueue(operation)
        assert await self.queue.pending_count() == 0

    async def test_queue_default_retry_budget_applied(self):
        await self.queue.enqueue(_local_update())
        assert (await self.queue.get_state()).pending[0].max_retries == 2

    async def test_remove(self):
        operation = _local_update()
        await self.queue.enqueue(operation)
        assert await self.queue.remove(operation.id)
        assert not await self.queue.remove(operation.id)

    async def test_persisted_with_camel_case_keys(self):
        await self.queue.enqueue(_local_update())
        stored = self.kv.snapshot()["sync_queue"]["pending"][0]
        assert stored["data"]["remoteId"] == 1
        assert stored["maxRetries"] == 2


class TestFailures(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.queue = OperationQueue(
            SyncStateStore(MemoryKeyValueStore()), max_retries=3, failed_limit=2
        )

    async def test_retry_until_budget_then_failed_once(self):
        operation = _local_update()
        await self.queue.enqueue(operation)

        assert await self.queue.record_failure(operation.id, "e1") == "retry"
        assert await self.queue.record_failure(operation.id, "e2") == "retry"
        assert await self.queue.record_failure(operation.id, "e3") == "failed"
        assert await self.queue.record_failure(operation.id, "e4") == "missing"

        state = await self.queue.get_state()
        assert state.pending == []
        assert len(state.failed) == 1
        assert state.failed[0].retries == 3
        assert state.failed[0].last_error == "e3"

    async def test_permanent_failure_skips_retries(self):
        operation = _local_update()
        await self.queue.enqueue(operation)
        assert await self.queue.record_failure(operation.id, "bad", permanent=True) == "failed"
        assert (await self.queue.get_state()).failed[0].retries == 1

    async def test_failed_partition_is_capped_oldest_first(self):
        ids = []
        for index in range(3):
            operation = _local_update(index + 1, f"b{index}")
            ids.append(operation.id)
            await self.queue.enqueue(operation)
            await self.queue.record_failure(operation.id, "x", permanent=True)

        failed = (await self.queue.get_state()).failed
        assert [op.id for op in failed] == ids[1:]

    async def test_retry_failed_resets_counters(self):
        operation = _local_update()
        await self.queue.enqueue(operation)
        await self.queue.record_failure(operation.id, "x", permanent=True)

        assert await self.queue.retry_failed() == 1
        state = await self.queue.get_state()
        assert state.failed == []
        assert state.pending[0].retries == 0
        assert state.pending[0].last_error is None

    async def test_clear(self):
        await self.queue.enqueue(_local_update())
        await self.queue.clear()
        state = await self.queue.get_state()
        assert state.pending == [] and state.failed == []


class TestProcessingLock(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.queue = OperationQueue(
            SyncStateStore(MemoryKeyValueStore()), lock_stale_seconds=60, clock=self.clock
        )

    async def test_second_acquire_fails_while_fresh(self):
        assert await self.queue.acquire_lock("first")
        self.clock.now += 59_000
        assert not await self.queue.acquire_lock("second")
        assert (await self.queue.get_lock()).owner == "first"

    async def test_stale_lock_is_reclaimed(self):
        assert await self.queue.acquire_lock("first")
        self.clock.now += 60_000
        assert await self.queue.acquire_lock("second")
        lock = await self.queue.get_lock()
        assert lock.owner == "second"
        assert lock.timestamp == self.clock.now

    async def test_release(self):
        await self.queue.acquire_lock()
        await self.queue.release_lock()
        assert await self.queue.get_lock() is None
        assert await self.queue.acquire_lock()


if __name__ == "__main__":
    unittest.main()
