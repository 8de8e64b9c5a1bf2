"""Tests for the serial task queue and the state stores built on it."""

from __future__ import annotations

import asyncio
import unittest

from bookmark_sync.config import SyncConfig
from bookmark_sync.domain.models import SyncSettings
from bookmark_sync.infrastructure.persistence.memory import MemoryKeyValueStore
from bookmark_sync.sync.constants import ALL_STORAGE_KEYS
from bookmark_sync.sync.state import CredentialStore, SettingsStore, SyncStateStore
from bookmark_sync.sync.task_queue import SerialTaskQueue


class TestSerialTaskQueue(unittest.IsolatedAsyncioTestCase):
    async def test_runs_in_submission_order(self):
        queue = SerialTaskQueue()
        order: list[int] = []

        async def _task(value: int) -> int:
            # yield so that unserialized tasks would interleave
            await asyncio.sleep(0)
            order.append(value)
            return value

        results = await asyncio.gather(
            *(queue.run(lambda v=i: _task(v), operation_name=f"t{i}") for i in range(10))
        )

        assert results == list(range(10))
        assert order == list(range(10))

    async def test_exception_reaches_caller_and_queue_continues(self):
        queue = SerialTaskQueue()

        async def _boom() -> None:
            raise ValueError("boom")

        async def _ok() -> str:
            return "ok"

        failing = asyncio.ensure_future(queue.run(_boom))
        succeeding = asyncio.ensure_future(queue.run(_ok))

        with self.assertRaises(ValueError):
            await failing
        assert await succeeding == "ok"

    async def test_worker_respawns_after_draining(self):
        queue = SerialTaskQueue()

        async def _value() -> int:
            return 1

        assert await queue.run(_value) == 1
        await queue.join()
        assert queue.pending == 0
        assert await queue.run(_value) == 1

    async def test_read_modify_write_is_not_lost(self):
        state = SyncStateStore(MemoryKeyValueStore())

        def _increment(raw):
            value = (raw or 0) + 1
            return value, value

        await asyncio.gather(*(state.mutate("counter", _increment) for _ in range(25)))
        assert await state.read("counter") == 25


class TestCredentialStore(unittest.IsolatedAsyncioTestCase):
    async def test_save_strips_and_notifies(self):
        credentials = CredentialStore(SyncStateStore(MemoryKeyValueStore()))
        notified: list[bool] = []
        credentials.add_change_hook(lambda: notified.append(True))

        await credentials.save_token("  abc  ")
        assert await credentials.get_token() == "abc"
        assert await credentials.is_authenticated()

        await credentials.clear_token()
        assert await credentials.get_token() is None
        assert not await credentials.is_authenticated()
        assert notified == [True, True]


class TestSettingsStore(unittest.IsolatedAsyncioTestCase):
    async def test_defaults_come_from_config(self):
        settings = SettingsStore(
            SyncStateStore(MemoryKeyValueStore()),
            SyncConfig(enabled=True, pull_interval_minutes=15),
        )
        current = await settings.get_settings()
        assert current.enabled is True
        assert current.sync_interval == 15
        assert await settings.is_enabled()

    async def test_update_merges_changes(self):
        settings = SettingsStore(SyncStateStore(MemoryKeyValueStore()))
        await settings.update_settings(sync_interval=30)
        updated = await settings.update_settings(enabled=True)
        assert updated.sync_interval == 30
        assert updated.enabled is True

    async def test_save_replaces_record(self):
        kv = MemoryKeyValueStore()
        settings = SettingsStore(SyncStateStore(kv))
        await settings.save_settings(SyncSettings(enabled=True, sync_interval=7, last_full_sync=9))
        assert kv.snapshot()["sync_settings"]["syncInterval"] == 7
        assert (await settings.get_settings()).last_full_sync == 9


class TestClearAll(unittest.IsolatedAsyncioTestCase):
    async def test_removes_every_known_record(self):
        kv = MemoryKeyValueStore({key: "x" for key in ALL_STORAGE_KEYS} | {"unrelated": 1})
        await SyncStateStore(kv).clear_all()
        assert kv.snapshot() == {"unrelated": 1}


if __name__ == "__main__":
    unittest.main()
