"""Tests for the key-value stores behind the sync state."""

from __future__ import annotations

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from bookmark_sync.db.session import DatabaseSessionManager
from bookmark_sync.domain.models import FolderMapping
from bookmark_sync.infrastructure.persistence.memory import MemoryKeyValueStore
from bookmark_sync.infrastructure.persistence.sqlite import SqliteKeyValueStore
from bookmark_sync.sync.registry import LinkRegistry
from bookmark_sync.sync.state import SyncStateStore


class TestMemoryKeyValueStore(unittest.IsolatedAsyncioTestCase):
    async def test_values_are_copied(self):
        kv = MemoryKeyValueStore()
        value = {"items": [1]}
        await kv.set("k", value)
        value["items"].append(2)

        stored = await kv.get("k")
        assert stored == {"items": [1]}
        stored["items"].append(3)
        assert await kv.get("k") == {"items": [1]}

    async def test_default_remove_and_clear(self):
        kv = MemoryKeyValueStore({"a": 1, "b": 2})
        assert await kv.get("missing", "fallback") == "fallback"
        await kv.remove("a")
        await kv.remove("a")
        assert kv.snapshot() == {"b": 2}
        await kv.clear()
        assert kv.snapshot() == {}


class TestSqliteKeyValueStore(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = TemporaryDirectory()
        self.path = str(Path(self._tmp.name) / "state" / "sync.db")
        self.db = DatabaseSessionManager(self.path)
        self.db.migrate()
        self.kv = SqliteKeyValueStore(self.db)

    async def asyncTearDown(self):
        self.db.close()
        self._tmp.cleanup()

    async def test_round_trips_json_documents(self):
        document = {"pending": [{"id": "a", "data": {"remoteId": 3}}], "failed": []}
        await self.kv.set("sync_queue", document)
        assert await self.kv.get("sync_queue") == document
        assert await self.kv.get("missing", []) == []

    async def test_set_overwrites(self):
        await self.kv.set("api_token", "one")
        await self.kv.set("api_token", "two")
        assert await self.kv.get("api_token") == "two"
        assert await self.kv.keys() == ["api_token"]

    async def test_remove_and_clear(self):
        await self.kv.set("a", 1)
        await self.kv.set("b", 2)
        await self.kv.remove("a")
        assert sorted(await self.kv.keys()) == ["b"]
        await self.kv.clear()
        assert await self.kv.keys() == []

    async def test_state_survives_reopen(self):
        registry = LinkRegistry(SyncStateStore(self.kv))
        mapping = await registry.add_mapping(
            FolderMapping(local_folder_id="f1", remote_collection_id=10, folder_name="Reading")
        )
        self.db.close()

        reopened = DatabaseSessionManager(self.path)
        reopened.migrate()
        try:
            registry = LinkRegistry(SyncStateStore(SqliteKeyValueStore(reopened)))
            assert await registry.get_mapping(mapping.id) == mapping
        finally:
            reopened.close()

    async def test_migrate_is_repeatable(self):
        self.db.migrate()
        await self.kv.set("a", 1)
        assert await self.kv.get("a") == 1


class TestInMemoryDatabase(unittest.IsolatedAsyncioTestCase):
    async def test_memory_database(self):
        db = DatabaseSessionManager(":memory:")
        db.migrate()
        try:
            kv = SqliteKeyValueStore(db)
            await kv.set("sync_settings", {"enabled": True})
            assert await kv.get("sync_settings") == {"enabled": True}
            assert db.is_in_memory
        finally:
            db.close()


if __name__ == "__main__":
    unittest.main()
