"""Tests for the reconciliation passes."""

from __future__ import annotations

import asyncio
import unittest

from fakes import FakeRaindrop, YieldingKeyValueStore, make_container

from bookmark_sync.adapters.local.memory_store import ROOT_ID, InMemoryBookmarkStore
from bookmark_sync.adapters.raindrop.client import RaindropApiError
from bookmark_sync.core.hashing import content_hash
from bookmark_sync.domain.models import (
    BookmarkLink,
    FolderMapping,
    OperationSource,
    OperationType,
    SyncOperation,
    SyncOperationData,
)


class EngineTestCase(unittest.IsolatedAsyncioTestCase):
    kv_class = None

    async def asyncSetUp(self):
        self.store = InMemoryBookmarkStore()
        self.remote = FakeRaindrop()
        kv = self.kv_class() if self.kv_class else None
        self.container = await make_container(self.store, self.remote, kv=kv)
        self.engine = self.container.engine
        self.registry = self.container.registry
        self.folder, self.collection, self.mapping = await self._mapped("Reading")

    async def _mapped(self, name: str):
        folder = await self.store.create(ROOT_ID, name)
        collection = self.remote.add_collection(name)
        mapping = await self.registry.add_mapping(
            FolderMapping(
                local_folder_id=folder.id,
                remote_collection_id=collection.id,
                folder_name=name,
            )
        )
        return folder, collection, mapping

    async def _link(self, node, item, mapping):
        await self.registry.add_link(
            BookmarkLink(
                local_id=node.id,
                remote_id=item.id,
                url=item.link,
                title=item.title,
                content_hash=content_hash(item.link, item.title),
                mapping_id=mapping.id,
            )
        )


class TestInitialSync(EngineTestCase):
    async def test_matches_by_normalized_url(self):
        await self.store.create(self.folder.id, "A", url="https://x.com/a?utm_source=feed")
        self.remote.add_item(self.collection.id, "https://x.com/a", "A")

        result = await self.engine.initial_sync(self.mapping)

        assert (result.matched, result.created_in_raindrop, result.created_locally) == (1, 0, 0)
        assert result.errors == []
        assert await self.registry.count_links() == 1
        assert (await self.registry.get_mapping(self.mapping.id)).last_sync > 0

    async def test_creates_missing_items_on_both_sides(self):
        local = await self.store.create(self.folder.id, "Local", url="https://x.com/local")
        remote_item = self.remote.add_item(self.collection.id, "https://x.com/remote", "Remote")

        result = await self.engine.initial_sync(self.mapping)

        assert result.created_in_raindrop == 1
        assert result.created_locally == 1
        assert self.remote.count("create_raindrops") == 1
        assert await self.registry.find_link(local_id=local.id) is not None
        link = await self.registry.find_link(remote_id=remote_item.id)
        assert (await self.store.get(link.local_id)).url == "https://x.com/remote"

    async def test_second_run_creates_nothing(self):
        await self.store.create(self.folder.id, "Local", url="https://x.com/local")
        self.remote.add_item(self.collection.id, "https://x.com/remote", "Remote")
        await self.engine.initial_sync(self.mapping)

        again = await self.engine.initial_sync(self.mapping)

        assert again.created_in_raindrop == 0
        assert again.created_locally == 0
        assert again.matched == 2
        assert len(await self.store.get_children(self.folder.id)) == 2
        assert len(self.remote.items_in(self.collection.id)) == 2

    async def test_duplicate_urls_pair_one_for_one(self):
        await self.store.create(self.folder.id, "One", url="https://x.com/dup")
        await self.store.create(self.folder.id, "Two", url="https://x.com/dup")
        self.remote.add_item(self.collection.id, "https://x.com/dup", "Remote")

        result = await self.engine.initial_sync(self.mapping)

        assert result.matched == 1
        assert result.created_in_raindrop == 1
        assert await self.registry.count_links() == 2

    async def test_blocked_urls_are_not_synced(self):
        await self.store.create(self.folder.id, "Settings", url="about:config")
        result = await self.engine.initial_sync(self.mapping)
        assert self.remote.count("create_raindrops") == 0
        assert result.created_in_raindrop == 0

    async def test_missing_folder_is_reported(self):
        await self.store.remove(self.folder.id)
        result = await self.engine.initial_sync(self.mapping)
        assert result.errors == ['Folder "Reading" not found']

    async def test_bulk_create_failure_is_reported(self):
        await self.store.create(self.folder.id, "Local", url="https://x.com/local")
        self.remote.bulk_error = RaindropApiError("boom")

        result = await self.engine.initial_sync(self.mapping)

        assert result.errors == ["Initial bulk create in Raindrop failed: boom"]
        assert await self.registry.count_links() == 0

    async def test_local_creations_are_not_echoed(self):
        self.container.observer.register()
        self.remote.add_item(self.collection.id, "https://x.com/remote", "Remote")

        await self.engine.initial_sync(self.mapping)
        await self.container.batcher.flush()

        assert await self.container.queue.pending_count() == 0
        await self.container.observer.unregister()


class TestPull(EngineTestCase):
    async def test_creates_updates_and_deletes(self):
        kept = await self.store.create(self.folder.id, "Old title", url="https://x.com/kept")
        gone = await self.store.create(self.folder.id, "Gone", url="https://x.com/gone")
        kept_item = self.remote.add_item(self.collection.id, "https://x.com/kept", "Old title")
        gone_item = self.remote.add_item(self.collection.id, "https://x.com/gone", "Gone")
        await self._link(kept, kept_item, self.mapping)
        await self._link(gone, gone_item, self.mapping)

        self.remote.items[kept_item.id] = kept_item.model_copy(update={"title": "New title"})
        del self.remote.items[gone_item.id]
        new_item = self.remote.add_item(self.collection.id, "https://x.com/new", "New")

        result = await self.engine.pull()

        assert (result.created, result.updated, result.deleted) == (1, 1, 1)
        assert (await self.store.get(kept.id)).title == "New title"
        assert await self.store.get(gone.id) is None
        assert await self.registry.find_link(remote_id=gone_item.id) is None
        assert await self.registry.find_link(remote_id=new_item.id) is not None
        assert (await self.container.stats.get_stats()).last_sync_status == "success"

    async def test_url_linked_in_another_mapping_is_not_duplicated(self):
        other_folder, other_collection, _ = await self._mapped("Later")
        node = await self.store.create(self.folder.id, "Shared", url="https://x.com/shared")
        item = self.remote.add_item(self.collection.id, "https://x.com/shared", "Shared")
        await self._link(node, item, self.mapping)
        self.remote.add_item(other_collection.id, "https://x.com/shared?utm_medium=x", "Copy")

        result = await self.engine.pull()

        assert result.created == 0
        assert await self.store.get_children(other_folder.id) == []
        assert await self.registry.count_links() == 1

    async def test_failing_mapping_does_not_stop_others(self):
        _, other_collection, _ = await self._mapped("Later")
        self.remote.add_item(other_collection.id, "https://x.com/new", "New")
        self.remote.fetch_errors[self.collection.id] = RaindropApiError("down")

        result = await self.engine.pull()

        assert result.created == 1
        assert result.errors == ["Pull failed for Reading: down"]
        stats = await self.container.stats.get_stats()
        assert stats.last_sync_status == "partial"
        assert stats.errors[0].operation == "pull"

    async def test_all_mappings_failing_is_failed(self):
        self.remote.fetch_errors[self.collection.id] = RaindropApiError("down")
        await self.engine.pull()
        assert (await self.container.stats.get_stats()).last_sync_status == "failed"

    async def test_skipped_while_another_pass_runs(self):
        with self.container.session.guard.hold("other"):
            result = await self.engine.pull()
        assert result.skipped
        assert self.remote.count("get_all_raindrops") == 0

    async def test_skipped_when_disabled(self):
        await self.container.settings.update_settings(enabled=False)
        assert (await self.engine.pull()).skipped


class TestPush(EngineTestCase):
    async def test_links_existing_and_creates_missing(self):
        existing = await self.store.create(self.folder.id, "E", url="https://x.com/existing")
        fresh = await self.store.create(self.folder.id, "F", url="https://x.com/fresh")
        item = self.remote.add_item(self.collection.id, "https://x.com/existing/", "E")

        result = await self.engine.push()

        assert (result.linked, result.created) == (1, 1)
        assert (await self.registry.find_link(local_id=existing.id)).remote_id == item.id
        created = await self.registry.find_link(local_id=fresh.id)
        assert self.remote.items[created.remote_id].link == "https://x.com/fresh"

    async def test_nothing_to_do_makes_no_bulk_call(self):
        result = await self.engine.push()
        assert (result.linked, result.created) == (0, 0)
        assert self.remote.count("create_raindrops") == 0

    async def test_bulk_failure_is_reported(self):
        await self.store.create(self.folder.id, "F", url="https://x.com/fresh")
        self.remote.bulk_error = RaindropApiError("boom")

        result = await self.engine.push()

        assert result.errors == ["Bulk creation failed for Reading: boom"]
        assert await self.registry.count_links() == 0

    async def test_missing_folder_is_reported(self):
        await self.store.remove(self.folder.id)
        result = await self.engine.push()
        assert result.errors == ['Folder "Reading" not found in browser']


class TestFullResync(EngineTestCase):
    async def test_no_mappings(self):
        await self.registry.remove_mapping(self.mapping.id)
        result = await self.engine.full_resync()
        assert result.success
        assert result.errors == ["No mappings configured"]

    async def test_rebuilds_links_and_drops_queue(self):
        node = await self.store.create(self.folder.id, "A", url="https://x.com/a")
        item = self.remote.add_item(self.collection.id, "https://x.com/a", "A")
        await self.registry.add_link(
            BookmarkLink(
                local_id=node.id, remote_id=999, url="https://x.com/a", mapping_id=self.mapping.id
            )
        )
        await self.container.queue.enqueue(
            SyncOperation(
                type=OperationType.UPDATE,
                source=OperationSource.LOCAL,
                data=SyncOperationData(local_id=node.id, remote_id=999),
            )
        )

        result = await self.engine.full_resync()

        assert result.success
        assert result.results[self.mapping.id].matched == 1
        assert (await self.registry.find_link(local_id=node.id)).remote_id == item.id
        assert await self.container.queue.pending_count() == 0
        assert (await self.container.settings.get_settings()).last_full_sync > 0


class TestOverlappingPasses(EngineTestCase):
    kv_class = YieldingKeyValueStore

    async def test_concurrent_pulls_create_once(self):
        item = self.remote.add_item(self.collection.id, "https://x.com/a", "A")

        first, second = await asyncio.gather(self.engine.pull(), self.engine.pull())

        assert sorted([first.skipped, second.skipped]) == [False, True]
        assert first.created + second.created == 1
        children = await self.store.get_children(self.folder.id)
        assert len(children) == 1
        assert (await self.registry.find_link(remote_id=item.id)).local_id == children[0].id

    async def test_concurrent_pushes_create_once(self):
        await self.store.create(self.folder.id, "A", url="https://x.com/a")

        results = await asyncio.gather(self.engine.push(), self.engine.push())

        assert sum(result.created for result in results) == 1
        assert len(self.remote.items_in(self.collection.id)) == 1
        assert await self.registry.count_links() == 1


class TestRefusedLink(EngineTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.item = self.remote.add_item(self.collection.id, "https://x.com/a", "A")
        create = self.store.create

        # Another writer links the remote item after it was fetched.
        async def create_after_remote_linked(parent_id, title, url=None, index=None):
            await self.registry.add_link(
                BookmarkLink(
                    local_id="elsewhere",
                    remote_id=self.item.id,
                    url=self.item.link,
                    mapping_id=self.mapping.id,
                )
            )
            return await create(parent_id, title, url=url, index=index)

        self.store.create = create_after_remote_linked

    async def _assert_no_orphan(self):
        assert await self.store.get_children(self.folder.id) == []
        assert (await self.registry.find_link(remote_id=self.item.id)).local_id == "elsewhere"
        assert await self.registry.count_links() == 1

    async def test_pull_removes_unlinkable_bookmark(self):
        result = await self.engine.pull()

        assert result.created == 0
        assert result.errors == []
        await self._assert_no_orphan()

    async def test_initial_sync_removes_unlinkable_bookmark(self):
        result = await self.engine.initial_sync(self.mapping)

        assert result.created_locally == 0
        assert result.errors == []
        await self._assert_no_orphan()


if __name__ == "__main__":
    unittest.main()
