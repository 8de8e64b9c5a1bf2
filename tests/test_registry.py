"""Tests for the link & mapping registry."""

from __future__ import annotations

import asyncio
import unittest

from bookmark_sync.domain.exceptions import DuplicateLinkError, DuplicateMappingError
from bookmark_sync.domain.models import BookmarkLink, FolderMapping
from bookmark_sync.infrastructure.persistence.memory import MemoryKeyValueStore
from bookmark_sync.sync.registry import LinkRegistry
from bookmark_sync.sync.state import SyncStateStore


def _mapping(folder: str, collection: int, parent: str | None = None) -> FolderMapping:
    return FolderMapping(
        local_folder_id=folder,
        remote_collection_id=collection,
        folder_name=f"Folder {folder}",
        parent_mapping_id=parent,
    )


def _link(local_id: str, remote_id: int, mapping_id: str, url: str | None = None) -> BookmarkLink:
    return BookmarkLink(
        local_id=local_id,
        remote_id=remote_id,
        url=url or f"https://example.com/{local_id}",
        mapping_id=mapping_id,
    )


class TestMappings(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.kv = MemoryKeyValueStore()
        self.registry = LinkRegistry(SyncStateStore(self.kv))

    async def test_add_and_lookup(self):
        mapping = await self.registry.add_mapping(_mapping("f1", 10))

        assert await self.registry.get_mapping(mapping.id) == mapping
        assert await self.registry.find_mapping_by_local_folder("f1") == mapping
        assert await self.registry.find_mapping_by_collection(10) == mapping
        assert await self.registry.find_mapping_by_local_folder(None) is None
        assert await self.registry.find_mapping_by_collection(99) is None

    async def test_persisted_with_camel_case_keys(self):
        await self.registry.add_mapping(_mapping("f1", 10))
        stored = self.kv.snapshot()["folder_mappings"][0]
        assert stored["localFolderId"] == "f1"
        assert stored["remoteCollectionId"] == 10

    async def test_duplicate_folder_rejected(self):
        await self.registry.add_mapping(_mapping("f1", 10))
        with self.assertRaises(DuplicateMappingError) as ctx:
            await self.registry.add_mapping(_mapping("f1", 11))
        assert ctx.exception.message == "Mapping already exists for this folder or collection"
        assert len(await self.registry.get_mappings()) == 1

    async def test_duplicate_collection_rejected(self):
        await self.registry.add_mapping(_mapping("f1", 10))
        with self.assertRaises(DuplicateMappingError):
            await self.registry.add_mapping(_mapping("f2", 10))

    async def test_update_mapping(self):
        mapping = await self.registry.add_mapping(_mapping("f1", 10))
        updated = await self.registry.update_mapping(mapping.id, last_sync=1234)
        assert updated is not None
        assert updated.last_sync == 1234
        assert (await self.registry.get_mapping(mapping.id)).last_sync == 1234
        assert await self.registry.update_mapping("missing", last_sync=1) is None

    async def test_remove_cascades_to_descendants_and_their_links(self):
        root = await self.registry.add_mapping(_mapping("f1", 10))
        child = await self.registry.add_mapping(_mapping("f2", 20, parent=root.id))
        grandchild = await self.registry.add_mapping(_mapping("f3", 30, parent=child.id))
        other = await self.registry.add_mapping(_mapping("f4", 40))

        await self.registry.add_link(_link("b1", 1, root.id))
        await self.registry.add_link(_link("b2", 2, child.id))
        await self.registry.add_link(_link("b3", 3, grandchild.id))
        await self.registry.add_link(_link("b4", 4, other.id))

        removed = await self.registry.remove_mapping(root.id)

        assert removed == {root.id, child.id, grandchild.id}
        assert [m.id for m in await self.registry.get_mappings()] == [other.id]
        assert [link.local_id for link in await self.registry.get_links()] == ["b4"]

    async def test_remove_unknown_mapping_is_noop(self):
        await self.registry.add_mapping(_mapping("f1", 10))
        assert await self.registry.remove_mapping("missing") == set()
        assert len(await self.registry.get_mappings()) == 1

    async def test_child_mappings(self):
        root = await self.registry.add_mapping(_mapping("f1", 10))
        child = await self.registry.add_mapping(_mapping("f2", 20, parent=root.id))
        assert await self.registry.get_child_mappings(root.id) == [child]


class TestLinks(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.registry = LinkRegistry(SyncStateStore(MemoryKeyValueStore()))
        self.mapping = await self.registry.add_mapping(_mapping("f1", 10))

    async def test_add_and_find(self):
        link = _link("b1", 1, self.mapping.id, url="https://x.com/a")
        assert await self.registry.add_link(link)

        assert await self.registry.find_link(local_id="b1") == link
        assert await self.registry.find_link(remote_id=1) == link
        assert await self.registry.find_link() is None
        assert await self.registry.find_link_by_url("https://X.com/a/?utm_source=z") == link
        assert await self.registry.get_links_for_mapping(self.mapping.id) == [link]
        assert await self.registry.count_links() == 1

    async def test_local_id_unique_across_mappings(self):
        other = await self.registry.add_mapping(_mapping("f2", 20))
        assert await self.registry.add_link(_link("b1", 1, self.mapping.id))
        assert not await self.registry.add_link(_link("b1", 2, other.id))
        assert await self.registry.count_links() == 1

    async def test_remote_id_unique_across_mappings(self):
        other = await self.registry.add_mapping(_mapping("f2", 20))
        assert await self.registry.add_link(_link("b1", 1, self.mapping.id))
        assert not await self.registry.add_link(_link("b2", 1, other.id))
        assert await self.registry.count_links() == 1

    async def test_update_link(self):
        link = _link("b1", 1, self.mapping.id)
        await self.registry.add_link(link)
        updated = await self.registry.update_link(link.id, title="New", content_hash="abc")
        assert updated.title == "New"
        assert (await self.registry.find_link(local_id="b1")).content_hash == "abc"
        assert await self.registry.update_link("missing", title="x") is None

    async def test_update_link_cannot_steal_ids(self):
        first = _link("b1", 1, self.mapping.id)
        await self.registry.add_link(first)
        await self.registry.add_link(_link("b2", 2, self.mapping.id))
        with self.assertRaises(DuplicateLinkError):
            await self.registry.update_link(first.id, remote_id=2)
        assert (await self.registry.find_link(local_id="b1")).remote_id == 1

    async def test_remove_and_clear(self):
        link = _link("b1", 1, self.mapping.id)
        await self.registry.add_link(link)
        await self.registry.add_link(_link("b2", 2, self.mapping.id))

        assert await self.registry.remove_link(link.id)
        assert not await self.registry.remove_link(link.id)
        assert await self.registry.count_links() == 1

        await self.registry.clear_links()
        assert await self.registry.get_links() == []

    async def test_concurrent_adds_are_not_lost(self):
        links = [_link(f"b{i}", i, self.mapping.id) for i in range(50)]
        results = await asyncio.gather(*(self.registry.add_link(link) for link in links))
        assert all(results)
        assert await self.registry.count_links() == 50

    async def test_concurrent_duplicate_adds_keep_one(self):
        results = await asyncio.gather(
            *(self.registry.add_link(_link("same", 7, self.mapping.id)) for _ in range(10))
        )
        assert results.count(True) == 1
        assert await self.registry.count_links() == 1


if __name__ == "__main__":
    unittest.main()
