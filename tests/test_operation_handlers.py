"""Tests for the per-(source, type) operation handlers."""

from __future__ import annotations

import unittest

from fakes import FakeRaindrop, make_container

from bookmark_sync.adapters.local.memory_store import ROOT_ID, InMemoryBookmarkStore
from bookmark_sync.core.hashing import content_hash
from bookmark_sync.domain.exceptions import InvalidOperationError
from bookmark_sync.domain.models import (
    BookmarkLink,
    FolderMapping,
    OperationSource,
    OperationType,
    SyncOperation,
    SyncOperationData,
)


def _op(source: OperationSource, kind: OperationType, **data) -> SyncOperation:
    return SyncOperation(type=kind, source=source, data=SyncOperationData(**data))


class HandlerTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = InMemoryBookmarkStore()
        self.remote = FakeRaindrop()
        self.container = await make_container(self.store, self.remote)
        self.registry = self.container.registry
        self.dispatcher = self.container.dispatcher

        self.folder = await self.store.create(ROOT_ID, "Reading")
        self.collection = self.remote.add_collection("Reading")
        self.mapping = await self.registry.add_mapping(
            FolderMapping(
                local_folder_id=self.folder.id,
                remote_collection_id=self.collection.id,
                folder_name="Reading",
            )
        )

    async def _linked_pair(self, url: str = "https://x.com/a", title: str = "A"):
        node = await self.store.create(self.folder.id, title, url=url)
        item = self.remote.add_item(self.collection.id, url, title)
        link = BookmarkLink(
            local_id=node.id,
            remote_id=item.id,
            url=url,
            title=title,
            content_hash=content_hash(url, title),
            mapping_id=self.mapping.id,
        )
        await self.registry.add_link(link)
        return node, item, link


class TestPushHandlers(HandlerTestCase):
    async def test_create_links_new_remote_item(self):
        node = await self.store.create(self.folder.id, "A", url="https://x.com/a")
        operation = _op(
            OperationSource.LOCAL,
            OperationType.CREATE,
            local_id=node.id,
            url=node.url,
            title=node.title,
            collection_id=self.collection.id,
            mapping_id=self.mapping.id,
        )

        await self.dispatcher.handle(operation)
        await self.dispatcher.handle(operation)

        assert self.remote.count("create_raindrop") == 1
        link = await self.registry.find_link(local_id=node.id)
        assert link is not None
        assert self.remote.items[link.remote_id].collection_id == self.collection.id
        assert link.content_hash == content_hash("https://x.com/a", "A")

    async def test_create_resolves_mapping_from_collection(self):
        node = await self.store.create(self.folder.id, "A", url="https://x.com/a")
        await self.dispatcher.handle(
            _op(
                OperationSource.LOCAL,
                OperationType.CREATE,
                local_id=node.id,
                url=node.url,
                title=node.title,
                collection_id=self.collection.id,
            )
        )
        assert (await self.registry.find_link(local_id=node.id)).mapping_id == self.mapping.id

    async def test_create_for_removed_bookmark_is_noop(self):
        await self.dispatcher.handle(
            _op(
                OperationSource.LOCAL,
                OperationType.CREATE,
                local_id="gone",
                url="https://x.com/a",
                title="A",
                collection_id=self.collection.id,
            )
        )
        assert self.remote.count("create_raindrop") == 0

    async def test_create_into_unmapped_collection_is_invalid(self):
        node = await self.store.create(self.folder.id, "A", url="https://x.com/a")
        with self.assertRaises(InvalidOperationError):
            await self.dispatcher.handle(
                _op(
                    OperationSource.LOCAL,
                    OperationType.CREATE,
                    local_id=node.id,
                    url=node.url,
                    title=node.title,
                    collection_id=999,
                )
            )

    async def test_update_changes_remote_and_link(self):
        node, item, link = await self._linked_pair()
        await self.dispatcher.handle(
            _op(
                OperationSource.LOCAL,
                OperationType.UPDATE,
                local_id=node.id,
                remote_id=item.id,
                title="Renamed",
            )
        )

        assert self.remote.items[item.id].title == "Renamed"
        updated = await self.registry.find_link(remote_id=item.id)
        assert updated.title == "Renamed"
        assert updated.url == "https://x.com/a"
        assert updated.content_hash == content_hash("https://x.com/a", "Renamed")

    async def test_update_without_link_is_noop(self):
        await self.dispatcher.handle(
            _op(OperationSource.LOCAL, OperationType.UPDATE, local_id="b", remote_id=5)
        )
        assert self.remote.count("update_raindrop") == 0

    async def test_delete_removes_remote_and_link(self):
        node, item, _ = await self._linked_pair()
        await self.dispatcher.handle(
            _op(OperationSource.LOCAL, OperationType.DELETE, local_id=node.id, remote_id=item.id)
        )
        assert item.id not in self.remote.items
        assert await self.registry.find_link(remote_id=item.id) is None

    async def test_delete_tolerates_remote_already_gone(self):
        node, item, _ = await self._linked_pair()
        del self.remote.items[item.id]
        await self.dispatcher.handle(
            _op(OperationSource.LOCAL, OperationType.DELETE, local_id=node.id, remote_id=item.id)
        )
        assert await self.registry.find_link(remote_id=item.id) is None

    async def test_move_updates_collection_and_mapping(self):
        node, item, _ = await self._linked_pair()
        other_folder = await self.store.create(ROOT_ID, "Later")
        other_collection = self.remote.add_collection("Later")
        other = await self.registry.add_mapping(
            FolderMapping(
                local_folder_id=other_folder.id, remote_collection_id=other_collection.id
            )
        )

        await self.dispatcher.handle(
            _op(
                OperationSource.LOCAL,
                OperationType.MOVE,
                local_id=node.id,
                remote_id=item.id,
                old_collection_id=self.collection.id,
                new_collection_id=other_collection.id,
                mapping_id=other.id,
            )
        )

        assert self.remote.items[item.id].collection_id == other_collection.id
        assert (await self.registry.find_link(local_id=node.id)).mapping_id == other.id


class TestPullHandlers(HandlerTestCase):
    async def test_create_makes_local_bookmark(self):
        item = self.remote.add_item(self.collection.id, "https://x.com/new", "New")
        operation = _op(
            OperationSource.REMOTE,
            OperationType.CREATE,
            remote_id=item.id,
            parent_folder_id=self.folder.id,
        )

        await self.dispatcher.handle(operation)
        await self.dispatcher.handle(operation)

        children = await self.store.get_children(self.folder.id)
        assert [(c.title, c.url) for c in children] == [("New", "https://x.com/new")]
        link = await self.registry.find_link(remote_id=item.id)
        assert link.local_id == children[0].id

    async def test_create_into_unmapped_folder_is_invalid(self):
        item = self.remote.add_item(self.collection.id, "https://x.com/new", "New")
        with self.assertRaises(InvalidOperationError):
            await self.dispatcher.handle(
                _op(
                    OperationSource.REMOTE,
                    OperationType.CREATE,
                    remote_id=item.id,
                    parent_folder_id="nowhere",
                )
            )

    async def test_update_applies_remote_fields_locally(self):
        node, item, _ = await self._linked_pair()
        self.remote.items[item.id] = item.model_copy(update={"title": "Remote title"})

        await self.dispatcher.handle(
            _op(OperationSource.REMOTE, OperationType.UPDATE, local_id=node.id, remote_id=item.id)
        )

        assert (await self.store.get(node.id)).title == "Remote title"
        assert (await self.registry.find_link(local_id=node.id)).title == "Remote title"

    async def test_delete_removes_local_bookmark_and_link(self):
        node, item, _ = await self._linked_pair()
        await self.dispatcher.handle(
            _op(OperationSource.REMOTE, OperationType.DELETE, local_id=node.id, remote_id=item.id)
        )
        assert await self.store.get(node.id) is None
        assert await self.registry.find_link(local_id=node.id) is None

    async def test_delete_tolerates_local_already_gone(self):
        node, item, _ = await self._linked_pair()
        await self.store.remove(node.id)
        await self.dispatcher.handle(
            _op(OperationSource.REMOTE, OperationType.DELETE, local_id=node.id, remote_id=item.id)
        )
        assert await self.registry.find_link(local_id=node.id) is None

    async def test_remote_move_is_unsupported(self):
        with self.assertRaises(InvalidOperationError):
            await self.dispatcher.handle(
                _op(OperationSource.REMOTE, OperationType.MOVE, remote_id=1, local_id="b")
            )


if __name__ == "__main__":
    unittest.main()
