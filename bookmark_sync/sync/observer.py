"""Translation of local bookmark events into queued sync operations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bookmark_sync.core.hashing import content_hash
from bookmark_sync.core.url_utils import is_valid_sync_url
from bookmark_sync.domain.models import (
    OperationSource,
    OperationType,
    SyncOperation,
    SyncOperationData,
)

if TYPE_CHECKING:
    from bookmark_sync.adapters.local.protocols import (
        BookmarkChanged,
        BookmarkCreated,
        BookmarkMoved,
        BookmarkNode,
        BookmarkRemoved,
        LocalBookmarkStore,
    )
    from bookmark_sync.domain.models import FolderMapping
    from bookmark_sync.sync.batching import OperationBatcher
    from bookmark_sync.sync.registry import LinkRegistry
    from bookmark_sync.sync.session import SyncSession
    from bookmark_sync.sync.state import CredentialStore, SettingsStore

logger = logging.getLogger(__name__)


def _iter_bookmarks(node: BookmarkNode) -> list[BookmarkNode]:
    if not node.is_folder:
        return [node]
    found: list[BookmarkNode] = []
    for child in node.children or []:
        found.extend(_iter_bookmarks(child))
    return found


class LocalChangeObserver:
    """Listener for the local store's created/removed/changed/moved events.

    Events are ignored while the reentrancy guard is held, while sync is
    disabled or unauthenticated, and for URLs that may not be synchronized.
    """

    def __init__(
        self,
        store: LocalBookmarkStore,
        registry: LinkRegistry,
        credentials: CredentialStore,
        settings: SettingsStore,
        session: SyncSession,
        batcher: OperationBatcher,
    ) -> None:
        self._store = store
        self._registry = registry
        self._credentials = credentials
        self._settings = settings
        self._session = session
        self._batcher = batcher

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self) -> None:
        if self._session.listeners_registered:
            return
        self._store.add_listener(self)
        self._session.listeners_registered = True
        logger.info("bookmark_listeners_registered")

    async def unregister(self) -> None:
        if not self._session.listeners_registered:
            return
        self._store.remove_listener(self)
        self._session.listeners_registered = False
        await self._batcher.flush()
        logger.info("bookmark_listeners_unregistered")

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    async def _is_suppressed(self) -> bool:
        if self._session.guard.active:
            return True
        if not await self._credentials.is_authenticated():
            return True
        return not await self._settings.is_enabled()

    def _emit(
        self, operation_type: OperationType, data: SyncOperationData, reason: str
    ) -> None:
        operation = SyncOperation(type=operation_type, source=OperationSource.LOCAL, data=data)
        logger.debug(
            "local_change_detected",
            extra={
                "operation_type": operation_type.value,
                "local_id": data.local_id,
                "reason": reason,
            },
        )
        self._batcher.add(operation)

    async def _emit_create(self, node: BookmarkNode, mapping: FolderMapping, reason: str) -> None:
        if await self._registry.find_link(local_id=node.id):
            return
        if node.url and await self._registry.find_link_by_url(node.url):
            # the id may have been lost across a restart before the link was saved
            logger.debug("local_create_url_already_linked", extra={"local_id": node.id})
            return
        self._emit(
            OperationType.CREATE,
            SyncOperationData(
                local_id=node.id,
                url=node.url,
                title=node.title,
                collection_id=mapping.remote_collection_id,
                parent_folder_id=mapping.local_folder_id,
                mapping_id=mapping.id,
            ),
            reason,
        )

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def on_created(self, event: BookmarkCreated) -> None:
        node = event.node
        if node.is_folder or not is_valid_sync_url(node.url):
            return
        if await self._is_suppressed():
            return

        mapping = await self._registry.find_mapping_by_local_folder(node.parent_id)
        if mapping is None:
            return
        await self._emit_create(node, mapping, "created")

    async def on_removed(self, event: BookmarkRemoved) -> None:
        bookmarks = _iter_bookmarks(event.node)
        if not bookmarks:
            return
        if await self._is_suppressed():
            return

        for bookmark in bookmarks:
            if not is_valid_sync_url(bookmark.url):
                continue
            link = await self._registry.find_link(local_id=bookmark.id)
            if link is None:
                continue
            self._emit(
                OperationType.DELETE,
                SyncOperationData(
                    local_id=bookmark.id, remote_id=link.remote_id, mapping_id=link.mapping_id
                ),
                "removed",
            )

    async def on_changed(self, event: BookmarkChanged) -> None:
        if await self._is_suppressed():
            return
        link = await self._registry.find_link(local_id=event.id)
        if link is None:
            return

        title = event.title if event.title is not None else link.title
        url = event.url if event.url is not None else link.url
        if not is_valid_sync_url(url):
            return
        if content_hash(url, title) == link.content_hash:
            return

        self._emit(
            OperationType.UPDATE,
            SyncOperationData(
                local_id=event.id,
                remote_id=link.remote_id,
                url=url,
                title=title,
                mapping_id=link.mapping_id,
            ),
            "changed",
        )

    async def on_moved(self, event: BookmarkMoved) -> None:
        if await self._is_suppressed():
            return
        node = await self._store.get(event.id)
        if node is None or node.is_folder or not is_valid_sync_url(node.url):
            return

        old_mapping = await self._registry.find_mapping_by_local_folder(event.old_parent_id)
        new_mapping = await self._registry.find_mapping_by_local_folder(event.parent_id)
        link = await self._registry.find_link(local_id=event.id)

        if old_mapping and new_mapping:
            if old_mapping.id == new_mapping.id:
                return
            if link is None:
                await self._emit_create(node, new_mapping, "moved_between_unlinked")
                return
            self._emit(
                OperationType.MOVE,
                SyncOperationData(
                    local_id=event.id,
                    remote_id=link.remote_id,
                    old_collection_id=old_mapping.remote_collection_id,
                    new_collection_id=new_mapping.remote_collection_id,
                    mapping_id=new_mapping.id,
                ),
                "moved_between",
            )
        elif old_mapping:
            if link is None:
                return
            self._emit(
                OperationType.DELETE,
                SyncOperationData(
                    local_id=event.id, remote_id=link.remote_id, mapping_id=link.mapping_id
                ),
                "moved_out",
            )
        elif new_mapping:
            await self._emit_create(node, new_mapping, "moved_in")
