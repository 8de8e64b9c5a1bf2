"""Execution of queued operations, dispatched on (source, type).

Every handler consults the registry first so that replaying an operation
after partial completion is a no-op rather than a duplicate or an error.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bookmark_sync.adapters.local.protocols import LocalBookmarkNotFoundError
from bookmark_sync.adapters.raindrop.client import RaindropNotFoundError
from bookmark_sync.core.hashing import content_hash
from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.domain.exceptions import InvalidOperationError
from bookmark_sync.domain.models import BookmarkLink, OperationSource, OperationType
from bookmark_sync.sync.operation_queue import validate_operation

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from bookmark_sync.adapters.local.protocols import LocalBookmarkStore
    from bookmark_sync.domain.models import SyncOperation, SyncOperationData
    from bookmark_sync.sync.guard import ReentrancyGuard
    from bookmark_sync.sync.protocols import RemoteBookmarkService
    from bookmark_sync.sync.registry import LinkRegistry

logger = logging.getLogger(__name__)


class OperationDispatcher:
    def __init__(
        self,
        registry: LinkRegistry,
        remote: RemoteBookmarkService,
        local_store: LocalBookmarkStore,
        guard: ReentrancyGuard,
    ) -> None:
        self._registry = registry
        self._remote = remote
        self._local = local_store
        self._guard = guard
        self._handlers: dict[
            tuple[OperationSource, OperationType], Callable[[SyncOperationData], Awaitable[None]]
        ] = {
            (OperationSource.LOCAL, OperationType.CREATE): self._push_create,
            (OperationSource.LOCAL, OperationType.UPDATE): self._push_update,
            (OperationSource.LOCAL, OperationType.DELETE): self._push_delete,
            (OperationSource.LOCAL, OperationType.MOVE): self._push_move,
            (OperationSource.REMOTE, OperationType.CREATE): self._pull_create,
            (OperationSource.REMOTE, OperationType.UPDATE): self._pull_update,
            (OperationSource.REMOTE, OperationType.DELETE): self._pull_delete,
        }

    async def handle(self, operation: SyncOperation) -> None:
        """Run the handler for ``operation``.

        Raises:
            InvalidOperationError: Unsupported (source, type) or missing fields.
        """
        validate_operation(operation)
        handler = self._handlers.get((operation.source, operation.type))
        if handler is None:
            raise InvalidOperationError(
                f"No handler for {operation.source.value} {operation.type.value}"
            )
        logger.debug(
            "operation_dispatch",
            extra={
                "operation_id": operation.id,
                "operation_type": operation.type.value,
                "source": operation.source.value,
            },
        )
        await handler(operation.data)

    # ------------------------------------------------------------------
    # local -> remote
    # ------------------------------------------------------------------

    async def _push_create(self, data: SyncOperationData) -> None:
        if await self._registry.find_link(local_id=data.local_id):
            logger.debug("push_create_already_linked", extra={"local_id": data.local_id})
            return
        if await self._local.get(data.local_id) is None:
            logger.info("push_create_source_gone", extra={"local_id": data.local_id})
            return

        mapping_id = data.mapping_id
        if mapping_id is None:
            mapping = await self._registry.find_mapping_by_collection(data.collection_id)
            mapping_id = mapping.id if mapping else None
        if mapping_id is None:
            raise InvalidOperationError(
                "Target collection is not mapped", details={"local_id": data.local_id}
            )

        raindrop = await self._remote.create_raindrop(
            data.url, data.title, collection_id=data.collection_id
        )

        await self._registry.add_link(
            BookmarkLink(
                local_id=data.local_id,
                remote_id=raindrop.id,
                url=data.url,
                title=data.title or "",
                content_hash=content_hash(data.url, data.title),
                mapping_id=mapping_id,
            )
        )

    async def _push_update(self, data: SyncOperationData) -> None:
        link = await self._registry.find_link(remote_id=data.remote_id)
        if link is None:
            logger.debug("push_update_unlinked", extra={"remote_id": data.remote_id})
            return

        await self._remote.update_raindrop(data.remote_id, link=data.url, title=data.title)
        url = data.url if data.url is not None else link.url
        title = data.title if data.title is not None else link.title
        await self._registry.update_link(
            link.id,
            url=url,
            title=title,
            content_hash=content_hash(url, title),
            last_modified=now_ms(),
        )

    async def _push_delete(self, data: SyncOperationData) -> None:
        link = await self._registry.find_link(remote_id=data.remote_id)
        if link is None:
            logger.debug("push_delete_unlinked", extra={"remote_id": data.remote_id})
            return

        try:
            await self._remote.delete_raindrop(data.remote_id)
        except RaindropNotFoundError:
            logger.info("push_delete_already_gone", extra={"remote_id": data.remote_id})
        await self._registry.remove_link(link.id)

    async def _push_move(self, data: SyncOperationData) -> None:
        link = await self._registry.find_link(remote_id=data.remote_id)
        if link is None:
            logger.debug("push_move_unlinked", extra={"remote_id": data.remote_id})
            return

        await self._remote.update_raindrop(data.remote_id, collection_id=data.new_collection_id)
        mapping_id = data.mapping_id
        if mapping_id is None:
            mapping = await self._registry.find_mapping_by_collection(data.new_collection_id)
            mapping_id = mapping.id if mapping else None
        if mapping_id is not None:
            await self._registry.update_link(link.id, mapping_id=mapping_id, last_modified=now_ms())

    # ------------------------------------------------------------------
    # remote -> local
    # ------------------------------------------------------------------

    async def _pull_create(self, data: SyncOperationData) -> None:
        if await self._registry.find_link(remote_id=data.remote_id):
            logger.debug("pull_create_already_linked", extra={"remote_id": data.remote_id})
            return

        mapping = await self._registry.find_mapping_by_local_folder(data.parent_folder_id)
        if mapping is None:
            raise InvalidOperationError(
                "Target folder is not mapped",
                details={"parent_folder_id": data.parent_folder_id},
            )

        raindrop = await self._remote.get_raindrop(data.remote_id)
        with self._guard.hold("pull_create"):
            node = await self._local.create(
                data.parent_folder_id, raindrop.title, url=raindrop.link
            )
        await self._registry.add_link(
            BookmarkLink(
                local_id=node.id,
                remote_id=raindrop.id,
                url=raindrop.link,
                title=raindrop.title,
                content_hash=content_hash(raindrop.link, raindrop.title),
                mapping_id=mapping.id,
            )
        )

    async def _pull_update(self, data: SyncOperationData) -> None:
        link = await self._registry.find_link(remote_id=data.remote_id)
        if link is None:
            logger.debug("pull_update_unlinked", extra={"remote_id": data.remote_id})
            return

        raindrop = await self._remote.get_raindrop(data.remote_id)
        with self._guard.hold("pull_update"):
            await self._local.update(link.local_id, title=raindrop.title, url=raindrop.link)
        await self._registry.update_link(
            link.id,
            url=raindrop.link,
            title=raindrop.title,
            content_hash=content_hash(raindrop.link, raindrop.title),
            last_modified=now_ms(),
        )

    async def _pull_delete(self, data: SyncOperationData) -> None:
        link = await self._registry.find_link(local_id=data.local_id)
        if link is None:
            logger.debug("pull_delete_unlinked", extra={"local_id": data.local_id})
            return

        try:
            with self._guard.hold("pull_delete"):
                await self._local.remove(data.local_id)
        except LocalBookmarkNotFoundError:
            logger.info("pull_delete_already_gone", extra={"local_id": data.local_id})
        await self._registry.remove_link(link.id)
