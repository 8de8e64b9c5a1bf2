"""Mirror a local folder hierarchy onto nested remote collections."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bookmark_sync.domain.exceptions import DuplicateMappingError
from bookmark_sync.domain.models import FolderMapping
from bookmark_sync.sync.constants import DEFAULT_MAX_NESTING_DEPTH

if TYPE_CHECKING:
    from bookmark_sync.adapters.local.protocols import LocalBookmarkStore
    from bookmark_sync.adapters.raindrop.models import RaindropCollection
    from bookmark_sync.sync.protocols import RemoteBookmarkService
    from bookmark_sync.sync.registry import LinkRegistry

logger = logging.getLogger(__name__)


class CollectionCatalog:
    """Collection list fetched once per propagation and extended as collections are created."""

    def __init__(self, collections: list[RaindropCollection]) -> None:
        self._collections = list(collections)

    @classmethod
    async def load(cls, remote: RemoteBookmarkService) -> CollectionCatalog:
        return cls(await remote.get_all_collections())

    def __len__(self) -> int:
        return len(self._collections)

    def find(self, title: str, parent_id: int | None) -> RaindropCollection | None:
        """Case-insensitive title match among direct children of ``parent_id``."""
        wanted = title.casefold()
        for collection in self._collections:
            if collection.title.casefold() == wanted and collection.parent_id == parent_id:
                return collection
        return None

    def add(self, collection: RaindropCollection) -> None:
        self._collections.append(collection)


class NestedFolderPropagator:
    def __init__(
        self,
        store: LocalBookmarkStore,
        remote: RemoteBookmarkService,
        registry: LinkRegistry,
        *,
        max_depth: int = DEFAULT_MAX_NESTING_DEPTH,
    ) -> None:
        self._store = store
        self._remote = remote
        self._registry = registry
        self.max_depth = max_depth

    async def propagate(
        self,
        local_folder_id: str,
        remote_parent_id: int | None,
        *,
        parent_mapping_id: str | None = None,
        depth: int = 0,
        catalog: CollectionCatalog | None = None,
    ) -> list[FolderMapping]:
        """Create mappings for every sub-folder of ``local_folder_id``, recursively.

        Each child folder is paired with a same-named collection under
        ``remote_parent_id`` (created if missing). Recursion stops quietly at
        ``max_depth``. Returns the mappings created, parents before children.
        """
        if depth >= self.max_depth:
            logger.debug(
                "nested_sync_depth_limit",
                extra={"local_folder_id": local_folder_id, "depth": depth},
            )
            return []

        if catalog is None:
            catalog = await CollectionCatalog.load(self._remote)

        created: list[FolderMapping] = []
        for child in await self._store.get_children(local_folder_id):
            if not child.is_folder:
                continue

            collection = catalog.find(child.title, remote_parent_id)
            if collection is None:
                collection = await self._remote.create_collection(child.title, remote_parent_id)
                catalog.add(collection)

            try:
                mapping = await self._registry.add_mapping(
                    FolderMapping(
                        local_folder_id=child.id,
                        remote_collection_id=collection.id,
                        folder_name=child.title,
                        remote_collection_name=collection.title,
                        parent_mapping_id=parent_mapping_id,
                        depth=depth + 1,
                        sync_children=True,
                    )
                )
            except DuplicateMappingError as exc:
                logger.warning(
                    "nested_mapping_skipped",
                    extra={"local_folder_id": child.id, "error": exc.message, **exc.details},
                )
                continue

            created.append(mapping)
            created.extend(
                await self.propagate(
                    child.id,
                    collection.id,
                    parent_mapping_id=mapping.id,
                    depth=depth + 1,
                    catalog=catalog,
                )
            )

        return created
