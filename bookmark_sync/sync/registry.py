"""Link & mapping registry: the single source of truth for what is linked to what.

Every mutation runs through the state store's serialization point; lookups
read the persisted records directly.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from bookmark_sync.core.url_utils import normalize_url
from bookmark_sync.domain.exceptions import DuplicateLinkError, DuplicateMappingError
from bookmark_sync.domain.models import BookmarkLink, FolderMapping
from bookmark_sync.sync.constants import STORAGE_KEY_LINKS, STORAGE_KEY_MAPPINGS

if TYPE_CHECKING:
    from bookmark_sync.infrastructure.persistence.protocols import KeyValueStore
    from bookmark_sync.sync.state import SyncStateStore

logger = logging.getLogger(__name__)


def _load_mappings(raw: Any) -> list[FolderMapping]:
    return [FolderMapping.model_validate(item) for item in raw or []]


def _load_links(raw: Any) -> list[BookmarkLink]:
    return [BookmarkLink.model_validate(item) for item in raw or []]


def _dump(models: list[Any]) -> list[dict[str, Any]]:
    return [model.model_dump(mode="json", by_alias=True) for model in models]


def _descendant_closure(mappings: list[FolderMapping], root_id: str) -> set[str]:
    """Ids of ``root_id`` and every mapping reachable through ``parent_mapping_id``."""
    closure = {root_id}
    changed = True
    while changed:
        changed = False
        for mapping in mappings:
            if mapping.parent_mapping_id in closure and mapping.id not in closure:
                closure.add(mapping.id)
                changed = True
    return closure


class LinkRegistry:
    def __init__(self, state: SyncStateStore) -> None:
        self._state = state

    # ------------------------------------------------------------------
    # Mappings: queries
    # ------------------------------------------------------------------

    async def get_mappings(self) -> list[FolderMapping]:
        return _load_mappings(await self._state.read(STORAGE_KEY_MAPPINGS, []))

    async def get_mapping(self, mapping_id: str) -> FolderMapping | None:
        return next((m for m in await self.get_mappings() if m.id == mapping_id), None)

    async def find_mapping_by_local_folder(self, folder_id: str | None) -> FolderMapping | None:
        if folder_id is None:
            return None
        return next((m for m in await self.get_mappings() if m.local_folder_id == folder_id), None)

    async def find_mapping_by_collection(self, collection_id: int) -> FolderMapping | None:
        return next(
            (m for m in await self.get_mappings() if m.remote_collection_id == collection_id), None
        )

    async def get_child_mappings(self, mapping_id: str) -> list[FolderMapping]:
        return [m for m in await self.get_mappings() if m.parent_mapping_id == mapping_id]

    # ------------------------------------------------------------------
    # Mappings: mutations
    # ------------------------------------------------------------------

    async def add_mapping(self, mapping: FolderMapping) -> FolderMapping:
        """Persist ``mapping``.

        Raises:
            DuplicateMappingError: The local folder or the remote collection is
                already mapped.
        """

        def _add(raw: Any) -> tuple[Any, FolderMapping]:
            mappings = _load_mappings(raw)
            for existing in mappings:
                if (
                    existing.local_folder_id == mapping.local_folder_id
                    or existing.remote_collection_id == mapping.remote_collection_id
                ):
                    raise DuplicateMappingError(
                        "Mapping already exists for this folder or collection",
                        details={
                            "local_folder_id": mapping.local_folder_id,
                            "remote_collection_id": mapping.remote_collection_id,
                            "existing_mapping_id": existing.id,
                        },
                    )
            mappings.append(mapping)
            return _dump(mappings), mapping

        added = await self._state.mutate(
            STORAGE_KEY_MAPPINGS, _add, default=[], operation_name="add_mapping"
        )
        logger.info(
            "folder_mapping_added",
            extra={
                "mapping_id": added.id,
                "local_folder_id": added.local_folder_id,
                "remote_collection_id": added.remote_collection_id,
                "depth": added.depth,
            },
        )
        return added

    async def update_mapping(self, mapping_id: str, **changes: Any) -> FolderMapping | None:
        def _update(raw: Any) -> tuple[Any, FolderMapping | None]:
            mappings = _load_mappings(raw)
            for position, existing in enumerate(mappings):
                if existing.id == mapping_id:
                    mappings[position] = existing.model_copy(update=changes)
                    return _dump(mappings), mappings[position]
            return _dump(mappings), None

        return await self._state.mutate(
            STORAGE_KEY_MAPPINGS, _update, default=[], operation_name="update_mapping"
        )

    async def remove_mapping(self, mapping_id: str) -> set[str]:
        """Remove a mapping, its descendant mappings and every link they own.

        Returns the ids of all removed mappings (empty if ``mapping_id`` is unknown).
        """

        async def _remove(kv: KeyValueStore) -> tuple[set[str], int]:
            mappings = _load_mappings(await kv.get(STORAGE_KEY_MAPPINGS, []))
            if not any(m.id == mapping_id for m in mappings):
                return set(), 0
            closure = _descendant_closure(mappings, mapping_id)

            links = _load_links(await kv.get(STORAGE_KEY_LINKS, []))
            kept_links = [link for link in links if link.mapping_id not in closure]

            await kv.set(STORAGE_KEY_MAPPINGS, _dump([m for m in mappings if m.id not in closure]))
            await kv.set(STORAGE_KEY_LINKS, _dump(kept_links))
            return closure, len(links) - len(kept_links)

        removed, links_removed = await self._state.transaction(
            _remove, operation_name="remove_mapping"
        )
        if removed:
            logger.info(
                "folder_mapping_removed",
                extra={
                    "mapping_id": mapping_id,
                    "cascaded_mappings": len(removed) - 1,
                    "links_removed": links_removed,
                },
            )
        return removed

    # ------------------------------------------------------------------
    # Links: queries
    # ------------------------------------------------------------------

    async def get_links(self) -> list[BookmarkLink]:
        return _load_links(await self._state.read(STORAGE_KEY_LINKS, []))

    async def count_links(self) -> int:
        return len(await self._state.read(STORAGE_KEY_LINKS, []) or [])

    async def get_links_for_mapping(self, mapping_id: str) -> list[BookmarkLink]:
        return [link for link in await self.get_links() if link.mapping_id == mapping_id]

    async def find_link(
        self, *, local_id: str | None = None, remote_id: int | None = None
    ) -> BookmarkLink | None:
        """Find a link by local bookmark id and/or remote item id (either matches)."""
        if local_id is None and remote_id is None:
            return None
        for link in await self.get_links():
            if local_id is not None and link.local_id == local_id:
                return link
            if remote_id is not None and link.remote_id == remote_id:
                return link
        return None

    async def find_link_by_url(self, url: str) -> BookmarkLink | None:
        target = normalize_url(url)
        return next(
            (link for link in await self.get_links() if normalize_url(link.url) == target), None
        )

    # ------------------------------------------------------------------
    # Links: mutations
    # ------------------------------------------------------------------

    async def add_link(self, link: BookmarkLink) -> bool:
        """Persist ``link`` unless its local or remote id is already linked anywhere.

        Returns True when the link was added.
        """

        def _add(raw: Any) -> tuple[Any, bool]:
            links = _load_links(raw)
            if any(
                existing.local_id == link.local_id or existing.remote_id == link.remote_id
                for existing in links
            ):
                return _dump(links), False
            links.append(link)
            return _dump(links), True

        added = await self._state.mutate(
            STORAGE_KEY_LINKS, _add, default=[], operation_name="add_link"
        )
        if not added:
            logger.debug(
                "bookmark_link_exists",
                extra={"local_id": link.local_id, "remote_id": link.remote_id},
            )
        return added

    async def update_link(self, link_id: str, **changes: Any) -> BookmarkLink | None:
        """Merge ``changes`` into a link.

        Raises:
            DuplicateLinkError: The new local or remote id is owned by another link.
        """

        def _update(raw: Any) -> tuple[Any, BookmarkLink | None]:
            links = _load_links(raw)
            target = next((pos for pos, link in enumerate(links) if link.id == link_id), None)
            if target is None:
                return _dump(links), None
            updated = links[target].model_copy(update=changes)
            for position, other in enumerate(links):
                if position != target and (
                    other.local_id == updated.local_id or other.remote_id == updated.remote_id
                ):
                    raise DuplicateLinkError(
                        "Another link already uses this bookmark or item",
                        details={"link_id": link_id, "conflicting_link_id": other.id},
                    )
            links[target] = updated
            return _dump(links), updated

        return await self._state.mutate(
            STORAGE_KEY_LINKS, _update, default=[], operation_name="update_link"
        )

    async def remove_link(self, link_id: str) -> bool:
        def _remove(raw: Any) -> tuple[Any, bool]:
            links = _load_links(raw)
            kept = [link for link in links if link.id != link_id]
            return _dump(kept), len(kept) != len(links)

        return await self._state.mutate(
            STORAGE_KEY_LINKS, _remove, default=[], operation_name="remove_link"
        )

    async def clear_links(self) -> None:
        await self._state.mutate(
            STORAGE_KEY_LINKS, lambda _: ([], None), default=[], operation_name="clear_links"
        )
        logger.info("bookmark_links_cleared")
