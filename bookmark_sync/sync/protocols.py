"""Protocol definitions (ports) for the sync core.

The engine, queue handlers and propagator depend on these rather than on the
concrete Raindrop client, so tests can substitute in-memory doubles.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bookmark_sync.adapters.raindrop.models import (
        CreateRaindropRequest,
        Raindrop,
        RaindropCollection,
        RaindropUser,
    )


class RemoteBookmarkService(Protocol):
    async def get_root_collections(self) -> list[RaindropCollection]: ...

    async def get_child_collections(self) -> list[RaindropCollection]: ...

    async def get_all_collections(self) -> list[RaindropCollection]: ...

    async def get_collection(self, collection_id: int) -> RaindropCollection: ...

    async def create_collection(
        self, title: str, parent_id: int | None = None
    ) -> RaindropCollection: ...

    async def delete_collection(self, collection_id: int) -> None: ...

    async def get_all_raindrops(self, collection_id: int) -> list[Raindrop]: ...

    async def get_raindrop(self, raindrop_id: int) -> Raindrop: ...

    async def create_raindrop(
        self, link: str, title: str | None = None, collection_id: int | None = None
    ) -> Raindrop: ...

    async def create_raindrops(self, items: Sequence[CreateRaindropRequest]) -> list[Raindrop]: ...

    async def update_raindrop(
        self,
        raindrop_id: int,
        *,
        link: str | None = None,
        title: str | None = None,
        collection_id: int | None = None,
    ) -> Raindrop: ...

    async def delete_raindrop(self, raindrop_id: int) -> None: ...

    async def get_user(self) -> RaindropUser: ...
