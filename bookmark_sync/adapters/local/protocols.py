"""Interface of the hierarchical local bookmark store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


class LocalBookmarkNotFoundError(LookupError):
    """Raised when a bookmark or folder id does not exist in the local store."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Bookmark not found: {node_id}")
        self.node_id = node_id


@dataclass
class BookmarkNode:
    """A folder (no url) or a bookmark in the local tree."""

    id: str
    title: str
    url: str | None = None
    parent_id: str | None = None
    index: int = 0
    children: list[BookmarkNode] | None = None

    @property
    def is_folder(self) -> bool:
        return self.url is None


@dataclass(frozen=True)
class BookmarkCreated:
    id: str
    node: BookmarkNode


@dataclass(frozen=True)
class BookmarkRemoved:
    id: str
    parent_id: str | None
    index: int
    node: BookmarkNode


@dataclass(frozen=True)
class BookmarkChanged:
    """Only the fields that changed are populated."""

    id: str
    title: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class BookmarkMoved:
    id: str
    parent_id: str
    index: int
    old_parent_id: str
    old_index: int


class BookmarkEventListener(Protocol):
    async def on_created(self, event: BookmarkCreated) -> None: ...

    async def on_removed(self, event: BookmarkRemoved) -> None: ...

    async def on_changed(self, event: BookmarkChanged) -> None: ...

    async def on_moved(self, event: BookmarkMoved) -> None: ...


class LocalBookmarkStore(Protocol):
    async def get(self, node_id: str) -> BookmarkNode | None: ...

    async def get_children(self, folder_id: str) -> list[BookmarkNode]: ...

    async def get_tree(self) -> BookmarkNode: ...

    async def create(
        self,
        parent_id: str,
        title: str,
        url: str | None = None,
        index: int | None = None,
    ) -> BookmarkNode: ...

    async def update(
        self, node_id: str, *, title: str | None = None, url: str | None = None
    ) -> BookmarkNode: ...

    async def remove(self, node_id: str) -> None: ...

    async def move(
        self, node_id: str, parent_id: str, index: int | None = None
    ) -> BookmarkNode: ...

    def add_listener(self, listener: BookmarkEventListener) -> None: ...

    def remove_listener(self, listener: BookmarkEventListener) -> None: ...


__all__ = [
    "BookmarkChanged",
    "BookmarkCreated",
    "BookmarkEventListener",
    "BookmarkMoved",
    "BookmarkNode",
    "BookmarkRemoved",
    "LocalBookmarkNotFoundError",
    "LocalBookmarkStore",
]
