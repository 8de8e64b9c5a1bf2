"""In-process implementation of the local bookmark store."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bookmark_sync.adapters.local.protocols import (
    BookmarkChanged,
    BookmarkCreated,
    BookmarkMoved,
    BookmarkNode,
    BookmarkRemoved,
    LocalBookmarkNotFoundError,
)

if TYPE_CHECKING:
    from bookmark_sync.adapters.local.protocols import BookmarkEventListener

logger = logging.getLogger(__name__)

ROOT_ID = "root"


@dataclass
class _Entry:
    id: str
    title: str
    url: str | None
    parent_id: str | None
    children: list[str] = field(default_factory=list)


class InMemoryBookmarkStore:
    """Bookmark tree held in memory, emitting change events to listeners.

    Listeners are awaited in registration order after each mutation. A failing
    listener is logged and does not affect the mutation or other listeners.
    """

    def __init__(self, root_title: str = "") -> None:
        self._entries: dict[str, _Entry] = {
            ROOT_ID: _Entry(id=ROOT_ID, title=root_title, url=None, parent_id=None)
        }
        self._listeners: list[BookmarkEventListener] = []
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InMemoryBookmarkStore:
        """Build a store from a nested ``{"id", "title", "url", "children"}`` tree."""
        store = cls(root_title=str(data.get("title", "")))
        max_numeric = 0

        def _load(node: dict[str, Any], parent_id: str) -> None:
            nonlocal max_numeric
            node_id = str(node["id"])
            if node_id.isdigit():
                max_numeric = max(max_numeric, int(node_id))
            store._entries[node_id] = _Entry(
                id=node_id,
                title=str(node.get("title", "")),
                url=node.get("url"),
                parent_id=parent_id,
            )
            store._entries[parent_id].children.append(node_id)
            for child in node.get("children") or []:
                _load(child, node_id)

        for child in data.get("children") or []:
            _load(child, ROOT_ID)
        store._ids = itertools.count(max_numeric + 1)
        return store

    def to_dict(self) -> dict[str, Any]:
        def _dump(node_id: str) -> dict[str, Any]:
            entry = self._entries[node_id]
            payload: dict[str, Any] = {"id": entry.id, "title": entry.title}
            if entry.url is not None:
                payload["url"] = entry.url
            else:
                payload["children"] = [_dump(child) for child in entry.children]
            return payload

        return _dump(ROOT_ID)

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def add_listener(self, listener: BookmarkEventListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: BookmarkEventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, node_id: str) -> BookmarkNode | None:
        entry = self._entries.get(node_id)
        if entry is None:
            return None
        return self._node(entry)

    async def get_children(self, folder_id: str) -> list[BookmarkNode]:
        entry = self._require(folder_id)
        return [self._node(self._entries[child]) for child in entry.children]

    async def get_tree(self) -> BookmarkNode:
        return self._subtree(ROOT_ID)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        parent_id: str,
        title: str,
        url: str | None = None,
        index: int | None = None,
    ) -> BookmarkNode:
        parent = self._require(parent_id)
        if parent.url is not None:
            msg = f"Parent is not a folder: {parent_id}"
            raise ValueError(msg)

        node_id = self._next_id()
        self._entries[node_id] = _Entry(id=node_id, title=title, url=url, parent_id=parent_id)
        self._insert(parent, node_id, index)

        node = self._node(self._entries[node_id])
        await self._emit("on_created", BookmarkCreated(id=node_id, node=node))
        return node

    async def update(
        self, node_id: str, *, title: str | None = None, url: str | None = None
    ) -> BookmarkNode:
        entry = self._require(node_id)
        changed_title = title if title is not None and title != entry.title else None
        is_bookmark = entry.url is not None
        changed_url = url if is_bookmark and url is not None and url != entry.url else None
        if changed_title is not None:
            entry.title = changed_title
        if changed_url is not None:
            entry.url = changed_url

        node = self._node(entry)
        if changed_title is not None or changed_url is not None:
            await self._emit(
                "on_changed", BookmarkChanged(id=node_id, title=changed_title, url=changed_url)
            )
        return node

    async def remove(self, node_id: str) -> None:
        if node_id == ROOT_ID:
            msg = "The root folder cannot be removed"
            raise ValueError(msg)
        entry = self._require(node_id)
        node = self._subtree(node_id)
        parent = self._entries[entry.parent_id] if entry.parent_id else None
        index = parent.children.index(node_id) if parent else 0
        if parent:
            parent.children.remove(node_id)
        self._drop(node_id)

        await self._emit(
            "on_removed",
            BookmarkRemoved(id=node_id, parent_id=entry.parent_id, index=index, node=node),
        )

    async def move(self, node_id: str, parent_id: str, index: int | None = None) -> BookmarkNode:
        entry = self._require(node_id)
        new_parent = self._require(parent_id)
        if new_parent.url is not None:
            msg = f"Parent is not a folder: {parent_id}"
            raise ValueError(msg)
        if self._is_ancestor(node_id, parent_id):
            msg = "Cannot move a folder into its own subtree"
            raise ValueError(msg)

        old_parent = self._entries[entry.parent_id] if entry.parent_id else None
        old_index = old_parent.children.index(node_id) if old_parent else 0
        if old_parent:
            old_parent.children.remove(node_id)
        entry.parent_id = parent_id
        new_index = self._insert(new_parent, node_id, index)

        await self._emit(
            "on_moved",
            BookmarkMoved(
                id=node_id,
                parent_id=parent_id,
                index=new_index,
                old_parent_id=old_parent.id if old_parent else "",
                old_index=old_index,
            ),
        )
        return self._node(entry)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_id(self) -> str:
        while True:
            candidate = str(next(self._ids))
            if candidate not in self._entries:
                return candidate

    def _require(self, node_id: str) -> _Entry:
        entry = self._entries.get(node_id)
        if entry is None:
            raise LocalBookmarkNotFoundError(node_id)
        return entry

    @staticmethod
    def _insert(parent: _Entry, node_id: str, index: int | None) -> int:
        if index is None or index >= len(parent.children):
            parent.children.append(node_id)
            return len(parent.children) - 1
        position = max(index, 0)
        parent.children.insert(position, node_id)
        return position

    def _drop(self, node_id: str) -> None:
        entry = self._entries.pop(node_id)
        for child in entry.children:
            self._drop(child)

    def _is_ancestor(self, ancestor_id: str, node_id: str | None) -> bool:
        while node_id is not None:
            if node_id == ancestor_id:
                return True
            node_id = self._entries[node_id].parent_id
        return False

    def _node(self, entry: _Entry) -> BookmarkNode:
        index = 0
        if entry.parent_id is not None:
            index = self._entries[entry.parent_id].children.index(entry.id)
        return BookmarkNode(
            id=entry.id,
            title=entry.title,
            url=entry.url,
            parent_id=entry.parent_id,
            index=index,
        )

    def _subtree(self, node_id: str) -> BookmarkNode:
        entry = self._entries[node_id]
        node = self._node(entry)
        if entry.url is None:
            node.children = [self._subtree(child) for child in entry.children]
        return node

    async def _emit(self, method: str, event: Any) -> None:
        for listener in list(self._listeners):
            try:
                await getattr(listener, method)(event)
            except Exception:
                logger.exception(
                    "bookmark_listener_failed",
                    extra={"listener_event": method, "node_id": getattr(event, "id", None)},
                )
