from __future__ import annotations

from .memory_store import InMemoryBookmarkStore
from .protocols import (
    BookmarkChanged,
    BookmarkCreated,
    BookmarkEventListener,
    BookmarkMoved,
    BookmarkNode,
    BookmarkRemoved,
    LocalBookmarkNotFoundError,
    LocalBookmarkStore,
)

__all__ = [
    "BookmarkChanged",
    "BookmarkCreated",
    "BookmarkEventListener",
    "BookmarkMoved",
    "BookmarkNode",
    "BookmarkRemoved",
    "InMemoryBookmarkStore",
    "LocalBookmarkNotFoundError",
    "LocalBookmarkStore",
]
