from __future__ import annotations

from .key_value_store import SqliteKeyValueStore

__all__ = ["SqliteKeyValueStore"]
