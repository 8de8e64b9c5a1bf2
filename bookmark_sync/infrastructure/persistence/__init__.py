from __future__ import annotations

from .memory import MemoryKeyValueStore
from .protocols import KeyValueStore

__all__ = ["KeyValueStore", "MemoryKeyValueStore"]
