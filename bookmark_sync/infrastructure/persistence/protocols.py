from __future__ import annotations

from typing import Any, Protocol


class KeyValueStore(Protocol):
    """Async get/set/remove over named JSON records.

    No transactions: read-modify-write cycles are serialized by the caller.
    """

    async def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value or ``default`` when the key is absent."""

    async def set(self, key: str, value: Any) -> None:
        """Persist a JSON-compatible value under ``key``."""

    async def remove(self, key: str) -> None:
        """Delete ``key``; a missing key is not an error."""

    async def clear(self) -> None:
        """Delete every record."""
