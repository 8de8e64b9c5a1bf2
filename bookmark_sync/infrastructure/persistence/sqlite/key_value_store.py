"""SQLite-backed implementation of the key-value store."""

from __future__ import annotations

from typing import Any

from bookmark_sync.core.time_utils import utc_now
from bookmark_sync.db.models import KeyValueRecord
from bookmark_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository


class SqliteKeyValueStore(SqliteBaseRepository):
    """Stores each named record as one row holding a JSON document."""

    async def get(self, key: str, default: Any = None) -> Any:
        def _get() -> tuple[bool, Any]:
            record = KeyValueRecord.get_or_none(KeyValueRecord.key == key)
            if record is None:
                return False, None
            return True, record.value

        found, value = await self._execute(_get, operation_name="kv_get", read_only=True)
        return value if found else default

    async def set(self, key: str, value: Any) -> None:
        def _set() -> None:
            (
                KeyValueRecord.insert(key=key, value=value, updated_at=utc_now())
                .on_conflict(
                    conflict_target=[KeyValueRecord.key],
                    update={
                        KeyValueRecord.value: value,
                        KeyValueRecord.updated_at: utc_now(),
                    },
                )
                .execute()
            )

        await self._execute(_set, operation_name="kv_set")

    async def remove(self, key: str) -> None:
        def _remove() -> None:
            KeyValueRecord.delete().where(KeyValueRecord.key == key).execute()

        await self._execute(_remove, operation_name="kv_remove")

    async def clear(self) -> None:
        def _clear() -> None:
            KeyValueRecord.delete().execute()

        await self._execute(_clear, operation_name="kv_clear")

    async def keys(self) -> list[str]:
        def _keys() -> list[str]:
            return [row.key for row in KeyValueRecord.select(KeyValueRecord.key)]

        return await self._execute(_keys, operation_name="kv_keys", read_only=True)
