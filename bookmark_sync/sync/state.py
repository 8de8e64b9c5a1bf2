"""Serialized access to persisted sync records, plus credential and settings stores."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from bookmark_sync.domain.models import SyncSettings
from bookmark_sync.sync.constants import (
    ALL_STORAGE_KEYS,
    STORAGE_KEY_API_TOKEN,
    STORAGE_KEY_SETTINGS,
)
from bookmark_sync.sync.task_queue import SerialTaskQueue

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from bookmark_sync.config.sync import SyncConfig
    from bookmark_sync.infrastructure.persistence.protocols import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncStateStore:
    """Key-value records behind one strictly ordered mutation queue.

    Reads go straight to the store. Every read-modify-write goes through
    ``mutate``/``transaction`` so concurrent callers never lose updates.
    """

    def __init__(self, kv: KeyValueStore, task_queue: SerialTaskQueue | None = None) -> None:
        self._kv = kv
        self._queue = task_queue or SerialTaskQueue()

    @property
    def kv(self) -> KeyValueStore:
        return self._kv

    async def read(self, key: str, default: Any = None) -> Any:
        return await self._kv.get(key, default)

    async def mutate(
        self,
        key: str,
        update: Callable[[Any], tuple[Any, T]],
        *,
        default: Any = None,
        operation_name: str = "state_mutate",
    ) -> T:
        """Apply ``update(current) -> (new_value, result)`` atomically to one record."""

        async def _task() -> T:
            current = await self._kv.get(key, default)
            new_value, result = update(current)
            await self._kv.set(key, new_value)
            return result

        return await self._queue.run(_task, operation_name=operation_name)

    async def transaction(
        self, operation: Callable[[KeyValueStore], Awaitable[T]], *, operation_name: str
    ) -> T:
        """Run a multi-record read-modify-write at the serialization point."""
        return await self._queue.run(lambda: operation(self._kv), operation_name=operation_name)

    async def remove(self, key: str) -> None:
        async def _task() -> None:
            await self._kv.remove(key)

        await self._queue.run(_task, operation_name=f"remove_{key}")

    async def clear_all(self) -> None:
        async def _task() -> None:
            for key in ALL_STORAGE_KEYS:
                await self._kv.remove(key)

        await self._queue.run(_task, operation_name="clear_all")
        logger.info("sync_state_cleared")


class CredentialStore:
    """API token persistence with change notification."""

    def __init__(self, state: SyncStateStore) -> None:
        self._state = state
        self._hooks: list[Callable[[], None]] = []

    def add_change_hook(self, hook: Callable[[], None]) -> None:
        self._hooks.append(hook)

    def _notify(self) -> None:
        for hook in self._hooks:
            hook()

    async def get_token(self) -> str | None:
        token = await self._state.read(STORAGE_KEY_API_TOKEN)
        return token or None

    async def save_token(self, token: str) -> None:
        token = token.strip()
        await self._state.mutate(
            STORAGE_KEY_API_TOKEN, lambda _: (token, None), operation_name="save_token"
        )
        self._notify()
        logger.info("api_token_saved")

    async def clear_token(self) -> None:
        await self._state.remove(STORAGE_KEY_API_TOKEN)
        self._notify()
        logger.info("api_token_cleared")

    async def is_authenticated(self) -> bool:
        return bool(await self.get_token())


class SettingsStore:
    def __init__(self, state: SyncStateStore, config: SyncConfig | None = None) -> None:
        self._state = state
        self._defaults = SyncSettings(
            enabled=config.enabled if config else False,
            sync_interval=config.pull_interval_minutes if config else 5,
        )

    def _parse(self, raw: Any) -> SyncSettings:
        if not raw:
            return self._defaults.model_copy()
        return SyncSettings.model_validate(raw)

    async def get_settings(self) -> SyncSettings:
        return self._parse(await self._state.read(STORAGE_KEY_SETTINGS))

    async def save_settings(self, settings: SyncSettings) -> None:
        payload = settings.model_dump(mode="json", by_alias=True)
        await self._state.mutate(
            STORAGE_KEY_SETTINGS, lambda _: (payload, None), operation_name="save_settings"
        )

    async def update_settings(self, **changes: Any) -> SyncSettings:
        def _update(raw: Any) -> tuple[Any, SyncSettings]:
            updated = self._parse(raw).model_copy(update=changes)
            return updated.model_dump(mode="json", by_alias=True), updated

        settings = await self._state.mutate(
            STORAGE_KEY_SETTINGS, _update, operation_name="update_settings"
        )
        logger.info("sync_settings_updated", extra={"changed": sorted(changes)})
        return settings

    async def is_enabled(self) -> bool:
        return (await self.get_settings()).enabled
