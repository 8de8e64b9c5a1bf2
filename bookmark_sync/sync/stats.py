"""Sync counters and the bounded ring of recent errors."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.domain.models import QueueState, SyncError, SyncStats
from bookmark_sync.sync.constants import (
    DEFAULT_RECENT_ERRORS_LIMIT,
    STORAGE_KEY_LINKS,
    STORAGE_KEY_QUEUE,
    STORAGE_KEY_STATS,
)

if TYPE_CHECKING:
    from bookmark_sync.domain.models import SyncOutcome
    from bookmark_sync.sync.state import SyncStateStore

logger = logging.getLogger(__name__)


def _parse(raw: Any) -> SyncStats:
    return SyncStats.model_validate(raw) if raw else SyncStats()


class SyncStatsStore:
    def __init__(
        self, state: SyncStateStore, *, errors_limit: int = DEFAULT_RECENT_ERRORS_LIMIT
    ) -> None:
        self._state = state
        self._errors_limit = errors_limit

    async def get_stats(self) -> SyncStats:
        """Stored counters with link and queue counts recomputed from their records."""
        stats = _parse(await self._state.read(STORAGE_KEY_STATS))
        links = await self._state.read(STORAGE_KEY_LINKS, []) or []
        queue = QueueState.model_validate(await self._state.read(STORAGE_KEY_QUEUE) or {})
        return stats.model_copy(
            update={
                "total_synced": len(links),
                "pending_operations": len(queue.pending),
                "failed_operations": len(queue.failed),
            }
        )

    async def update_stats(self, **changes: Any) -> SyncStats:
        def _update(raw: Any) -> tuple[Any, SyncStats]:
            updated = _parse(raw).model_copy(update=changes)
            return updated.model_dump(mode="json", by_alias=True), updated

        return await self._state.mutate(STORAGE_KEY_STATS, _update, operation_name="update_stats")

    async def record_pass(self, outcome: SyncOutcome) -> SyncStats:
        return await self.update_stats(last_sync_time=now_ms(), last_sync_status=outcome)

    async def add_error(self, operation: str, message: str, details: str | None = None) -> None:
        """Prepend an error record, keeping only the newest ``errors_limit`` entries."""
        error = SyncError(operation=operation, message=message, details=details)

        def _add(raw: Any) -> tuple[Any, None]:
            stats = _parse(raw)
            errors = [error, *stats.errors][: self._errors_limit]
            updated = stats.model_copy(update={"errors": errors})
            return updated.model_dump(mode="json", by_alias=True), None

        await self._state.mutate(STORAGE_KEY_STATS, _add, operation_name="add_sync_error")
        logger.warning(
            "sync_error_recorded", extra={"sync_operation": operation, "error": message}
        )

    async def clear_errors(self) -> None:
        await self.update_stats(errors=[])
