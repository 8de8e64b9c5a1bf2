"""Read-only status model assembled from the persisted records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bookmark_sync.adapters.raindrop.client import RaindropClientError
from bookmark_sync.domain.models import SyncStatus

if TYPE_CHECKING:
    from bookmark_sync.sync.protocols import RemoteBookmarkService
    from bookmark_sync.sync.registry import LinkRegistry
    from bookmark_sync.sync.session import SyncSession
    from bookmark_sync.sync.state import CredentialStore, SettingsStore
    from bookmark_sync.sync.stats import SyncStatsStore

logger = logging.getLogger(__name__)


class SyncStatusService:
    """Derives ``SyncStatus``; holds no state beyond the session's cached user name."""

    def __init__(
        self,
        credentials: CredentialStore,
        settings: SettingsStore,
        registry: LinkRegistry,
        stats: SyncStatsStore,
        session: SyncSession,
        remote: RemoteBookmarkService,
    ) -> None:
        self._credentials = credentials
        self._settings = settings
        self._registry = registry
        self._stats = stats
        self._session = session
        self._remote = remote

    async def resolve_user_name(self) -> str | None:
        if self._session.cached_user_name:
            return self._session.cached_user_name
        try:
            user = await self._remote.get_user()
        except RaindropClientError as exc:
            logger.debug("status_user_lookup_failed", extra={"error": str(exc)})
            return None
        self._session.cached_user_name = user.full_name or None
        return self._session.cached_user_name

    async def get_status(self) -> SyncStatus:
        is_authenticated = await self._credentials.is_authenticated()
        settings = await self._settings.get_settings()
        stats = await self._stats.get_stats()

        if is_authenticated:
            user_name = await self.resolve_user_name()
        else:
            self._session.cached_user_name = None
            user_name = None

        return SyncStatus(
            is_authenticated=is_authenticated,
            is_enabled=settings.enabled,
            is_syncing=self._session.guard.active,
            mappings_count=len(await self._registry.get_mappings()),
            links_count=await self._registry.count_links(),
            last_sync_time=stats.last_sync_time,
            last_sync_status=stats.last_sync_status,
            pending_operations=stats.pending_operations,
            failed_operations=stats.failed_operations,
            user_name=user_name,
        )
