"""Public sync service composed of small, injected collaborators."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from bookmark_sync.adapters.raindrop.client import RaindropAuthError
from bookmark_sync.core.logging_utils import generate_correlation_id, get_log_history
from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.domain.exceptions import (
    LocalFolderNotFoundError,
    MappingNotFoundError,
    NotAuthenticatedError,
)
from bookmark_sync.domain.models import FolderMapping
from bookmark_sync.domain.results import AddMappingResult, TriggerSyncResult

if TYPE_CHECKING:
    from bookmark_sync.adapters.local.protocols import LocalBookmarkStore
    from bookmark_sync.adapters.raindrop.models import RaindropCollection, RaindropUser
    from bookmark_sync.domain.models import SyncSettings, SyncStats, SyncStatus
    from bookmark_sync.domain.results import (
        FullResyncResult,
        InitialSyncResult,
        PullResult,
        PushResult,
        QueueRunResult,
    )
    from bookmark_sync.sync.engine import ReconciliationEngine
    from bookmark_sync.sync.nested import NestedFolderPropagator
    from bookmark_sync.sync.observer import LocalChangeObserver
    from bookmark_sync.sync.operation_queue import OperationQueue
    from bookmark_sync.sync.protocols import RemoteBookmarkService
    from bookmark_sync.sync.queue_processor import QueueProcessor
    from bookmark_sync.sync.registry import LinkRegistry
    from bookmark_sync.sync.scheduler import SyncScheduler
    from bookmark_sync.sync.session import SyncSession
    from bookmark_sync.sync.state import CredentialStore, SettingsStore, SyncStateStore
    from bookmark_sync.sync.stats import SyncStatsStore
    from bookmark_sync.sync.status import SyncStatusService

logger = logging.getLogger(__name__)


class BookmarkSyncService:
    """Bidirectional sync between the local bookmark tree and Raindrop.io.

    A thin orchestrator: the reconciliation rules live in the engine, the
    queue processor and the observer; this class sequences them for callers.
    """

    def __init__(
        self,
        *,
        state: SyncStateStore,
        store: LocalBookmarkStore,
        remote: RemoteBookmarkService,
        credentials: CredentialStore,
        settings: SettingsStore,
        registry: LinkRegistry,
        queue: OperationQueue,
        stats: SyncStatsStore,
        processor: QueueProcessor,
        observer: LocalChangeObserver,
        engine: ReconciliationEngine,
        propagator: NestedFolderPropagator,
        status: SyncStatusService,
        session: SyncSession,
        scheduler: SyncScheduler | None = None,
    ) -> None:
        self._state = state
        self._store = store
        self._remote = remote
        self._credentials = credentials
        self._settings = settings
        self._registry = registry
        self._queue = queue
        self._stats = stats
        self._processor = processor
        self._observer = observer
        self._engine = engine
        self._propagator = propagator
        self._status = status
        self._session = session
        self._scheduler = scheduler

    async def _require_auth(self) -> None:
        if not await self._credentials.is_authenticated():
            raise NotAuthenticatedError("Not authenticated with Raindrop.io")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Resume listening and scheduling when sync was left enabled."""
        settings = await self._settings.get_settings()
        if settings.enabled and await self._credentials.is_authenticated():
            self._observer.register()
            if self._scheduler:
                await self._scheduler.reschedule(settings.sync_interval)
                await self._scheduler.start()
        logger.info(
            "sync_service_started",
            extra={"enabled": settings.enabled, "listening": self._session.listeners_registered},
        )

    async def shutdown(self) -> None:
        """Flush batched events and stop background jobs."""
        if self._scheduler:
            await self._scheduler.stop()
        await self._observer.unregister()
        logger.info("sync_service_stopped")

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self, token: str) -> RaindropUser:
        """Store ``token`` and verify it against the API.

        Raises:
            NotAuthenticatedError: The API rejected the token; it is not kept.
        """
        await self._credentials.save_token(token)
        try:
            user = await self._remote.get_user()
        except RaindropAuthError as exc:
            await self._credentials.clear_token()
            raise NotAuthenticatedError("Invalid Raindrop.io API token") from exc
        self._session.cached_user_name = user.full_name or None
        logger.info("raindrop_authenticated", extra={"user_id": user.id})
        return user

    async def logout(self) -> None:
        await self._credentials.clear_token()
        self._session.cached_user_name = None
        await self.shutdown()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def enable(self) -> SyncSettings:
        await self._require_auth()
        settings = await self._settings.update_settings(enabled=True)
        self._observer.register()
        if self._scheduler:
            await self._scheduler.reschedule(settings.sync_interval)
            await self._scheduler.start()
        return settings

    async def disable(self) -> SyncSettings:
        settings = await self._settings.update_settings(enabled=False)
        await self.shutdown()
        return settings

    async def set_sync_interval(self, minutes: int) -> SyncSettings:
        if minutes < 1:
            raise ValueError("Sync interval must be at least one minute")
        settings = await self._settings.update_settings(sync_interval=minutes)
        if self._scheduler:
            await self._scheduler.reschedule(minutes)
        return settings

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    async def list_collections(self) -> list[RaindropCollection]:
        await self._require_auth()
        return await self._remote.get_all_collections()

    async def get_mappings(self) -> list[FolderMapping]:
        return await self._registry.get_mappings()

    async def add_mapping(
        self,
        local_folder_id: str,
        remote_collection_id: int,
        *,
        folder_name: str | None = None,
        collection_name: str | None = None,
        sync_children: bool = False,
        run_initial_sync: bool = True,
    ) -> AddMappingResult:
        """Map a local folder to a collection and reconcile it.

        With ``sync_children`` every sub-folder is mirrored onto a nested
        collection and each resulting mapping is reconciled too.

        Raises:
            LocalFolderNotFoundError: ``local_folder_id`` is not a local folder.
            DuplicateMappingError: The folder or the collection is already mapped.
        """
        await self._require_auth()
        folder = await self._store.get(local_folder_id)
        if folder is None or not folder.is_folder:
            raise LocalFolderNotFoundError(
                "Local folder not found", details={"local_folder_id": local_folder_id}
            )
        if collection_name is None:
            collection_name = (await self._remote.get_collection(remote_collection_id)).title

        root = await self._registry.add_mapping(
            FolderMapping(
                local_folder_id=local_folder_id,
                remote_collection_id=remote_collection_id,
                folder_name=folder_name or folder.title,
                remote_collection_name=collection_name,
                sync_children=sync_children,
            )
        )
        result = AddMappingResult(mappings=[root])
        if sync_children:
            result.mappings.extend(
                await self._propagator.propagate(
                    local_folder_id,
                    remote_collection_id,
                    parent_mapping_id=root.id,
                    depth=root.depth,
                )
            )

        if run_initial_sync:
            cid = generate_correlation_id()
            for mapping in result.mappings:
                result.initial[mapping.id] = await self._engine.initial_sync(
                    mapping, correlation_id=cid
                )
        return result

    async def remove_mapping(self, mapping_id: str) -> set[str]:
        """Remove a mapping with its descendants and links.

        Raises:
            MappingNotFoundError: No mapping has this id.
        """
        removed = await self._registry.remove_mapping(mapping_id)
        if not removed:
            raise MappingNotFoundError("Mapping not found", details={"mapping_id": mapping_id})
        return removed

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def initial_sync(self, mapping_id: str) -> InitialSyncResult:
        await self._require_auth()
        mapping = await self._registry.get_mapping(mapping_id)
        if mapping is None:
            raise MappingNotFoundError("Mapping not found", details={"mapping_id": mapping_id})
        return await self._engine.initial_sync(mapping)

    async def pull(self, *, correlation_id: str | None = None) -> PullResult:
        return await self._engine.pull(correlation_id=correlation_id)

    async def push(self, *, correlation_id: str | None = None) -> PushResult:
        return await self._engine.push(correlation_id=correlation_id)

    async def process_queue(self, *, correlation_id: str | None = None) -> QueueRunResult:
        return await self._processor.process(correlation_id=correlation_id)

    async def trigger_sync(self) -> TriggerSyncResult:
        """Drain the queue, reconcile unsynced mappings, then push and pull."""
        await self._require_auth()
        cid = generate_correlation_id()
        logger.info("manual_sync_start", extra={"correlation_id": cid})

        queue_result = await self._processor.force_process(correlation_id=cid)

        initial: dict[str, InitialSyncResult] = {}
        linked_mappings = {link.mapping_id for link in await self._registry.get_links()}
        for mapping in await self._registry.get_mappings():
            if mapping.id not in linked_mappings:
                initial[mapping.id] = await self._engine.initial_sync(mapping, correlation_id=cid)

        push_result = await self._engine.push(correlation_id=cid)
        pull_result = await self._engine.pull(correlation_id=cid)

        return TriggerSyncResult(
            queue=queue_result,
            initial=initial,
            push=push_result,
            pull=pull_result,
            stats=await self._stats.get_stats(),
            status=await self._status.get_status(),
        )

    async def full_resync(self) -> FullResyncResult:
        await self._require_auth()
        return await self._engine.full_resync()

    # ------------------------------------------------------------------
    # Queue maintenance
    # ------------------------------------------------------------------

    async def retry_failed(self) -> QueueRunResult:
        """Move failed operations back to pending and process them now."""
        await self._queue.retry_failed()
        return await self._processor.force_process()

    async def force_process_queue(self) -> QueueRunResult:
        return await self._processor.force_process()

    async def clear_queue(self) -> None:
        await self._queue.clear()

    async def clear_errors(self) -> None:
        await self._stats.clear_errors()

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def get_status(self) -> SyncStatus:
        return await self._status.get_status()

    async def get_stats(self) -> SyncStats:
        return await self._stats.get_stats()

    async def export_data(self) -> dict[str, Any]:
        """JSON-compatible dump of persisted state and recent logs, never the API token."""
        settings = await self._settings.get_settings()
        queue = await self._queue.get_state()
        return {
            "exported_at": now_ms(),
            "settings": settings.model_dump(mode="json", by_alias=True),
            "mappings": [
                mapping.model_dump(mode="json", by_alias=True)
                for mapping in await self._registry.get_mappings()
            ],
            "links": [
                link.model_dump(mode="json", by_alias=True)
                for link in await self._registry.get_links()
            ],
            "queue": queue.model_dump(mode="json", by_alias=True),
            "stats": (await self._stats.get_stats()).model_dump(mode="json", by_alias=True),
            "logs": get_log_history(),
        }

    async def reset(self) -> None:
        """Stop everything and erase all persisted records, credential included."""
        await self.shutdown()
        await self._state.clear_all()
        self._session.cached_user_name = None
        logger.warning("sync_state_reset")
