"""Dependency injection container for wiring the sync components.

One container owns one object graph: a single state store (and therefore a
single serialization point), one session, one reentrancy guard.

Example:
    ```python
    container = SyncContainer(load_config(), SqliteKeyValueStore(db), store)
    service = container.sync_service()
    await service.trigger_sync()
    await container.aclose()
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from bookmark_sync.adapters.raindrop.client import RaindropClient
from bookmark_sync.sync.batching import OperationBatcher
from bookmark_sync.sync.engine import ReconciliationEngine
from bookmark_sync.sync.nested import NestedFolderPropagator
from bookmark_sync.sync.observer import LocalChangeObserver
from bookmark_sync.sync.operation_handlers import OperationDispatcher
from bookmark_sync.sync.operation_queue import OperationQueue
from bookmark_sync.sync.queue_processor import QueueProcessor
from bookmark_sync.sync.registry import LinkRegistry
from bookmark_sync.sync.scheduler import SyncScheduler
from bookmark_sync.sync.service import BookmarkSyncService
from bookmark_sync.sync.session import SyncSession
from bookmark_sync.sync.state import CredentialStore, SettingsStore, SyncStateStore
from bookmark_sync.sync.stats import SyncStatsStore
from bookmark_sync.sync.status import SyncStatusService

if TYPE_CHECKING:
    import httpx

    from bookmark_sync.adapters.local.protocols import LocalBookmarkStore
    from bookmark_sync.config import AppConfig
    from bookmark_sync.infrastructure.persistence.protocols import KeyValueStore
    from bookmark_sync.sync.protocols import RemoteBookmarkService


class SyncContainer:
    def __init__(
        self,
        config: AppConfig,
        kv: KeyValueStore,
        store: LocalBookmarkStore,
        *,
        remote: RemoteBookmarkService | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        with_scheduler: bool = True,
    ) -> None:
        """Build the object graph.

        Args:
            config: Application configuration.
            kv: Persistent key-value store backing every sync record.
            store: The local bookmark tree.
            remote: Remote service override (tests pass an in-memory double);
                a ``RaindropClient`` is built from ``config`` when omitted.
            transport: Optional httpx transport for the built client.
            with_scheduler: Whether the service gets a background scheduler.
        """
        self.config = config
        self.store = store
        self.session = SyncSession()
        self.state = SyncStateStore(kv)
        self.credentials = CredentialStore(self.state)
        self.credentials.add_change_hook(self.session.on_credential_changed)
        self.settings = SettingsStore(self.state, config.sync)
        self.registry = LinkRegistry(self.state)
        self.stats = SyncStatsStore(self.state, errors_limit=config.sync.recent_errors_limit)
        self.queue = OperationQueue(
            self.state,
            max_retries=config.sync.max_retries,
            failed_limit=config.sync.failed_queue_limit,
            lock_stale_seconds=config.sync.queue_lock_stale_sec,
        )

        self._client: RaindropClient | None = None
        if remote is None:
            self._client = RaindropClient.from_config(
                config.raindrop,
                self.credentials.get_token,
                on_unauthorized=self.credentials.clear_token,
                transport=transport,
            )
            remote = self._client
        self.remote = remote

        guard = self.session.guard
        self.dispatcher = OperationDispatcher(self.registry, remote, store, guard)
        self.processor = QueueProcessor(self.queue, self.dispatcher, guard, self.stats)
        self.batcher = OperationBatcher(self.queue.enqueue, config.sync.batch_window_sec)
        self.observer = LocalChangeObserver(
            store, self.registry, self.credentials, self.settings, self.session, self.batcher
        )
        self.engine = ReconciliationEngine(
            store,
            remote,
            self.registry,
            self.queue,
            self.credentials,
            self.settings,
            self.stats,
            guard,
        )
        self.propagator = NestedFolderPropagator(
            store, remote, self.registry, max_depth=config.sync.max_nesting_depth
        )
        self.status = SyncStatusService(
            self.credentials, self.settings, self.registry, self.stats, self.session, remote
        )

        self._service: BookmarkSyncService | None = None
        self._with_scheduler = with_scheduler

    async def open(self) -> None:
        if self._client is not None:
            await self._client.open()

    async def aclose(self) -> None:
        if self._service is not None:
            await self._service.shutdown()
        if self._client is not None:
            await self._client.aclose()

    def sync_service(self) -> BookmarkSyncService:
        """Get or create the sync service."""
        if self._service is None:
            scheduler = None
            if self._with_scheduler:
                scheduler = SyncScheduler(
                    self.engine.pull,
                    self.processor.process,
                    pull_interval_minutes=self.config.sync.pull_interval_minutes,
                    drain_interval_sec=self.config.sync.queue_drain_interval_sec,
                )
            self._service = BookmarkSyncService(
                state=self.state,
                store=self.store,
                remote=self.remote,
                credentials=self.credentials,
                settings=self.settings,
                registry=self.registry,
                queue=self.queue,
                stats=self.stats,
                processor=self.processor,
                observer=self.observer,
                engine=self.engine,
                propagator=self.propagator,
                status=self.status,
                session=self.session,
                scheduler=scheduler,
            )
        return self._service
