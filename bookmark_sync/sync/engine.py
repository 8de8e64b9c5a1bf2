"""Reconciliation passes between mapped local folders and remote collections.

Four passes are provided:

* ``initial_sync`` pairs one mapping's bookmarks and items by normalized URL
  and creates whatever is missing on either side.
* ``pull`` applies remote creations, edits and deletions to the local store.
* ``push`` attaches or bulk-creates remote items for unlinked local bookmarks.
* ``full_resync`` drops every link and queued operation and re-runs initial
  sync for every mapping.

Local mutations made here happen under the reentrancy guard so the change
observer does not echo them back as new operations.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import TYPE_CHECKING

from bookmark_sync.adapters.local.protocols import LocalBookmarkNotFoundError
from bookmark_sync.adapters.raindrop.models import CreateRaindropRequest
from bookmark_sync.core.hashing import content_hash
from bookmark_sync.core.logging_utils import generate_correlation_id
from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.core.url_utils import is_valid_sync_url, normalize_url, urls_match
from bookmark_sync.domain.models import BookmarkLink, LinkStatus
from bookmark_sync.domain.results import (
    FullResyncResult,
    InitialSyncResult,
    PullResult,
    PushResult,
)

if TYPE_CHECKING:
    from bookmark_sync.adapters.local.protocols import BookmarkNode, LocalBookmarkStore
    from bookmark_sync.adapters.raindrop.models import Raindrop
    from bookmark_sync.domain.models import FolderMapping, SyncOutcome
    from bookmark_sync.sync.guard import ReentrancyGuard
    from bookmark_sync.sync.operation_queue import OperationQueue
    from bookmark_sync.sync.protocols import RemoteBookmarkService
    from bookmark_sync.sync.registry import LinkRegistry
    from bookmark_sync.sync.state import CredentialStore, SettingsStore
    from bookmark_sync.sync.stats import SyncStatsStore

logger = logging.getLogger(__name__)


def _syncable_bookmarks(children: list[BookmarkNode]) -> list[BookmarkNode]:
    return [node for node in children if node.url and is_valid_sync_url(node.url)]


def _pass_outcome(errors: list[str], failed_mappings: int, total_mappings: int) -> SyncOutcome:
    if not errors:
        return "success"
    if total_mappings and failed_mappings == total_mappings:
        return "failed"
    return "partial"


class ReconciliationEngine:
    def __init__(
        self,
        store: LocalBookmarkStore,
        remote: RemoteBookmarkService,
        registry: LinkRegistry,
        queue: OperationQueue,
        credentials: CredentialStore,
        settings: SettingsStore,
        stats: SyncStatsStore,
        guard: ReentrancyGuard,
    ) -> None:
        self._store = store
        self._remote = remote
        self._registry = registry
        self._queue = queue
        self._credentials = credentials
        self._settings = settings
        self._stats = stats
        self._guard = guard

    def _in_progress(self, pass_name: str, cid: str) -> bool:
        # Must be followed by guard.hold() with no await in between.
        if self._guard.active:
            logger.info(
                "sync_pass_skipped_in_progress",
                extra={"correlation_id": cid, "pass": pass_name, "depth": self._guard.depth},
            )
            return True
        return False

    async def _is_ready(self, pass_name: str, cid: str) -> bool:
        if not await self._settings.is_enabled():
            logger.debug(
                "sync_pass_skipped_disabled", extra={"correlation_id": cid, "pass": pass_name}
            )
            return False
        if not await self._credentials.is_authenticated():
            logger.debug(
                "sync_pass_skipped_unauthenticated",
                extra={"correlation_id": cid, "pass": pass_name},
            )
            return False
        return True

    async def _link(
        self, mapping: FolderMapping, local_id: str, remote_id: int, url: str, title: str
    ) -> bool:
        return await self._registry.add_link(
            BookmarkLink(
                local_id=local_id,
                remote_id=remote_id,
                url=url,
                title=title,
                content_hash=content_hash(url, title),
                mapping_id=mapping.id,
            )
        )

    async def _link_created(
        self, mapping: FolderMapping, node: BookmarkNode, raindrop: Raindrop, cid: str
    ) -> bool:
        """Link a bookmark just created for ``raindrop``, removing it if the link is refused.

        Callers hold the guard, so the removal is not observed as a local delete.
        """
        if await self._link(mapping, node.id, raindrop.id, raindrop.link, raindrop.title):
            return True
        logger.warning(
            "local_create_discarded_already_linked",
            extra={"correlation_id": cid, "local_id": node.id, "remote_id": raindrop.id},
        )
        try:
            await self._store.remove(node.id)
        except LocalBookmarkNotFoundError:
            logger.debug(
                "local_create_discard_already_gone",
                extra={"correlation_id": cid, "local_id": node.id},
            )
        return False

    # ------------------------------------------------------------------
    # Initial sync
    # ------------------------------------------------------------------

    async def initial_sync(
        self, mapping: FolderMapping, *, correlation_id: str | None = None
    ) -> InitialSyncResult:
        """Reconcile one mapping from scratch by normalized URL.

        Matched pairs are linked; local-only bookmarks are bulk-created
        remotely; remote-only items are created locally. Per-item failures are
        collected in ``errors`` and do not stop the pass. Running it again on a
        synchronized mapping creates nothing.
        """
        cid = correlation_id or generate_correlation_id()
        result = InitialSyncResult()

        with self._guard.hold("initial_sync"):
            logger.info(
                "initial_sync_start",
                extra={
                    "correlation_id": cid,
                    "mapping_id": mapping.id,
                    "folder_name": mapping.folder_name,
                },
            )
            if await self._store.get(mapping.local_folder_id) is None:
                logger.error(
                    "initial_sync_folder_missing",
                    extra={"correlation_id": cid, "local_folder_id": mapping.local_folder_id},
                )
                result.errors.append(f'Folder "{mapping.folder_name}" not found')
                return result

            bookmarks = _syncable_bookmarks(await self._store.get_children(mapping.local_folder_id))
            raindrops = await self._remote.get_all_raindrops(mapping.remote_collection_id)

            remote_by_url: dict[str, deque[Raindrop]] = defaultdict(deque)
            for raindrop in raindrops:
                remote_by_url[normalize_url(raindrop.link)].append(raindrop)

            matched: list[tuple[BookmarkNode, Raindrop]] = []
            local_only: list[BookmarkNode] = []
            for bookmark in bookmarks:
                candidates = remote_by_url.get(normalize_url(bookmark.url))
                if candidates:
                    matched.append((bookmark, candidates.popleft()))
                else:
                    local_only.append(bookmark)
            remote_only = [raindrop for bucket in remote_by_url.values() for raindrop in bucket]

            for bookmark, raindrop in matched:
                await self._link(mapping, bookmark.id, raindrop.id, bookmark.url, bookmark.title)
                result.matched += 1

            links = await self._registry.get_links()
            linked_local = {link.local_id for link in links}
            linked_remote = {link.remote_id for link in links}

            to_create = [b for b in local_only if b.id not in linked_local]
            if to_create:
                await self._create_remote_for(mapping, to_create, result, cid)

            for raindrop in remote_only:
                if raindrop.id in linked_remote:
                    continue
                try:
                    node = await self._store.create(
                        mapping.local_folder_id, raindrop.title, url=raindrop.link
                    )
                    if not await self._link_created(mapping, node, raindrop, cid):
                        continue
                    result.created_locally += 1
                except Exception as exc:
                    message = f'Failed to create bookmark for "{raindrop.title}": {exc}'
                    result.errors.append(message)
                    logger.error(
                        "initial_sync_local_create_failed",
                        extra={"correlation_id": cid, "remote_id": raindrop.id, "error": str(exc)},
                    )

            await self._registry.update_mapping(mapping.id, last_sync=now_ms())

        logger.info(
            "initial_sync_complete",
            extra={
                "correlation_id": cid,
                "mapping_id": mapping.id,
                "matched": result.matched,
                "created_in_raindrop": result.created_in_raindrop,
                "created_locally": result.created_locally,
                "errors": len(result.errors),
            },
        )
        return result

    async def _create_remote_for(
        self,
        mapping: FolderMapping,
        bookmarks: list[BookmarkNode],
        result: InitialSyncResult,
        cid: str,
    ) -> None:
        logger.info(
            "initial_sync_bulk_create",
            extra={"correlation_id": cid, "mapping_id": mapping.id, "count": len(bookmarks)},
        )
        try:
            created = await self._remote.create_raindrops(
                [
                    CreateRaindropRequest(
                        link=b.url, title=b.title, collection_id=mapping.remote_collection_id
                    )
                    for b in bookmarks
                ]
            )
        except Exception as exc:
            message = f"Initial bulk create in Raindrop failed: {exc}"
            result.errors.append(message)
            logger.error(
                "initial_sync_bulk_create_failed",
                extra={"correlation_id": cid, "mapping_id": mapping.id, "error": str(exc)},
            )
            return

        # Each created item consumes one originating bookmark, so duplicate
        # URLs pair up one-for-one.
        remaining = list(bookmarks)
        for raindrop in created:
            position = next(
                (i for i, b in enumerate(remaining) if urls_match(b.url, raindrop.link)), None
            )
            if position is None:
                continue
            bookmark = remaining.pop(position)
            if await self._link(mapping, bookmark.id, raindrop.id, raindrop.link, raindrop.title):
                result.created_in_raindrop += 1

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def pull(self, *, correlation_id: str | None = None) -> PullResult:
        """Apply remote state to every mapped folder.

        Skipped while another pass holds the guard or sync is disabled. A
        failing mapping is reported in ``errors`` and the rest still run.
        """
        cid = correlation_id or generate_correlation_id()
        if self._in_progress("pull", cid):
            return PullResult(skipped=True)

        result = PullResult()
        failed_mappings = 0
        with self._guard.hold("pull"):
            if not await self._is_ready("pull", cid):
                return PullResult(skipped=True)
            mappings = await self._registry.get_mappings()
            if not mappings:
                return result

            logger.info("pull_start", extra={"correlation_id": cid, "mappings": len(mappings)})
            for mapping in mappings:
                try:
                    result.merge(await self.pull_mapping(mapping, correlation_id=cid))
                except Exception as exc:
                    failed_mappings += 1
                    message = f"Pull failed for {mapping.folder_name}: {exc}"
                    result.errors.append(message)
                    await self._stats.add_error("pull", message, mapping.id)

        await self._stats.record_pass(_pass_outcome(result.errors, failed_mappings, len(mappings)))
        logger.info(
            "pull_complete",
            extra={
                "correlation_id": cid,
                "created": result.created,
                "updated": result.updated,
                "deleted": result.deleted,
                "errors": len(result.errors),
            },
        )
        return result

    async def pull_mapping(
        self, mapping: FolderMapping, *, correlation_id: str | None = None
    ) -> PullResult:
        """Pull one mapping. Remote fetch failures propagate to the caller."""
        cid = correlation_id or generate_correlation_id()
        result = PullResult()

        raindrops = await self._remote.get_all_raindrops(mapping.remote_collection_id)
        all_links = await self._registry.get_links()
        by_remote_id = {link.remote_id: link for link in all_links}
        linked_urls = {normalize_url(link.url) for link in all_links}
        mapping_links = [link for link in all_links if link.mapping_id == mapping.id]
        seen_remote_ids = {raindrop.id for raindrop in raindrops}

        with self._guard.hold("pull_mapping"):
            for raindrop in raindrops:
                link = by_remote_id.get(raindrop.id)
                if link is None:
                    url_key = normalize_url(raindrop.link)
                    if url_key in linked_urls:
                        logger.debug(
                            "pull_skip_url_already_linked",
                            extra={"correlation_id": cid, "remote_id": raindrop.id},
                        )
                        continue
                    try:
                        node = await self._store.create(
                            mapping.local_folder_id, raindrop.title, url=raindrop.link
                        )
                        linked = await self._link_created(mapping, node, raindrop, cid)
                    except Exception as exc:
                        result.errors.append(f'Failed to create "{raindrop.title}": {exc}')
                        continue
                    if not linked:
                        continue
                    linked_urls.add(url_key)
                    result.created += 1
                elif link.mapping_id == mapping.id:
                    new_hash = content_hash(raindrop.link, raindrop.title)
                    if new_hash == link.content_hash:
                        continue
                    try:
                        await self._store.update(
                            link.local_id, title=raindrop.title, url=raindrop.link
                        )
                        await self._registry.update_link(
                            link.id,
                            url=raindrop.link,
                            title=raindrop.title,
                            content_hash=new_hash,
                            sync_status=LinkStatus.SYNCED,
                            last_modified=now_ms(),
                        )
                    except Exception as exc:
                        result.errors.append(f'Failed to update "{raindrop.title}": {exc}')
                        continue
                    result.updated += 1

            for link in mapping_links:
                if link.remote_id in seen_remote_ids:
                    continue
                try:
                    await self._store.remove(link.local_id)
                except LocalBookmarkNotFoundError:
                    logger.debug(
                        "pull_delete_already_gone",
                        extra={"correlation_id": cid, "local_id": link.local_id},
                    )
                except Exception as exc:
                    result.errors.append(f'Failed to delete "{link.title}": {exc}')
                    continue
                await self._registry.remove_link(link.id)
                result.deleted += 1

        await self._registry.update_mapping(mapping.id, last_sync=now_ms())
        return result

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def push(self, *, correlation_id: str | None = None) -> PushResult:
        """Link or create remote items for every unlinked local bookmark."""
        cid = correlation_id or generate_correlation_id()
        if self._in_progress("push", cid):
            return PushResult(skipped=True)

        result = PushResult()
        failed_mappings = 0
        with self._guard.hold("push"):
            if not await self._is_ready("push", cid):
                return PushResult(skipped=True)
            mappings = await self._registry.get_mappings()
            if not mappings:
                return result

            logger.info("push_start", extra={"correlation_id": cid, "mappings": len(mappings)})
            for mapping in mappings:
                try:
                    result.merge(await self.push_mapping(mapping, correlation_id=cid))
                except Exception as exc:
                    failed_mappings += 1
                    message = f"Push failed for {mapping.folder_name}: {exc}"
                    result.errors.append(message)
                    await self._stats.add_error("push", message, mapping.id)

        await self._stats.record_pass(_pass_outcome(result.errors, failed_mappings, len(mappings)))
        logger.info(
            "push_complete",
            extra={
                "correlation_id": cid,
                "created": result.created,
                "linked": result.linked,
                "errors": len(result.errors),
            },
        )
        return result

    async def push_mapping(
        self, mapping: FolderMapping, *, correlation_id: str | None = None
    ) -> PushResult:
        cid = correlation_id or generate_correlation_id()
        result = PushResult()

        if await self._store.get(mapping.local_folder_id) is None:
            result.errors.append(f'Folder "{mapping.folder_name}" not found in browser')
            return result

        bookmarks = _syncable_bookmarks(await self._store.get_children(mapping.local_folder_id))
        raindrops = await self._remote.get_all_raindrops(mapping.remote_collection_id)
        remote_by_url = {normalize_url(raindrop.link): raindrop for raindrop in raindrops}
        linked_local = {link.local_id for link in await self._registry.get_links()}

        to_create: list[BookmarkNode] = []
        for bookmark in bookmarks:
            if bookmark.id in linked_local:
                continue
            existing = remote_by_url.get(normalize_url(bookmark.url))
            if existing is None:
                to_create.append(bookmark)
            elif await self._link(mapping, bookmark.id, existing.id, bookmark.url, bookmark.title):
                result.linked += 1

        if not to_create:
            return result

        try:
            created = await self._remote.create_raindrops(
                [
                    CreateRaindropRequest(
                        link=b.url, title=b.title, collection_id=mapping.remote_collection_id
                    )
                    for b in to_create
                ]
            )
        except Exception as exc:
            message = f"Bulk creation failed for {mapping.folder_name}: {exc}"
            result.errors.append(message)
            logger.error(
                "push_bulk_create_failed",
                extra={"correlation_id": cid, "mapping_id": mapping.id, "error": str(exc)},
            )
            return result

        # The bulk endpoint answers in request order.
        for bookmark, raindrop in zip(to_create, created, strict=False):
            if not raindrop.id:
                continue
            if await self._link(mapping, bookmark.id, raindrop.id, bookmark.url, bookmark.title):
                result.created += 1
        return result

    # ------------------------------------------------------------------
    # Full resync
    # ------------------------------------------------------------------

    async def full_resync(self, *, correlation_id: str | None = None) -> FullResyncResult:
        """Drop all links and queued operations, then initial-sync every mapping."""
        cid = correlation_id or generate_correlation_id()
        mappings = await self._registry.get_mappings()
        if not mappings:
            return FullResyncResult(success=True, errors=["No mappings configured"])

        logger.warning(
            "full_resync_start", extra={"correlation_id": cid, "mappings": len(mappings)}
        )
        results: dict[str, InitialSyncResult] = {}
        errors: list[str] = []
        # Held across the rebuild so no pull sees the emptied link set.
        with self._guard.hold("full_resync"):
            await self._registry.clear_links()
            await self._queue.clear()

            for mapping in mappings:
                try:
                    results[mapping.id] = await self.initial_sync(mapping, correlation_id=cid)
                except Exception as exc:
                    errors.append(f"Failed to sync {mapping.folder_name}: {exc}")
                    logger.exception(
                        "full_resync_mapping_failed",
                        extra={"correlation_id": cid, "mapping_id": mapping.id},
                    )

        await self._settings.update_settings(last_full_sync=now_ms())
        await self._stats.record_pass(_pass_outcome(errors, len(errors), len(mappings)))
        return FullResyncResult(success=not errors, results=results, errors=errors)
