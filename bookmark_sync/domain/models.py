"""Persistent sync entities and derived read models."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from bookmark_sync.core.hashing import generate_id
from bookmark_sync.core.time_utils import now_ms

_MODEL_CONFIG = {"populate_by_name": True, "extra": "ignore"}

SyncOutcome = Literal["success", "partial", "failed", "never"]


class LinkStatus(StrEnum):
    SYNCED = "synced"
    PENDING = "pending"
    CONFLICT = "conflict"
    ERROR = "error"


class OperationType(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MOVE = "move"


class OperationSource(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


class EntityType(StrEnum):
    BOOKMARK = "bookmark"
    FOLDER = "folder"


class FolderMapping(BaseModel):
    """Binding between one local folder and one remote collection."""

    model_config = _MODEL_CONFIG

    id: str = Field(default_factory=generate_id)
    local_folder_id: str = Field(alias="localFolderId")
    remote_collection_id: int = Field(alias="remoteCollectionId")
    folder_name: str = Field(default="", alias="folderName")
    remote_collection_name: str = Field(default="", alias="remoteCollectionName")
    parent_mapping_id: str | None = Field(default=None, alias="parentMappingId")
    depth: int = 0
    sync_children: bool = Field(default=False, alias="syncChildren")
    last_sync: int = Field(default=0, alias="lastSync")


class BookmarkLink(BaseModel):
    """Binding between one local bookmark and one remote item."""

    model_config = _MODEL_CONFIG

    id: str = Field(default_factory=generate_id)
    local_id: str = Field(alias="localId")
    remote_id: int = Field(alias="remoteId")
    url: str
    title: str = ""
    last_modified: int = Field(default_factory=now_ms, alias="lastModified")
    content_hash: str = Field(default="", alias="contentHash")
    sync_status: LinkStatus = Field(default=LinkStatus.SYNCED, alias="syncStatus")
    mapping_id: str = Field(alias="mappingId")
    error_message: str | None = Field(default=None, alias="errorMessage")


class SyncOperationData(BaseModel):
    """Payload of a queued operation; populated fields depend on type and source."""

    model_config = _MODEL_CONFIG

    local_id: str | None = Field(default=None, alias="localId")
    remote_id: int | None = Field(default=None, alias="remoteId")
    url: str | None = None
    title: str | None = None
    collection_id: int | None = Field(default=None, alias="collectionId")
    parent_folder_id: str | None = Field(default=None, alias="parentFolderId")
    old_collection_id: int | None = Field(default=None, alias="oldCollectionId")
    new_collection_id: int | None = Field(default=None, alias="newCollectionId")
    mapping_id: str | None = Field(default=None, alias="mappingId")


class SyncOperation(BaseModel):
    model_config = _MODEL_CONFIG

    id: str = Field(default_factory=generate_id)
    type: OperationType
    source: OperationSource
    entity_type: EntityType = Field(default=EntityType.BOOKMARK, alias="entityType")
    data: SyncOperationData = Field(default_factory=SyncOperationData)
    timestamp: int = Field(default_factory=now_ms)
    retries: int = 0
    max_retries: int = Field(default=3, alias="maxRetries")
    last_error: str | None = Field(default=None, alias="lastError")

    @property
    def dedupe_key(self) -> tuple[str, str, str | None, int | None]:
        return (self.type.value, self.source.value, self.data.local_id, self.data.remote_id)

    @property
    def batch_key(self) -> str:
        return self.data.local_id or self.id


class QueueState(BaseModel):
    model_config = _MODEL_CONFIG

    pending: list[SyncOperation] = Field(default_factory=list)
    failed: list[SyncOperation] = Field(default_factory=list)


class ProcessingLock(BaseModel):
    """Advisory lock record guarding queue processing."""

    model_config = _MODEL_CONFIG

    timestamp: int
    owner: str = ""


class SyncSettings(BaseModel):
    model_config = _MODEL_CONFIG

    enabled: bool = False
    sync_interval: int = Field(default=5, alias="syncInterval")
    last_full_sync: int = Field(default=0, alias="lastFullSync")
    debug_mode: bool = Field(default=False, alias="debugMode")


class SyncError(BaseModel):
    model_config = _MODEL_CONFIG

    timestamp: int = Field(default_factory=now_ms)
    operation: str
    message: str
    details: str | None = None


class SyncStats(BaseModel):
    """Aggregated counters; recomputable, never authoritative."""

    model_config = _MODEL_CONFIG

    total_synced: int = Field(default=0, alias="totalSynced")
    pending_operations: int = Field(default=0, alias="pendingOperations")
    failed_operations: int = Field(default=0, alias="failedOperations")
    last_sync_time: int = Field(default=0, alias="lastSyncTime")
    last_sync_status: SyncOutcome = Field(default="never", alias="lastSyncStatus")
    errors: list[SyncError] = Field(default_factory=list)


class SyncStatus(BaseModel):
    """User-facing read model derived from credentials, settings, registry and queue."""

    model_config = _MODEL_CONFIG

    is_authenticated: bool
    is_enabled: bool
    is_syncing: bool
    mappings_count: int
    links_count: int
    last_sync_time: int
    last_sync_status: SyncOutcome
    pending_operations: int
    failed_operations: int = 0
    user_name: str | None = None
