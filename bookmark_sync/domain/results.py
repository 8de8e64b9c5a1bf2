"""Result models returned by reconciliation passes."""

from __future__ import annotations

from pydantic import BaseModel, Field, computed_field

from bookmark_sync.domain.models import FolderMapping, SyncStats, SyncStatus


class InitialSyncResult(BaseModel):
    matched: int = 0
    created_in_raindrop: int = 0
    created_locally: int = 0
    errors: list[str] = Field(default_factory=list)


class PullResult(BaseModel):
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False

    def merge(self, other: PullResult) -> None:
        self.created += other.created
        self.updated += other.updated
        self.deleted += other.deleted
        self.errors.extend(other.errors)


class PushResult(BaseModel):
    created: int = 0
    linked: int = 0
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False

    def merge(self, other: PushResult) -> None:
        self.created += other.created
        self.linked += other.linked
        self.errors.extend(other.errors)


class FullResyncResult(BaseModel):
    success: bool
    results: dict[str, InitialSyncResult] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)


class QueueRunResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def retried(self) -> int:
        return self.processed - self.succeeded - self.failed


class TriggerSyncResult(BaseModel):
    queue: QueueRunResult
    initial: dict[str, InitialSyncResult] = Field(default_factory=dict)
    push: PushResult
    pull: PullResult
    stats: SyncStats
    status: SyncStatus


class AddMappingResult(BaseModel):
    """Mappings created by one ``add_mapping`` call (root first) and their initial syncs."""

    mappings: list[FolderMapping] = Field(default_factory=list)
    initial: dict[str, InitialSyncResult] = Field(default_factory=dict)
