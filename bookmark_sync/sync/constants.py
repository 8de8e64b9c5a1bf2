"""Names of persisted records and sync defaults."""

from __future__ import annotations

STORAGE_KEY_API_TOKEN = "api_token"
STORAGE_KEY_SETTINGS = "sync_settings"
STORAGE_KEY_MAPPINGS = "folder_mappings"
STORAGE_KEY_LINKS = "bookmark_links"
STORAGE_KEY_QUEUE = "sync_queue"
STORAGE_KEY_STATS = "sync_stats"
STORAGE_KEY_QUEUE_LOCK = "queue_processing_lock"

ALL_STORAGE_KEYS: tuple[str, ...] = (
    STORAGE_KEY_API_TOKEN,
    STORAGE_KEY_SETTINGS,
    STORAGE_KEY_MAPPINGS,
    STORAGE_KEY_LINKS,
    STORAGE_KEY_QUEUE,
    STORAGE_KEY_STATS,
    STORAGE_KEY_QUEUE_LOCK,
)

DEFAULT_MAX_RETRIES = 3
DEFAULT_FAILED_QUEUE_LIMIT = 100
DEFAULT_RECENT_ERRORS_LIMIT = 50
DEFAULT_LOCK_STALE_SECONDS = 300.0
DEFAULT_BATCH_WINDOW_SECONDS = 0.3
DEFAULT_MAX_NESTING_DEPTH = 5
