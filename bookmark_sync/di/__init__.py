"""Object graph wiring."""

from bookmark_sync.di.container import SyncContainer

__all__ = ["SyncContainer"]
