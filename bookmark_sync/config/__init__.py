from __future__ import annotations

from .raindrop import RaindropConfig
from .settings import AppConfig, RuntimeConfig, Settings, load_config
from .sync import SyncConfig

__all__ = [
    "AppConfig",
    "RaindropConfig",
    "RuntimeConfig",
    "Settings",
    "SyncConfig",
    "load_config",
]
