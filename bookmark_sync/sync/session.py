from __future__ import annotations

import logging
from dataclasses import dataclass, field

from bookmark_sync.sync.guard import ReentrancyGuard

logger = logging.getLogger(__name__)


@dataclass
class SyncSession:
    """Process-scoped mutable state shared by the sync components.

    ``cached_user_name`` is cleared whenever the credential changes;
    ``listeners_registered`` is cleared when sync is disabled or on logout.
    """

    guard: ReentrancyGuard = field(default_factory=ReentrancyGuard)
    cached_user_name: str | None = None
    listeners_registered: bool = False

    def on_credential_changed(self) -> None:
        if self.cached_user_name is not None:
            logger.debug("cached_user_name_invalidated")
        self.cached_user_name = None
