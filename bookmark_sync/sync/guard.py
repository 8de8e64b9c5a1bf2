from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


class ReentrancyGuard:
    """Depth counter marking engine-originated local mutations in progress.

    Overlapping passes each hold their own level, so one pass finishing never
    clears another's.
    """

    def __init__(self) -> None:
        self._depth = 0

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def active(self) -> bool:
        return self._depth > 0

    @contextmanager
    def hold(self, reason: str = "sync") -> Iterator[None]:
        self._depth += 1
        logger.debug("sync_guard_enter", extra={"reason": reason, "depth": self._depth})
        try:
            yield
        finally:
            self._depth -= 1
            logger.debug("sync_guard_exit", extra={"reason": reason, "depth": self._depth})
