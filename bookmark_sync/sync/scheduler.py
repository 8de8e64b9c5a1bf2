"""Background scheduler for the periodic pull and the queue drain."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from bookmark_sync.core.logging_utils import generate_correlation_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

PERIODIC_PULL_JOB = "periodic_pull"
QUEUE_DRAIN_JOB = "queue_drain"


class SyncScheduler:
    """Runs ``pull`` every ``pull_interval_minutes`` and ``drain`` every ``drain_interval_sec``.

    A tick that raises is logged and the schedule continues. Each job runs at
    most one instance at a time; overlapping work is further absorbed by the
    reentrancy guard and the queue lock.
    """

    def __init__(
        self,
        pull: Callable[..., Awaitable[Any]],
        drain: Callable[..., Awaitable[Any]],
        *,
        pull_interval_minutes: float,
        drain_interval_sec: float,
    ) -> None:
        self._pull = pull
        self._drain = drain
        self.pull_interval_minutes = pull_interval_minutes
        self.drain_interval_sec = drain_interval_sec
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    async def start(self) -> None:
        """Start both jobs. Must be called from a running event loop."""
        if self._started:
            logger.debug("sync_scheduler_already_started")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._run_pull,
            trigger=IntervalTrigger(minutes=self.pull_interval_minutes),
            id=PERIODIC_PULL_JOB,
            name="Periodic pull from Raindrop",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self._run_drain,
            trigger=IntervalTrigger(seconds=self.drain_interval_sec),
            id=QUEUE_DRAIN_JOB,
            name="Operation queue drain",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.start()
        self._started = True
        logger.info(
            "sync_scheduler_started",
            extra={
                "pull_interval_minutes": self.pull_interval_minutes,
                "drain_interval_sec": self.drain_interval_sec,
            },
        )

    async def stop(self) -> None:
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self._started = False
            logger.info("sync_scheduler_stopped")

    async def reschedule(self, pull_interval_minutes: float) -> None:
        """Change the pull interval; takes effect immediately when running."""
        self.pull_interval_minutes = pull_interval_minutes
        if self._scheduler and self._started:
            self._scheduler.reschedule_job(
                PERIODIC_PULL_JOB, trigger=IntervalTrigger(minutes=pull_interval_minutes)
            )
            logger.info(
                "sync_scheduler_rescheduled",
                extra={"pull_interval_minutes": pull_interval_minutes},
            )

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None

    async def _run_pull(self) -> None:
        correlation_id = generate_correlation_id()
        logger.info("scheduled_pull_starting", extra={"correlation_id": correlation_id})
        try:
            await self._pull(correlation_id=correlation_id)
        except Exception as exc:
            logger.exception(
                "scheduled_pull_failed",
                extra={"correlation_id": correlation_id, "error": str(exc)},
            )

    async def _run_drain(self) -> None:
        correlation_id = generate_correlation_id()
        try:
            await self._drain(correlation_id=correlation_id)
        except Exception as exc:
            logger.exception(
                "scheduled_queue_drain_failed",
                extra={"correlation_id": correlation_id, "error": str(exc)},
            )
