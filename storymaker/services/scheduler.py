"""Periodic cleanup of finished jobs."""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from storymaker.services.job_store import JobStore

logger = logging.getLogger(__name__)


class CleanupScheduler:
    """Deletes terminal jobs past the retention window, once at start and then on an interval."""

    def __init__(
        self,
        store: JobStore,
        interval_seconds: float = 3600.0,
        retention: timedelta = timedelta(hours=24),
    ) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self.retention = retention
        self._timer: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        """Start the timer; calling it while running does nothing."""
        if self.running:
            return
        self._timer = asyncio.create_task(self._run(), name="storymaker-cleanup")
        logger.info(
            f"Cleanup scheduled every {self.interval_seconds:g}s "
            f"(retention: {self.retention})"
        )

    async def stop(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        try:
            await self._timer
        except asyncio.CancelledError:
            pass
        self._timer = None

    async def _run(self) -> None:
        while True:
            tick = asyncio.create_task(self.run_once())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.interval_seconds)

    async def run_once(self) -> int:
        """One cleanup pass; errors are logged and reported as zero deletions."""
        try:
            deleted = await self.store.cleanup(self.retention)
        except Exception as e:
            logger.error(f"Job cleanup failed: {e}")
            return 0
        if deleted:
            logger.info(f"Cleanup removed {deleted} jobs")
        return deleted


def create_cleanup_scheduler(store: JobStore) -> CleanupScheduler:
    """Create a CleanupScheduler using application settings."""
    from storymaker.config import get_settings

    settings = get_settings()
    return CleanupScheduler(
        store=store,
        interval_seconds=settings.cleanup_interval_seconds,
        retention=timedelta(hours=settings.job_retention_hours),
    )
