"""
Maintenance scheduler for the booking engine.

Runs two recurring jobs:
1. Purge expired slot cache entries (and idle rate-limit counters) every 10 minutes
2. Reset monthly booking usage counters daily
"""

import asyncio
import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.cron import CronTrigger  # type: ignore

from core.constants import CACHE_CLEANUP_INTERVAL_MINUTES, USAGE_RESET_HOUR_UTC
from core.database import get_db_context
from services.rate_limiter import RateLimiter
from services.slot_cache import SlotCache
from services.usage_service import UsageLimiter

logger = logging.getLogger(__name__)

# Global singleton instance
_maintenance_scheduler: Optional['MaintenanceScheduler'] = None


class MaintenanceScheduler:
    """
    Scheduler for cache and usage housekeeping.

    Database sessions are created fresh for each run to avoid stale session issues.
    """

    def __init__(
        self,
        cache: SlotCache,
        usage_limiter: UsageLimiter,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.cache = cache
        self.usage_limiter = usage_limiter
        self.rate_limiter = rate_limiter
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._is_started = False

    async def start_scheduler(self) -> None:
        """
        Start the background scheduler.

        This should be called during application startup.
        """
        if self._is_started:
            logger.warning("Maintenance scheduler is already started")
            return

        self.scheduler.add_job(  # type: ignore
            self._run_cache_cleanup,
            CronTrigger(minute=f"*/{CACHE_CLEANUP_INTERVAL_MINUTES}"),
            id="slot_cache_cleanup",
            name="Slot cache cleanup",
            replace_existing=True,
            misfire_grace_time=300,
        )
        self.scheduler.add_job(  # type: ignore
            self._run_usage_reset,
            CronTrigger(hour=USAGE_RESET_HOUR_UTC, minute=5),
            id="monthly_usage_reset",
            name="Monthly booking usage reset",
            replace_existing=True,
            misfire_grace_time=3600,  # Allow 1 hour grace time if server was down
        )

        self.scheduler.start()
        self._is_started = True
        logger.info(
            f"Maintenance scheduler started (cache cleanup every {CACHE_CLEANUP_INTERVAL_MINUTES} min, "
            f"usage reset daily at {USAGE_RESET_HOUR_UTC:02d}:05 UTC)"
        )

    async def stop_scheduler(self) -> None:
        """
        Stop the background scheduler.

        This should be called during application shutdown.
        """
        if self._is_started:
            self.scheduler.shutdown(wait=True)
            self._is_started = False
            logger.info("Maintenance scheduler stopped")

    async def _run_cache_cleanup(self) -> None:
        try:
            removed = self.cache.cleanup_expired()
            if self.rate_limiter is not None:
                self.rate_limiter.cleanup()
            logger.debug(f"Slot cache cleanup removed {removed} expired entries; stats: {self.cache.stats()}")
        except Exception as e:
            logger.exception(f"Error during slot cache cleanup: {e}")
            # Don't re-raise - allow scheduler to continue

    async def _run_usage_reset(self) -> None:
        """
        Reset usage counters left over from previous months.

        Offloads the blocking database work to a thread so the event loop stays free.
        """
        logger.info("Starting scheduled usage reset...")
        await asyncio.to_thread(self._execute_usage_reset)

    def _execute_usage_reset(self) -> None:
        with get_db_context() as db:
            try:
                count = self.usage_limiter.reset_monthly_usage(db)
                logger.info(f"Scheduled usage reset completed ({count} business(es))")
            except Exception as e:
                logger.exception(f"Error during scheduled usage reset: {e}")
                # Don't re-raise - allow scheduler to continue


def get_maintenance_scheduler() -> Optional[MaintenanceScheduler]:
    """
    Get the global maintenance scheduler instance, if one was started.

    Returns:
        MaintenanceScheduler or None
    """
    return _maintenance_scheduler


async def start_maintenance_scheduler(
    cache: SlotCache,
    usage_limiter: UsageLimiter,
    rate_limiter: Optional[RateLimiter] = None,
) -> MaintenanceScheduler:
    """
    Create and start the global maintenance scheduler.

    This should be called during application startup.
    """
    global _maintenance_scheduler
    if _maintenance_scheduler is None:
        _maintenance_scheduler = MaintenanceScheduler(cache, usage_limiter, rate_limiter)
    await _maintenance_scheduler.start_scheduler()
    return _maintenance_scheduler


async def stop_maintenance_scheduler() -> None:
    """
    Stop the global maintenance scheduler.

    This should be called during application shutdown.
    """
    global _maintenance_scheduler
    if _maintenance_scheduler:
        await _maintenance_scheduler.stop_scheduler()
        _maintenance_scheduler = None
