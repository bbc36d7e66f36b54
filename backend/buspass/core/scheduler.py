"""APScheduler setup for periodic tasks."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from buspass.core.notifications import LowBalanceDispatcher

logger = logging.getLogger(__name__)


def create_scheduler(dispatcher: LowBalanceDispatcher) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from buspass.config import settings

    scheduler = AsyncIOScheduler()

    # Re-send low-balance alerts that failed during a scan
    scheduler.add_job(
        dispatcher.retry_pending,
        "interval",
        seconds=settings.notification_retry_seconds,
        id="retry_low_balance",
        name="Retry failed low-balance alerts",
        max_instances=1,
    )

    return scheduler
