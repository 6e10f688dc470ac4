"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from changewatch.worker.tasks import task_runner
from changewatch.config import settings

logger = logging.getLogger(__name__)


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Checkpoint evaluation runs daily at settings.checkpoint_cron_hour:minute UTC
    - Recovery runs every settings.recovery_interval_minutes and repeats any
      work the daily trigger missed

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler(timezone="UTC")
    recovery_interval = max(1, int(settings.recovery_interval_minutes))

    scheduler.add_job(
        task_runner.run_checkpoints,
        CronTrigger(
            hour=settings.checkpoint_cron_hour,
            minute=settings.checkpoint_cron_minute,
            timezone="UTC",
        ),
        id="checkpoints",
        name="Evaluate due change checkpoints",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=3600,
        replace_existing=True,
    )

    scheduler.add_job(
        task_runner.recover_missed_runs,
        IntervalTrigger(minutes=recovery_interval),
        id="recovery",
        name="Recover missed analyses and checkpoint runs",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: checkpoints daily at %02d:%02d UTC, recovery every %d minutes",
        settings.checkpoint_cron_hour,
        settings.checkpoint_cron_minute,
        recovery_interval,
    )

    return scheduler
