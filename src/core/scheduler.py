"""In-process cron trigger for module jobs."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.core.config import settings
from src.core.module import get_all_scheduled_jobs


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone=settings.household_timezone)


def start_scheduler() -> None:
    """Register every module's jobs and start the scheduler.

    This should be called during FastAPI app startup.
    """
    logger.info("Starting scheduler")

    for job in get_all_scheduled_jobs():
        scheduler.add_job(
            job.func,
            trigger=CronTrigger.from_crontab(job.cron, timezone=settings.household_timezone),
            id=job.id,
            name=job.name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info("Scheduled %s: %s", job.id, job.cron)

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    if not scheduler.running:
        return
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")


def get_job_ids() -> list[str]:
    return [job.id for job in get_all_scheduled_jobs()]
