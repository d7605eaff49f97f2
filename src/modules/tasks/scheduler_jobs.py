"""Scheduled jobs for the tasks module.

Both jobs are idempotent, so the cron trigger, the HTTP endpoints and
client catch-up checks may all run them without coordinating.
"""

import logging

from src.core.config import settings
from src.core.module import ScheduledJob
from src.core.scheduler_tracker import retry_job_with_backoff
from src.models.service_models import MaterializationResult, PenaltyResult
from src.modules.tasks import materializer, penalties


logger = logging.getLogger(__name__)

MATERIALIZE_JOB_ID = "materialize_instances"
PENALTY_JOB_ID = "process_penalties"


async def materialize_instances() -> MaterializationResult:
    """Create the instances that are due for every enabled template."""
    return await materializer.ensure_current_instances()


async def process_penalties() -> PenaltyResult:
    """Penalize overdue instances that have not been penalized yet."""
    return await penalties.process_overdue_penalties()


def _every_minutes(minutes: int) -> str:
    return f"*/{minutes} * * * *"


def get_scheduled_jobs() -> list[ScheduledJob]:
    """Return scheduled jobs for the tasks module."""
    return [
        ScheduledJob(
            id=MATERIALIZE_JOB_ID,
            name="Materialize Recurring Task Instances",
            cron=_every_minutes(settings.materialize_interval_minutes),
            func=lambda: retry_job_with_backoff(materialize_instances, MATERIALIZE_JOB_ID),
        ),
        ScheduledJob(
            id=PENALTY_JOB_ID,
            name="Apply Overdue Penalties",
            cron=_every_minutes(settings.penalty_interval_minutes),
            func=lambda: retry_job_with_backoff(process_penalties, PENALTY_JOB_ID),
        ),
    ]
