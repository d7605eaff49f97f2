"""Tests for module job registration."""

from unittest.mock import AsyncMock, patch

import pytest

from src.core import scheduler
from src.core.module import get_all_scheduled_jobs, get_all_table_schemas
from src.modules.tasks import scheduler_jobs


@pytest.mark.unit
class TestScheduledJobs:
    def test_jobs_are_registered_with_intervals(self, monkeypatch):
        monkeypatch.setattr(scheduler_jobs.settings, "materialize_interval_minutes", 10)
        monkeypatch.setattr(scheduler_jobs.settings, "penalty_interval_minutes", 5)

        jobs = {job.id: job for job in get_all_scheduled_jobs()}

        assert jobs[scheduler_jobs.MATERIALIZE_JOB_ID].cron == "*/10 * * * *"
        assert jobs[scheduler_jobs.PENALTY_JOB_ID].cron == "*/5 * * * *"
        assert scheduler.get_job_ids() == [scheduler_jobs.MATERIALIZE_JOB_ID, scheduler_jobs.PENALTY_JOB_ID]

    async def test_job_runs_through_retry_wrapper(self):
        job = next(job for job in scheduler_jobs.get_scheduled_jobs() if job.id == scheduler_jobs.PENALTY_JOB_ID)

        with patch.object(scheduler_jobs, "retry_job_with_backoff", AsyncMock()) as retry:
            await job.func()

        retry.assert_awaited_once_with(scheduler_jobs.process_penalties, scheduler_jobs.PENALTY_JOB_ID)

    def test_tables_are_unique_across_modules(self):
        assert set(get_all_table_schemas()) == {
            "members",
            "reward_redemptions",
            "tasks",
            "task_transfers",
            "negotiations",
        }
