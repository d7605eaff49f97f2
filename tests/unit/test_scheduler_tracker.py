"""Tests for scheduled job tracking and retries."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.core import scheduler_tracker
from src.core.config import Constants
from src.core.scheduler_tracker import JobTracker, retry_job_with_backoff
from src.models.service_models import MaterializationResult


@pytest.fixture
def tracker():
    """Fresh in-memory tracker with Redis disabled."""
    fresh = JobTracker()
    redis = MagicMock()
    redis.is_available = False
    with (
        patch.object(scheduler_tracker, "redis_client", redis),
        patch.object(scheduler_tracker, "job_tracker", fresh),
    ):
        yield fresh


@pytest.mark.unit
class TestJobTracker:
    """Test in-memory job history."""

    async def test_unknown_job_status(self, tracker):
        status = await tracker.get_job_status("never_ran")

        assert status["job_name"] == "never_ran"
        assert status["consecutive_failures"] == 0
        assert status["success_count"] == 0
        assert status["current_run_started"] is None
        assert status["currently_running"] is False

    async def test_start_then_success(self, tracker):
        await tracker.record_job_start("materialize_instances")
        running = await tracker.get_job_status("materialize_instances")
        await tracker.record_job_success("materialize_instances", summary="generated 2 instances")
        done = await tracker.get_job_status("materialize_instances")

        assert running["currently_running"] is True
        assert done["currently_running"] is False
        assert done["success_count"] == 1
        assert done["last_summary"] == "generated 2 instances"

    async def test_failures_count_until_success(self, tracker):
        assert await tracker.record_job_failure("process_penalties", "boom") == 1
        assert await tracker.record_job_failure("process_penalties", "boom") == 2  # noqa: PLR2004
        await tracker.record_job_success("process_penalties")

        status = await tracker.get_job_status("process_penalties")
        assert status["consecutive_failures"] == 0
        assert status["failure_count"] == 2  # noqa: PLR2004
        assert status["last_error"] == "boom"

    async def test_error_is_truncated(self, tracker):
        await tracker.record_job_failure("process_penalties", "x" * 2000)

        status = await tracker.get_job_status("process_penalties")
        assert len(status["last_error"]) == scheduler_tracker.MAX_ERROR_LENGTH


@pytest.mark.unit
class TestRetryJobWithBackoff:
    """Test whole-job retries and the dead-letter queue."""

    async def test_stores_result_summary(self, tracker):
        job = AsyncMock(return_value=MaterializationResult(generated_count=3, templates_processed=2))

        await retry_job_with_backoff(job, "materialize_instances", base_delay=0)

        status = await tracker.get_job_status("materialize_instances")
        assert status["last_summary"] == "generated 3 instances for 2 of 2 templates"
        job.assert_awaited_once()

    async def test_retries_then_succeeds(self, tracker):
        job = AsyncMock(side_effect=[RuntimeError("locked"), MaterializationResult()])

        with patch.object(scheduler_tracker.asyncio, "sleep", AsyncMock()):
            await retry_job_with_backoff(job, "materialize_instances", max_retries=3)

        assert job.await_count == 2  # noqa: PLR2004
        assert (await tracker.get_job_status("materialize_instances"))["consecutive_failures"] == 0

    async def test_dead_letter_after_repeated_failures(self, tracker):
        job = AsyncMock(side_effect=RuntimeError("store down"))

        with patch.object(scheduler_tracker.asyncio, "sleep", AsyncMock()):
            for _ in range(Constants.TRACKER_FAILURE_THRESHOLD):
                await retry_job_with_backoff(job, "process_penalties", max_retries=2)

        dlq = tracker.get_dead_letter_queue()
        assert len(dlq) == 1
        assert dlq[0]["job_name"] == "process_penalties"
        assert dlq[0]["error"] == "store down"
        status = await tracker.get_job_status("process_penalties")
        assert status["consecutive_failures"] == Constants.TRACKER_FAILURE_THRESHOLD
        assert status["last_error"] == "Failed after 2 attempts: store down"
