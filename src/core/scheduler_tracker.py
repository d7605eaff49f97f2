"""Execution tracking for scheduled jobs.

History lives in Redis when it is configured and in process memory
otherwise. A job that keeps failing after its retries lands in a bounded
dead-letter queue that the health endpoint exposes.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from src.core.config import Constants
from src.core.redis_client import redis_client


logger = logging.getLogger(__name__)

HISTORY_TTL_SECONDS = 86400 * 7
DEAD_LETTER_TTL_SECONDS = 86400 * 30
MAX_ERROR_LENGTH = 500

_COUNTERS = ("consecutive_failures", "success_count", "failure_count")


class JobTracker:
    """Track job execution history and health status."""

    def __init__(self) -> None:
        self._memory_storage: dict[str, dict[str, Any]] = {}
        self._dead_letter_queue: deque[dict[str, str]] = deque(maxlen=Constants.TRACKER_DEAD_LETTER_QUEUE_MAXLEN)

    @staticmethod
    def _key(job_name: str, field: str) -> str:
        return f"scheduler:job:{job_name}:{field}"

    def _memory(self, job_name: str) -> dict[str, Any]:
        return self._memory_storage.setdefault(job_name, {})

    async def record_job_start(self, job_name: str) -> None:
        started = datetime.now(UTC).isoformat()
        if redis_client.is_available:
            await redis_client.set(self._key(job_name, "current_run"), started, ttl_seconds=3600)
        else:
            self._memory(job_name)["current_run"] = started

    async def record_job_success(self, job_name: str, summary: str | None = None) -> None:
        """Record a successful run and the job's own summary of what it did."""
        finished = datetime.now(UTC).isoformat()

        if redis_client.is_available:
            await redis_client.set(self._key(job_name, "last_success"), finished, ttl_seconds=HISTORY_TTL_SECONDS)
            await redis_client.set(self._key(job_name, "consecutive_failures"), "0", ttl_seconds=HISTORY_TTL_SECONDS)
            if summary:
                await redis_client.set(self._key(job_name, "last_summary"), summary, ttl_seconds=HISTORY_TTL_SECONDS)
            await redis_client.increment(self._key(job_name, "success_count"))
            await redis_client.expire(self._key(job_name, "success_count"), HISTORY_TTL_SECONDS)
            await redis_client.delete(self._key(job_name, "current_run"))
            return

        data = self._memory(job_name)
        data["last_success"] = finished
        data["consecutive_failures"] = 0
        data["success_count"] = data.get("success_count", 0) + 1
        if summary:
            data["last_summary"] = summary
        data.pop("current_run", None)

    async def record_job_failure(self, job_name: str, error: str) -> int | None:
        """Record a failed run.

        Returns:
            Consecutive failure count, or None if Redis could not count it
        """
        failed = datetime.now(UTC).isoformat()
        error = error[:MAX_ERROR_LENGTH]

        if redis_client.is_available:
            await redis_client.set(self._key(job_name, "last_failure"), failed, ttl_seconds=HISTORY_TTL_SECONDS)
            await redis_client.set(self._key(job_name, "last_error"), error, ttl_seconds=HISTORY_TTL_SECONDS)
            consecutive = await redis_client.increment(self._key(job_name, "consecutive_failures"))
            await redis_client.expire(self._key(job_name, "consecutive_failures"), HISTORY_TTL_SECONDS)
            await redis_client.increment(self._key(job_name, "failure_count"))
            await redis_client.expire(self._key(job_name, "failure_count"), HISTORY_TTL_SECONDS)
            await redis_client.delete(self._key(job_name, "current_run"))
            return consecutive

        data = self._memory(job_name)
        data["last_failure"] = failed
        data["last_error"] = error
        data["consecutive_failures"] = data.get("consecutive_failures", 0) + 1
        data["failure_count"] = data.get("failure_count", 0) + 1
        data.pop("current_run", None)
        return data["consecutive_failures"]

    async def get_job_status(self, job_name: str) -> dict[str, Any]:
        fields = ("last_success", "last_failure", "last_error", "last_summary", "current_run", *_COUNTERS)
        if redis_client.is_available:
            raw = {field: await redis_client.get(self._key(job_name, field)) for field in fields}
        else:
            raw = {field: self._memory_storage.get(job_name, {}).get(field) for field in fields}

        status: dict[str, Any] = {"job_name": job_name}
        for field in fields:
            value = raw[field]
            status[field] = int(value) if field in _COUNTERS and value is not None else value
        for counter in _COUNTERS:
            status[counter] = status[counter] or 0
        status["current_run_started"] = status.pop("current_run")
        status["currently_running"] = status["current_run_started"] is not None
        return status

    async def add_to_dead_letter_queue(self, job_name: str, error: str, context: str) -> None:
        entry = {"job_name": job_name, "error": error, "context": context, "timestamp": datetime.now(UTC).isoformat()}
        self._dead_letter_queue.append(entry)
        logger.error("Job added to dead letter queue", extra=entry)

        if redis_client.is_available:
            await redis_client.set(
                f"scheduler:dlq:{job_name}:{entry['timestamp']}",
                f"{error} | {context}",
                ttl_seconds=DEAD_LETTER_TTL_SECONDS,
            )

    def get_dead_letter_queue(self) -> list[dict[str, str]]:
        return list(self._dead_letter_queue)


# Global job tracker instance
job_tracker = JobTracker()


async def retry_job_with_backoff(
    job_func: Callable[[], Awaitable[Any]],
    job_name: str,
    max_retries: int = 3,
    base_delay: float = 2.0,
) -> None:
    """Run a scheduled job, retrying whole-job failures with exponential backoff.

    The job's return value, when it has a ``summary`` attribute, is stored as
    the run's summary. Per-item failures inside the job are the job's concern;
    only an exception escaping the job counts as a failed attempt.
    """
    await job_tracker.record_job_start(job_name)

    last_error = None
    for attempt in range(max_retries):
        try:
            logger.info("Executing %s (attempt %d/%d)", job_name, attempt + 1, max_retries)
            result = await job_func()
        except Exception as e:
            last_error = str(e)
            logger.error("%s failed on attempt %d/%d: %s", job_name, attempt + 1, max_retries, last_error)
            if attempt < max_retries - 1:
                await asyncio.sleep(base_delay**attempt)
            continue

        await job_tracker.record_job_success(job_name, summary=getattr(result, "summary", None))
        logger.info("%s completed successfully", job_name)
        return

    error_msg = f"Failed after {max_retries} attempts: {last_error}"
    consecutive_failures = await job_tracker.record_job_failure(job_name, error_msg)
    logger.error(
        f"{job_name} failed after all retry attempts",
        extra={"error": error_msg, "consecutive_failures": consecutive_failures},
    )

    if consecutive_failures and consecutive_failures >= Constants.TRACKER_FAILURE_THRESHOLD:
        await job_tracker.add_to_dead_letter_queue(
            job_name=job_name,
            error=last_error or "Unknown error",
            context=f"Failed {consecutive_failures} consecutive times",
        )
