"""Fixed-window rate limiting backed by Redis.

Used to keep client-driven catch-up checks from hammering the materializer
and penalty processor. When Redis is absent or failing, requests are allowed:
both operations are idempotent, so the limiter only saves work.
"""

import logging
from datetime import UTC, datetime

from fastapi import HTTPException

from src.core.config import settings
from src.core.redis_client import redis_client


logger = logging.getLogger(__name__)

CATCHUP_SCOPE = "catchup"


class RateLimiter:
    """Count requests per (scope, identifier) in fixed windows."""

    async def check_rate_limit(
        self,
        scope: str,
        identifier: str,
        limit: int,
        window_seconds: int,
    ) -> None:
        """Raise 429 once ``limit`` requests were seen in the current window.

        Raises:
            HTTPException: 429 with a Retry-After header when the limit is exceeded
        """
        if not redis_client.is_available:
            logger.debug("rate_limit_check_skipped", extra={"reason": "redis_unavailable"})
            return

        now = datetime.now(UTC)
        window_start = int(now.timestamp()) // window_seconds
        key = f"ratelimit:{scope}:{identifier}:{window_start}"

        try:
            count = await redis_client.increment(key)
            if count is None:
                logger.warning("rate_limit_check_failed", extra={"reason": "redis_increment_failed"})
                return

            if count == 1:
                await redis_client.expire(key, window_seconds)
        except (RuntimeError, ConnectionError, OSError):
            logger.exception("rate_limit_check_error")
            return

        if count > limit:
            retry_after = window_seconds - (int(now.timestamp()) % window_seconds)
            logger.info(
                "rate_limit_exceeded",
                extra={"scope": scope, "identifier": identifier, "count": count, "retry_after": retry_after},
            )
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers={"Retry-After": str(retry_after), "X-RateLimit-Limit": str(limit)},
            )

    async def check_catchup_rate_limit(self, caller_id: str) -> None:
        """Allow one catch-up check per caller per configured interval."""
        await self.check_rate_limit(
            scope=CATCHUP_SCOPE,
            identifier=caller_id,
            limit=1,
            window_seconds=settings.catchup_min_interval_seconds,
        )


# Global rate limiter instance
rate_limiter = RateLimiter()
