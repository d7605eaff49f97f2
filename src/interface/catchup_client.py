"""Client-side catch-up trigger.

Apps call ``check()`` when they come to the foreground or on a poll timer.
Calls within the minimum interval of the last completed check are skipped,
and concurrent calls share the single request already in flight.
"""

import asyncio
import logging
import time
from collections.abc import Callable

import httpx

from src.core.config import constants, settings
from src.models.service_models import CatchUpResult


logger = logging.getLogger(__name__)

CHECK_PATH = "/recurring-tasks/check-overdue"


class CatchUpClient:
    """Throttled, de-duplicated caller of the catch-up endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        caller_id: str = "global",
        min_interval_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._caller_id = caller_id
        self._min_interval = (
            settings.catchup_min_interval_seconds if min_interval_seconds is None else min_interval_seconds
        )
        self._transport = transport
        self._clock = clock
        self._last_check: float | None = None
        self._in_flight: asyncio.Task[CatchUpResult | None] | None = None

    def _too_soon(self) -> bool:
        return self._last_check is not None and self._clock() - self._last_check < self._min_interval

    async def check(self, *, force: bool = False) -> CatchUpResult | None:
        """Run a catch-up check unless one ran recently.

        Returns:
            The server's result, or None if the call was skipped or failed
        """
        if self._in_flight is not None and not self._in_flight.done():
            return await self._in_flight

        if not force and self._too_soon():
            logger.debug("Catch-up check skipped, last one was under %ss ago", self._min_interval)
            return None

        self._in_flight = asyncio.ensure_future(self._request())
        try:
            return await self._in_flight
        finally:
            self._in_flight = None

    async def _request(self) -> CatchUpResult | None:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=constants.API_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(CHECK_PATH, headers={"X-Caller-Id": self._caller_id})
        except httpx.HTTPError as e:
            logger.warning("Catch-up check failed: %s", e)
            return None

        # A throttled or failed call still counts, so the next attempt waits
        self._last_check = self._clock()

        if response.status_code == 429:  # noqa: PLR2004
            logger.debug("Catch-up check throttled by server")
            return None
        if not response.is_success:
            logger.warning("Catch-up check returned %s", response.status_code)
            return None

        result = CatchUpResult.model_validate(response.json())
        if result.generated_count or result.penalties_processed:
            logger.info(
                "Catch-up generated %d instances and applied %d penalties",
                result.generated_count,
                result.penalties_processed,
            )
        return result

    async def run_forever(self, interval_seconds: float = constants.CATCHUP_POLL_INTERVAL_SECONDS) -> None:
        """Poll until cancelled."""
        while True:
            await self.check()
            await asyncio.sleep(interval_seconds)
