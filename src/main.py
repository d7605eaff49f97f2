"""chorepoints - household chores, allowances and recurring tasks."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from src.core.config import constants, settings
from src.core.db_client import close_connection, init_db
from src.core.logging import configure_logfire, instrument_fastapi
from src.core.redis_client import redis_client
from src.core.scheduler import get_job_ids, start_scheduler, stop_scheduler
from src.core.scheduler_tracker import job_tracker
from src.interface.api_router import router as api_router
from src.services import notification_service


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Log whether the optional Redis backend answers. Never fails startup."""
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    if await redis_client.ping():
        logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
    else:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    configure_logfire()

    await init_db()
    logger.info("Database initialized")

    await check_redis_connectivity()

    if settings.enable_scheduler:
        start_scheduler()
    yield
    stop_scheduler()
    await notification_service.drain(timeout=constants.API_TIMEOUT_SECONDS)
    await redis_client.close()
    await close_connection()


app = FastAPI(
    title="chorepoints",
    description="Household chore and allowance tracker",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

app.include_router(api_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/scheduler")
async def scheduler_health_check() -> JSONResponse:
    """Scheduler health check endpoint with job statuses."""
    job_statuses = {job_id: await job_tracker.get_job_status(job_id) for job_id in get_job_ids()}
    dlq = job_tracker.get_dead_letter_queue()

    has_failures = any(status["consecutive_failures"] > 0 for status in job_statuses.values())
    overall_status = "degraded" if has_failures else "healthy"
    if dlq:
        overall_status = "critical"

    return JSONResponse(
        content={
            "status": overall_status,
            "jobs": job_statuses,
            "dead_letter_queue_size": len(dlq),
            "dead_letter_queue": dlq,
        },
        status_code=200 if overall_status == "healthy" else 503,
    )
