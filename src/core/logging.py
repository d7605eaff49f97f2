"""Logging and observability configuration using Pydantic Logfire.

All modules log through the standard library (``logging.getLogger(__name__)``);
Logfire captures and enriches those records once configured.

Service operations are wrapped in spans:
    with span("materializer.ensure_current_instances"):
        ...
"""

import logging

import logfire
from fastapi import FastAPI

from src.core.config import settings


def configure_logfire() -> None:
    """Configure Pydantic Logfire with token from environment.

    Nothing is shipped unless a token is present, so local runs and tests stay offline.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name="chorepoints",
        service_version="0.1.0",
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured successfully")


def instrument_fastapi(app: FastAPI) -> None:
    """Add Logfire instrumentation to FastAPI application."""
    logfire.instrument_fastapi(app)
    logger = logging.getLogger(__name__)
    logger.info("FastAPI instrumentation configured")


def span(name: str) -> logfire.LogfireSpan:
    """Create a custom span for service layer functions."""
    return logfire.span(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """Log a message with structured context fields.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        **context: Additional context fields (task_id, template_id, member_id, ...)

    Usage:
        log_with_context(logger, "info", "Penalty applied", task_id="12", points=5)
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)
