"""Fire-and-forget notifications for task events.

Events are POSTed as JSON to the configured webhook, which owns actual push
delivery. Every public function swallows and logs delivery failures: by the
time a notification is sent the state change it describes is already
committed and must stay that way. Batch jobs hand notifications to
``send_in_background`` so a slow or dead webhook never holds up a batch.
"""

import asyncio
import logging
from collections.abc import Coroutine
from enum import StrEnum
from typing import Any

import httpx

from src.core.clock import to_iso, utc_now
from src.core.config import constants, settings
from src.core.logging import span
from src.models.service_models import NotificationResult


logger = logging.getLogger(__name__)

HTTP_CLIENT_ERROR_START = 400
HTTP_CLIENT_ERROR_END = 500

_in_flight: set[asyncio.Task[NotificationResult]] = set()


class NotificationEvent(StrEnum):
    """Events delivered to the notification webhook."""

    TASK_CREATED = "task_created"
    TASK_APPROVED = "task_approved"
    TASK_OVERDUE = "task_overdue"
    TASK_PICKED_UP = "task_picked_up"
    TRANSFER_OFFERED = "transfer_offered"
    TRANSFER_ACCEPTED = "transfer_accepted"
    PARENT_REQUEST_SENT = "parent_request_sent"
    PARENT_REQUEST_ACCEPTED = "parent_request_accepted"


async def _post_event(*, payload: dict[str, Any], max_retries: int, retry_delay: float) -> NotificationResult:
    """POST one event, retrying server errors and network failures with backoff."""
    event = payload["event"]
    url = settings.notification_webhook_url or ""
    last_error = "Max retries exceeded"

    for attempt in range(max_retries):
        try:
            async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
                response = await client.post(url, json=payload)

            if response.is_success:
                return NotificationResult(delivered=True, event=event)

            if HTTP_CLIENT_ERROR_START <= response.status_code < HTTP_CLIENT_ERROR_END:
                return NotificationResult(delivered=False, event=event, error=f"Client error: {response.status_code}")

            last_error = f"Server error: {response.status_code}"
        except httpx.HTTPError as e:
            last_error = f"Failed after retries: {e!s}"

        if attempt < max_retries - 1:
            await asyncio.sleep(retry_delay * (2**attempt))

    return NotificationResult(delivered=False, event=event, error=last_error)


async def dispatch(
    *,
    event: NotificationEvent,
    recipient_id: str | None,
    data: dict[str, Any],
    retry_delay: float = 0.5,
) -> NotificationResult:
    """Send an event to the webhook. Never raises."""
    with span("notification_service.dispatch"):
        if not settings.notification_webhook_url:
            logger.debug("Notification webhook not configured, skipping %s", event)
            return NotificationResult(delivered=False, event=event, error="Webhook not configured")

        payload = {
            "event": event.value,
            "recipient_id": recipient_id,
            "sent_at": to_iso(utc_now()),
            "data": data,
        }
        try:
            result = await _post_event(
                payload=payload, max_retries=constants.NOTIFICATION_MAX_RETRIES, retry_delay=retry_delay
            )
        except Exception as e:
            logger.warning("Notification %s for %s failed: %s", event, recipient_id, e)
            return NotificationResult(delivered=False, event=event, error=str(e))

        if not result.delivered:
            logger.warning("Notification %s for %s not delivered: %s", event, recipient_id, result.error)
        return result


def _forget(task: asyncio.Task[NotificationResult]) -> None:
    _in_flight.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Background notification failed: %s", task.exception())


def send_in_background(notification: Coroutine[Any, Any, NotificationResult]) -> asyncio.Task[NotificationResult]:
    """Deliver a notification without waiting for it.

    The task stays referenced until it finishes; ``drain`` waits for whatever
    is still in flight.
    """
    task = asyncio.create_task(notification)
    _in_flight.add(task)
    task.add_done_callback(_forget)
    return task


async def drain(timeout: float | None = None) -> None:
    """Wait for background notifications that are still being delivered."""
    if _in_flight:
        await asyncio.wait(set(_in_flight), timeout=timeout)


async def notify_task_created(*, task: dict[str, Any]) -> NotificationResult:
    return await dispatch(
        event=NotificationEvent.TASK_CREATED,
        recipient_id=task.get("assigned_to"),
        data={"task_id": task["id"], "title": task["title"], "due_date": task.get("due_date")},
    )


async def notify_task_approved(*, task: dict[str, Any], points_awarded: int) -> NotificationResult:
    return await dispatch(
        event=NotificationEvent.TASK_APPROVED,
        recipient_id=task.get("assigned_to"),
        data={"task_id": task["id"], "title": task["title"], "points_awarded": points_awarded},
    )


async def notify_task_overdue(*, task: dict[str, Any], penalty_points: int) -> NotificationResult:
    """Tell the assignee a penalty was applied."""
    return await dispatch(
        event=NotificationEvent.TASK_OVERDUE,
        recipient_id=task.get("assigned_to"),
        data={
            "task_id": task["id"],
            "title": task["title"],
            "due_date": task.get("due_date"),
            "penalty_points": penalty_points,
        },
    )


async def notify_task_picked_up(*, task: dict[str, Any]) -> NotificationResult:
    return await dispatch(
        event=NotificationEvent.TASK_PICKED_UP,
        recipient_id=task.get("created_by"),
        data={"task_id": task["id"], "title": task["title"], "picked_up_by": task.get("assigned_to")},
    )


async def notify_transfer(*, event: NotificationEvent, negotiation: dict[str, Any], recipient_id: str) -> NotificationResult:
    return await dispatch(
        event=event,
        recipient_id=recipient_id,
        data={
            "negotiation_id": negotiation["id"],
            "task_id": negotiation["task_id"],
            "points_offered_to_recipient": negotiation["points_offered_to_recipient"],
            "points_kept_by_initiator": negotiation["points_kept_by_initiator"],
        },
    )


async def notify_parent_request(
    *, event: NotificationEvent, negotiation: dict[str, Any], recipient_id: str
) -> NotificationResult:
    return await dispatch(
        event=event,
        recipient_id=recipient_id,
        data={
            "negotiation_id": negotiation["id"],
            "task_id": negotiation["task_id"],
            "requested_points": negotiation.get("requested_points"),
            "requested_due_date": negotiation.get("requested_due_date"),
            "requested_description": negotiation.get("requested_description"),
        },
    )
