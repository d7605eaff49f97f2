"""First-come-first-served pickup of hanging tasks."""

import logging
from datetime import datetime
from typing import Any

from src.core import db_client
from src.core.clock import parse_iso, to_iso, utc_now
from src.core.errors import AlreadyClaimedError, TaskNotAvailableError
from src.core.logging import span
from src.domain.member import MemberRole
from src.domain.task import TaskStatus, TaskType
from src.services import notification_service


logger = logging.getLogger(__name__)

PICKUP_TRANSFER_REASON = "Picked up hanging task"

_CLAIMABLE_CONDITION = (
    f'task_type = "{TaskType.HANGING.value}" && is_available_for_pickup = "true" '
    f'&& status = "{TaskStatus.PENDING.value}" && assigned_to = null'
)


def _claimable_filter(now: datetime) -> str:
    return f'{_CLAIMABLE_CONDITION} && (hanging_expires_at = null || hanging_expires_at > "{to_iso(now)}")'


def _is_expired(task: dict[str, Any], now: datetime) -> bool:
    expires_at = task.get("hanging_expires_at")
    return bool(expires_at) and parse_iso(expires_at) <= now


async def _raise_not_claimed(task_id: str, now: datetime) -> None:
    """Explain why a claim changed no row."""
    task = await db_client.get_record(collection="tasks", record_id=task_id)
    if task["task_type"] != TaskType.HANGING:
        msg = "This task cannot be picked up"
        raise TaskNotAvailableError(msg)
    if _is_expired(task, now):
        msg = "This task is no longer available for pickup"
        raise TaskNotAvailableError(msg)
    msg = f"Task {task_id} was already picked up"
    raise AlreadyClaimedError(msg)


async def pickup_hanging_task(*, task_id: str, claimant_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Assign an unclaimed hanging task to the first child who asks.

    The assignment is a single conditional update, so among concurrent claims
    exactly one succeeds.

    Raises:
        AlreadyClaimedError: If another member claimed the task first
        TaskNotAvailableError: If the task is not hanging or its pickup window has closed
        PermissionError: If the claimant is not a child
        KeyError: If the task or claimant does not exist
    """
    now = now or utc_now()
    with span("pickup.pickup_hanging_task"):
        claimant = await db_client.get_record(collection="members", record_id=claimant_id)
        if claimant["role"] != MemberRole.CHILD:
            msg = "Only children can pick up tasks"
            raise PermissionError(msg)

        task = await db_client.get_record(collection="tasks", record_id=task_id)
        if _is_expired(task, now):
            msg = "This task is no longer available for pickup"
            raise TaskNotAvailableError(msg)

        async with db_client.transaction() as tx:
            claimed = await tx.update_if(
                collection="tasks",
                record_id=task_id,
                data={
                    "assigned_to": claimant_id,
                    "is_available_for_pickup": False,
                    "status": TaskStatus.IN_PROGRESS.value,
                },
                condition=_claimable_filter(now),
            )
            if claimed:
                await tx.create(
                    collection="task_transfers",
                    data={
                        "task_id": task_id,
                        "from_member_id": None,
                        "to_member_id": claimant_id,
                        "transfer_reason": PICKUP_TRANSFER_REASON,
                    },
                )

        if not claimed:
            await _raise_not_claimed(task_id, now)

        picked = await db_client.get_record(collection="tasks", record_id=task_id)
        logger.info("Member %s picked up hanging task %s", claimant_id, task_id)
        await notification_service.notify_task_picked_up(task=picked)
        return picked


async def list_hanging_tasks(*, now: datetime | None = None) -> list[dict[str, Any]]:
    """Hanging tasks still open for pickup, soonest due first."""
    now = now or utc_now()
    return await db_client.list_all_records(
        collection="tasks", filter_query=_claimable_filter(now), sort="due_date, id"
    )


async def get_transfer_history(*, task_id: str) -> list[dict[str, Any]]:
    """Audit trail of pickups and accepted transfers for a task."""
    return await db_client.list_all_records(
        collection="task_transfers",
        filter_query=f'task_id = "{db_client.sanitize_param(task_id)}"',
        sort="id",
    )

