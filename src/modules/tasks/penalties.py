"""Overdue detection and at-most-once penalty enforcement.

The claim on ``penalized_at`` and the balance deduction run in one store
transaction. The claim is a conditional update, so when several runs race for
the same instance only one sees a changed row and the others skip it.
"""

import logging
from datetime import datetime
from typing import Any

from src.core import db_client
from src.core.clock import parse_iso, to_iso, utc_now
from src.core.logging import log_with_context, span
from src.domain.task import OPEN_STATUSES, TaskStatus
from src.models.service_models import OverdueStatus, PenaltyResult
from src.modules.tasks import materializer
from src.services import notification_service


logger = logging.getLogger(__name__)

_OPEN_STATUS_CONDITION = f'(status = "{TaskStatus.PENDING.value}" || status = "{TaskStatus.IN_PROGRESS.value}")'


def _eligible_filter(now: datetime) -> str:
    return (
        f'due_date < "{to_iso(now)}" && {_OPEN_STATUS_CONDITION} && penalized_at = null '
        '&& penalty_points > "0" && assigned_to != null && rejected_after_deadline = "false" '
        '&& is_recurring = "false"'
    )


async def apply_penalty(*, task: dict[str, Any], now: datetime) -> bool:
    """Claim the instance and deduct its penalty in one transaction.

    Returns:
        True if this call applied the penalty, False if it was already claimed
        or the task left an open status in the meantime
    """
    penalty = int(task["penalty_points"])
    async with db_client.transaction() as tx:
        claimed = await tx.update_if(
            collection="tasks",
            record_id=task["id"],
            data={"penalized_at": to_iso(now)},
            condition=f"penalized_at = null && {_OPEN_STATUS_CONDITION}",
        )
        if claimed == 0:
            return False

        deducted = await tx.adjust(
            collection="members",
            record_id=task["assigned_to"],
            field="points",
            delta=-penalty,
            floor=0,
        )
        if deducted == 0:
            msg = f"Member {task['assigned_to']} not found"
            raise db_client.RecordNotFoundError(msg)

    log_with_context(
        logger, "info", "Penalty applied", task_id=task["id"], member_id=task["assigned_to"], penalty_points=penalty
    )
    return True


async def process_overdue_penalties(*, now: datetime | None = None) -> PenaltyResult:
    """Apply the overdue penalty to every eligible instance, at most once each.

    After a penalty the next occurrence of the task's series is materialized
    immediately. Failures are isolated per instance and reported in aggregate.
    """
    now = now or utc_now()
    result = PenaltyResult()

    with span("penalties.process_overdue_penalties"):
        overdue = await db_client.list_all_records(
            collection="tasks", filter_query=_eligible_filter(now), sort="due_date, id"
        )

        for task in overdue:
            try:
                applied = await apply_penalty(task=task, now=now)
            except Exception as e:
                result.failed_count += 1
                result.errors.append(f"{task['title']}: {e}")
                logger.error("Failed to penalize task %s: %s", task["id"], e, exc_info=True)
                continue

            if not applied:
                logger.debug("Task %s already penalized by another run", task["id"])
                continue

            result.penalized_count += 1
            notification_service.send_in_background(
                notification_service.notify_task_overdue(task=task, penalty_points=int(task["penalty_points"]))
            )

            if not task.get("parent_task_id"):
                continue
            try:
                created = await materializer.materialize_next_occurrence(
                    template_id=task["parent_task_id"], after=parse_iso(task["due_date"]), now=now
                )
                if created is not None:
                    result.next_instances_created += 1
            except Exception as e:
                result.errors.append(f"{task['title']} (next occurrence): {e}")
                logger.error(
                    "Failed to materialize next occurrence after task %s: %s", task["id"], e, exc_info=True
                )

        logger.info("Penalty run: %s", result.summary)
        return result


def is_task_overdue(task: dict[str, Any], now: datetime | None = None) -> bool:
    """True if an open task's due date has passed."""
    if not task.get("due_date") or task["status"] not in OPEN_STATUSES:
        return False
    return parse_iso(task["due_date"]) < (now or utc_now())


def get_overdue_status(task: dict[str, Any], now: datetime | None = None) -> OverdueStatus:
    """Describe a task's overdue and penalty state for display."""
    is_penalized = task.get("penalized_at") is not None
    can_resubmit_without_penalty = bool(task.get("rejected_after_deadline"))
    overdue = is_task_overdue(task, now)

    if can_resubmit_without_penalty:
        message = "Resubmit (no additional penalty - parent reviewed late)"
    elif is_penalized:
        message = "Task overdue - penalty points already applied"
    elif overdue:
        message = "Task is overdue - penalty points will be applied"
    else:
        message = ""

    return OverdueStatus(
        is_overdue=overdue or is_penalized,
        is_penalized=is_penalized,
        can_resubmit_without_penalty=can_resubmit_without_penalty,
        status_message=message,
    )
