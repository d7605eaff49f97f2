"""Task lifecycle transitions: start, submit, approve, reject and resubmit.

Each transition is a conditional update on the expected current status, so a
task that moved in the meantime fails the transition instead of being
overwritten. ``approved`` and ``archived`` are terminal.
"""

import logging
from datetime import datetime
from typing import Any

from src.core import db_client
from src.core.clock import parse_iso, to_iso, utc_now
from src.core.errors import InvalidStateTransitionError
from src.core.logging import span
from src.domain.member import MemberRole
from src.domain.task import TaskStatus
from src.services import notification_service


logger = logging.getLogger(__name__)


TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.ARCHIVED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.ARCHIVED},
    TaskStatus.COMPLETED: {TaskStatus.APPROVED, TaskStatus.REJECTED},
    TaskStatus.REJECTED: {TaskStatus.IN_PROGRESS, TaskStatus.PENDING},
    TaskStatus.APPROVED: set(),
    TaskStatus.ARCHIVED: set(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


def _sources_for(target: TaskStatus) -> list[TaskStatus]:
    return [status for status, targets in TRANSITIONS.items() if target in targets]


async def _transition(*, task_id: str, target: TaskStatus, data: dict[str, Any] | None = None) -> dict[str, Any]:
    """Move a task to ``target`` if its current status allows it."""
    sources = _sources_for(target)
    condition = "(" + " || ".join(f'status = "{status.value}"' for status in sources) + ")"
    updated = await db_client.update_record_if(
        collection="tasks",
        record_id=task_id,
        data={"status": target.value, **(data or {})},
        condition=condition,
    )
    if updated is None:
        task = await db_client.get_record(collection="tasks", record_id=task_id)
        msg = f"Cannot move task {task_id} from {task['status']} to {target.value}"
        raise InvalidStateTransitionError(msg)

    logger.info("Transitioned task %s to %s", task_id, target.value)
    return updated


async def _require_assignee(task_id: str, member_id: str) -> dict[str, Any]:
    task = await db_client.get_record(collection="tasks", record_id=task_id)
    if task.get("assigned_to") != member_id:
        msg = "Only the assigned child can work on this task"
        raise PermissionError(msg)
    return task


async def _require_parent(member_id: str) -> None:
    member = await db_client.get_record(collection="members", record_id=member_id)
    if member["role"] != MemberRole.PARENT:
        msg = "Only a parent can review tasks"
        raise PermissionError(msg)


async def start_task(*, task_id: str, member_id: str) -> dict[str, Any]:
    """Mark a pending task as in progress."""
    with span("task_state_machine.start_task"):
        task = await _require_assignee(task_id, member_id)
        if task["status"] != TaskStatus.PENDING:
            msg = f"Cannot start: task {task_id} is {task['status']}"
            raise InvalidStateTransitionError(msg)
        return await _transition(task_id=task_id, target=TaskStatus.IN_PROGRESS)


async def submit_task(*, task_id: str, member_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Submit a task for parent review."""
    now = now or utc_now()
    with span("task_state_machine.submit_task"):
        await _require_assignee(task_id, member_id)
        return await _transition(task_id=task_id, target=TaskStatus.COMPLETED, data={"completed_at": to_iso(now)})


def points_for_approval(task: dict[str, Any]) -> dict[str, int]:
    """Points each member receives when the task is approved, keyed by member ID."""
    split = task.get("point_split")
    if split and task.get("original_assignee"):
        awards = {task["assigned_to"]: int(split.get("final_assignee", 0))}
        original = task["original_assignee"]
        awards[original] = awards.get(original, 0) + int(split.get("original_assignee", 0))
        return awards
    return {task["assigned_to"]: int(task["points"])}


async def approve_task(*, task_id: str, approver_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Approve a submitted task and award its points.

    The status change and every balance increment commit together. A point
    split from an accepted transfer is paid out to both siblings.

    Raises:
        PermissionError: If the approver is not a parent
        InvalidStateTransitionError: If the task is not awaiting review
    """
    now = now or utc_now()
    with span("task_state_machine.approve_task"):
        await _require_parent(approver_id)
        task = await db_client.get_record(collection="tasks", record_id=task_id)
        if task["status"] != TaskStatus.COMPLETED or not task.get("assigned_to"):
            msg = f"Cannot approve: task {task_id} is {task['status']}"
            raise InvalidStateTransitionError(msg)

        awards = points_for_approval(task)
        async with db_client.transaction() as tx:
            approved = await tx.update_if(
                collection="tasks",
                record_id=task_id,
                data={"status": TaskStatus.APPROVED.value, "approved_at": to_iso(now)},
                condition=f'status = "{TaskStatus.COMPLETED.value}"',
            )
            if approved == 0:
                msg = f"Task {task_id} was already reviewed"
                raise InvalidStateTransitionError(msg)
            for member_id, amount in awards.items():
                if amount > 0:
                    await tx.adjust(collection="members", record_id=member_id, field="points", delta=amount)

        logger.info("Approved task %s, awarded %s", task_id, awards)
        approved_task = await db_client.get_record(collection="tasks", record_id=task_id)
        await notification_service.notify_task_approved(task=approved_task, points_awarded=awards.get(task["assigned_to"], 0))
        return approved_task


async def reject_task(
    *, task_id: str, reviewer_id: str, reason: str | None = None, now: datetime | None = None
) -> dict[str, Any]:
    """Send a submitted task back to the child.

    A rejection after the deadline is flagged so that the child's resubmission
    is never penalized as overdue.
    """
    now = now or utc_now()
    with span("task_state_machine.reject_task"):
        await _require_parent(reviewer_id)
        task = await db_client.get_record(collection="tasks", record_id=task_id)

        data: dict[str, Any] = {"rejection_reason": reason}
        if task.get("due_date") and parse_iso(task["due_date"]) < now:
            data["rejected_after_deadline"] = True

        return await _transition(task_id=task_id, target=TaskStatus.REJECTED, data=data)


async def resubmit_task(*, task_id: str, member_id: str) -> dict[str, Any]:
    """Reopen a rejected task so the child can redo and submit it again."""
    with span("task_state_machine.resubmit_task"):
        task = await _require_assignee(task_id, member_id)
        if task["status"] != TaskStatus.REJECTED:
            msg = f"Cannot resubmit: task {task_id} is {task['status']}"
            raise InvalidStateTransitionError(msg)
        return await _transition(task_id=task_id, target=TaskStatus.IN_PROGRESS)
