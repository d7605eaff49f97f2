"""Task service for creating and reading one-off tasks and recurring templates."""

import logging
from datetime import datetime
from typing import Any

from src.core import db_client
from src.core.clock import household_tz, parse_iso, to_iso, utc_now
from src.core.config import settings
from src.core.db_client import sanitize_param
from src.core.logging import span
from src.core.recurrence import RecurrenceRule, validate_lead_time
from src.domain.create_models import RecurringTemplateCreate, TaskCreate
from src.domain.task import TaskStatus, TaskType


logger = logging.getLogger(__name__)


def _base_task_data(params: TaskCreate) -> dict[str, Any]:
    data: dict[str, Any] = {
        "title": params.title,
        "description": params.description,
        "points": params.points,
        "penalty_points": params.penalty_points,
        "created_by": params.created_by,
        "task_type": params.task_type.value,
        "status": TaskStatus.PENDING.value,
    }
    # Hanging tasks are claimed by whoever picks them up first
    if params.task_type == TaskType.HANGING:
        data["is_available_for_pickup"] = True
        if params.hanging_expires_at:
            data["hanging_expires_at"] = to_iso(parse_iso(params.hanging_expires_at))
    elif params.assigned_to:
        data["assigned_to"] = params.assigned_to
    return data


async def create_task(*, params: TaskCreate) -> dict[str, Any]:
    """Create a one-off task.

    Args:
        params: Task payload; ``due_date`` may be any ISO-8601 timestamp

    Returns:
        Created task record
    """
    with span("task_service.create_task"):
        data = _base_task_data(params)
        if params.due_date:
            data["due_date"] = to_iso(parse_iso(params.due_date))

        record = await db_client.create_record(collection="tasks", data=data)
        logger.info("Created task: %s (assigned to: %s)", params.title, params.assigned_to or "unassigned")
        return record


async def create_recurring_template(*, params: RecurringTemplateCreate, now: datetime | None = None) -> dict[str, Any]:
    """Validate a recurring schedule and store the template.

    No instance is created here; the next materialization run produces the
    first one. The template's ``created`` timestamp anchors the series.

    Raises:
        InvalidScheduleError: If the rule is malformed or the first occurrence is too soon
    """
    now = now or utc_now()
    with span("task_service.create_recurring_template"):
        rule = RecurrenceRule(
            pattern=params.recurring_pattern,
            time=params.recurring_time,
            days=params.recurring_days or [],
            day_of_month=params.recurring_day_of_month,
        )
        first_due = validate_lead_time(rule, now, household_tz(), settings.min_schedule_lead_minutes)

        data = _base_task_data(params)
        data.update(
            {
                "created": to_iso(now),
                "is_recurring": True,
                "is_recurring_enabled": True,
                "recurring_pattern": rule.pattern.value,
                "recurring_time": rule.time,
                "recurring_days": rule.days or None,
                "recurring_day_of_month": rule.day_of_month,
            }
        )

        record = await db_client.create_record(collection="tasks", data=data)
        logger.info("Created recurring template %s: %s (first due %s)", record["id"], params.title, to_iso(first_due))
        return record


async def get_task(*, task_id: str) -> dict[str, Any]:
    """Get a task or template by ID.

    Raises:
        KeyError: If the task does not exist
    """
    return await db_client.get_record(collection="tasks", record_id=task_id)


async def list_tasks(
    *,
    assigned_to: str | None = None,
    status: TaskStatus | None = None,
    include_templates: bool = False,
) -> list[dict[str, Any]]:
    """List tasks ordered by due date, optionally filtered by assignee and status."""
    with span("task_service.list_tasks"):
        filters: list[str] = []
        if not include_templates:
            filters.append('is_recurring = "false"')
        if assigned_to:
            filters.append(f'assigned_to = "{sanitize_param(assigned_to)}"')
        if status:
            filters.append(f'status = "{status.value}"')

        return await db_client.list_all_records(
            collection="tasks",
            filter_query=" && ".join(filters),
            sort="due_date, id",
        )


async def list_templates(*, include_disabled: bool = False) -> list[dict[str, Any]]:
    """List recurring templates."""
    filters = ['is_recurring = "true"', "parent_task_id = null"]
    if not include_disabled:
        filters.append('is_recurring_enabled = "true"')
    return await db_client.list_all_records(collection="tasks", filter_query=" && ".join(filters), sort="id")
