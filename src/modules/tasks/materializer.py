"""Materialization of recurring templates into concrete task instances.

Every run is a pure function of ``now`` and the stored rows: candidates are
recomputed from the rule, filtered against the series cursor (the latest
existing instance's due date), and inserted with ``ON CONFLICT DO NOTHING``
against the one-instance-per-slot unique index. Concurrent or repeated runs
therefore converge on the same set of instances.
"""

import logging
from datetime import datetime, tzinfo
from typing import Any

from src.core import db_client
from src.core.clock import household_tz, parse_iso, to_iso, utc_now
from src.core.config import constants
from src.core.db_client import sanitize_param
from src.core.logging import span
from src.core.recurrence import RecurrenceRule, current_period_occurrences, next_occurrence_after, validate_rule
from src.domain.task import TaskStatus, TaskType
from src.models.service_models import MaterializationResult
from src.services import notification_service


logger = logging.getLogger(__name__)

ACTIVE_TEMPLATES_FILTER = (
    'is_recurring = "true" && is_recurring_enabled = "true" && parent_task_id = null && status != "archived"'
)


async def _latest_instance(template_id: str) -> dict[str, Any] | None:
    """Most recent instance of the series by due date, archived ones included."""
    return await db_client.get_first_record(
        collection="tasks",
        filter_query=f'parent_task_id = "{sanitize_param(template_id)}" && due_date != null',
        sort="-due_date",
    )


def _after_cursor(candidate: datetime, cursor: datetime | None, tz: tzinfo) -> bool:
    if cursor is None:
        return True
    return candidate.astimezone(tz).date() > cursor.astimezone(tz).date()


async def _insert_instance(template: dict[str, Any], due: datetime) -> dict[str, Any] | None:
    """Create one instance for ``due``; None if the slot is already taken."""
    is_hanging = template["task_type"] == TaskType.HANGING
    data: dict[str, Any] = {
        "title": template["title"],
        "description": template.get("description"),
        "points": template["points"],
        "penalty_points": template["penalty_points"],
        "created_by": template.get("created_by"),
        "task_type": template["task_type"],
        "status": TaskStatus.PENDING.value,
        "due_date": to_iso(due),
        "parent_task_id": template["id"],
        "is_available_for_pickup": is_hanging,
    }
    if not is_hanging and template.get("assigned_to"):
        data["assigned_to"] = template["assigned_to"]

    instance = await db_client.create_record_if_absent(
        collection="tasks",
        data=data,
        sequence_field="sequence_number",
        sequence_scope={"parent_task_id": template["id"]},
    )
    if instance is None:
        logger.debug("Instance for template %s at %s already exists", template["id"], data["due_date"])
        return None

    logger.info(
        "Materialized instance %s (#%s) of template %s due %s",
        instance["id"],
        instance["sequence_number"],
        template["id"],
        instance["due_date"],
    )
    notification_service.send_in_background(notification_service.notify_task_created(task=instance))
    return instance


async def ensure_template_instances(*, template: dict[str, Any], now: datetime) -> int:
    """Create the missing current-period instances of one template.

    Candidates are the current-period occurrence and the most recent missed one
    before it. Candidates before the template was created, or on or before the
    local date of the latest existing instance, are dropped.

    Returns:
        Number of instances actually created
    """
    tz = household_tz()
    rule = RecurrenceRule.from_record(template)
    validate_rule(rule)

    anchor = parse_iso(template["created"])
    latest = await _latest_instance(template["id"])
    cursor = parse_iso(latest["due_date"]) if latest else None

    candidates = current_period_occurrences(rule, now, tz, count=constants.LOOKBACK_MISSED_OCCURRENCES + 1)

    created = 0
    for candidate in candidates:
        if candidate < anchor or not _after_cursor(candidate, cursor, tz):
            continue
        if await _insert_instance(template, candidate) is not None:
            created += 1
    return created


async def ensure_current_instances(*, now: datetime | None = None) -> MaterializationResult:
    """Bring every enabled template's series up to date as of ``now``.

    Safe to call concurrently and repeatedly: a second call for the same window
    creates nothing. A failing template is logged and counted; the rest of the
    batch still runs.
    """
    now = now or utc_now()
    result = MaterializationResult()

    with span("materializer.ensure_current_instances"):
        templates = await db_client.list_all_records(
            collection="tasks", filter_query=ACTIVE_TEMPLATES_FILTER, sort="id"
        )

        for template in templates:
            result.templates_processed += 1
            try:
                result.generated_count += await ensure_template_instances(template=template, now=now)
            except Exception as e:
                result.templates_failed += 1
                result.errors.append(f"{template['title']}: {e}")
                logger.error("Failed to materialize template %s: %s", template["id"], e, exc_info=True)

        logger.info("Materialization run: %s", result.summary)
        return result


async def materialize_next_occurrence(
    *, template_id: str, after: datetime, now: datetime | None = None
) -> dict[str, Any] | None:
    """Create the first occurrence strictly after ``after`` for one template.

    Used right after a penalty so the child has the next task available
    without waiting for the next scheduled run.

    Returns:
        The new instance, or None if the template is disabled or the slot is taken
    """
    now = now or utc_now()
    with span("materializer.materialize_next_occurrence"):
        template = await db_client.get_record(collection="tasks", record_id=template_id)
        if not template["is_recurring_enabled"] or template["status"] == TaskStatus.ARCHIVED:
            logger.debug("Template %s is disabled, not materializing next occurrence", template_id)
            return None

        tz = household_tz()
        rule = RecurrenceRule.from_record(template)
        validate_rule(rule)
        upcoming = next_occurrence_after(rule, after, tz)

        latest = await _latest_instance(template_id)
        if latest and not _after_cursor(upcoming, parse_iso(latest["due_date"]), tz):
            return None

        return await _insert_instance(template, upcoming)


async def get_series(*, template_id: str, include_archived: bool = True) -> list[dict[str, Any]]:
    """All instances of a template in series order."""
    filter_query = f'parent_task_id = "{sanitize_param(template_id)}"'
    if not include_archived:
        filter_query += f' && status != "{TaskStatus.ARCHIVED.value}"'
    return await db_client.list_all_records(collection="tasks", filter_query=filter_query, sort="sequence_number")
