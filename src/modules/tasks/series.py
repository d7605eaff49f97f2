"""Scoped edit and delete of recurring series ("this one" vs "this and all future").

A series action updates the template and then every open instance with bulk
statements whose WHERE clause carries the status guard, so an instance that
is completed concurrently is never overwritten. Deleted (archived) templates
are frozen. Due dates never move: schedule changes only affect occurrences
materialized afterwards.
"""

import logging
from datetime import datetime
from typing import Any

from src.core import db_client
from src.core.clock import household_tz, parse_iso, to_iso, utc_now
from src.core.config import settings
from src.core.db_client import DuplicateRecordError, sanitize_param
from src.core.errors import NotEditableError, SlotTakenError
from src.core.logging import span
from src.core.recurrence import RecurrenceRule, validate_lead_time
from src.domain.task import FINISHED_STATUSES, ActionScope, ScopedActionType, TaskStatus
from src.domain.update_models import SCHEDULE_FIELDS, TaskChanges
from src.models.service_models import ScopedActionResult


logger = logging.getLogger(__name__)

_OPEN_STATUS_CONDITION = f'(status = "{TaskStatus.PENDING.value}" || status = "{TaskStatus.IN_PROGRESS.value}")'
_UNFINISHED_CONDITION = " && ".join(f'status != "{status.value}"' for status in sorted(FINISHED_STATUSES))
_LIVE_TEMPLATE_CONDITION = f'status != "{TaskStatus.ARCHIVED.value}"'


def _is_template(task: dict[str, Any]) -> bool:
    return bool(task["is_recurring"]) and task.get("parent_task_id") is None


def _validate_schedule_change(template: dict[str, Any], changes: TaskChanges, now: datetime) -> None:
    merged = {**template, **changes.as_update()}
    rule = RecurrenceRule.from_record(merged)
    validate_lead_time(rule, now, household_tz(), settings.min_schedule_lead_minutes)


def _archive_data(now: datetime) -> dict[str, Any]:
    return {"status": TaskStatus.ARCHIVED.value, "archived_at": to_iso(now)}


def _raise_template_deleted(template_id: str) -> None:
    msg = f"Recurring task {template_id} has been deleted and can no longer be changed"
    raise NotEditableError(msg)


def _ensure_live_template(template: dict[str, Any]) -> None:
    if template["status"] == TaskStatus.ARCHIVED:
        _raise_template_deleted(template["id"])


async def _edit_single_instance(task: dict[str, Any], changes: TaskChanges) -> int:
    data = changes.as_update()
    for field in SCHEDULE_FIELDS:
        data.pop(field, None)
    if data.get("due_date"):
        data["due_date"] = to_iso(parse_iso(data["due_date"]))
    if not data:
        return 0
    try:
        updated = await db_client.update_record_if(
            collection="tasks", record_id=task["id"], data=data, condition=_UNFINISHED_CONDITION
        )
    except DuplicateRecordError as e:
        msg = f"Another task in this series is already due at {data['due_date']}"
        raise SlotTakenError(msg) from e
    if updated is None:
        msg = f"Task {task['id']} was finished before the edit could be applied"
        raise NotEditableError(msg)
    return 1


async def _delete_single_instance(task: dict[str, Any], now: datetime) -> int:
    archived = await db_client.update_record_if(
        collection="tasks",
        record_id=task["id"],
        data=_archive_data(now),
        condition=f'status != "{TaskStatus.ARCHIVED.value}"',
    )
    return 0 if archived is None else 1


async def _edit_template(template: dict[str, Any], changes: TaskChanges, now: datetime) -> None:
    if changes.touches_schedule():
        _validate_schedule_change(template, changes, now)
    data = changes.as_update()
    data.pop("due_date", None)
    if data:
        updated = await db_client.update_record_if(
            collection="tasks", record_id=template["id"], data=data, condition=_LIVE_TEMPLATE_CONDITION
        )
        if updated is None:
            _raise_template_deleted(template["id"])


async def _retire_template(template: dict[str, Any], now: datetime) -> None:
    retired = await db_client.update_record_if(
        collection="tasks",
        record_id=template["id"],
        data={"is_recurring_enabled": False, **_archive_data(now)},
        condition=_LIVE_TEMPLATE_CONDITION,
    )
    if retired is None:
        _raise_template_deleted(template["id"])


def _open_instances_filter(template_id: str) -> str:
    return f'parent_task_id = "{sanitize_param(template_id)}" && {_OPEN_STATUS_CONDITION}'


async def _update_open_instances(template_id: str, data: dict[str, Any]) -> int:
    """Copy template fields onto open instances, leaving hanging offers unassigned."""
    open_filter = _open_instances_filter(template_id)
    if "assigned_to" not in data:
        return await db_client.update_records(collection="tasks", data=data, filter_query=open_filter)

    # Instances still up for pickup must keep assigned_to null to stay claimable
    count = await db_client.update_records(
        collection="tasks", data=data, filter_query=f'{open_filter} && is_available_for_pickup = "false"'
    )
    offer_data = {key: value for key, value in data.items() if key != "assigned_to"}
    if offer_data:
        count += await db_client.update_records(
            collection="tasks", data=offer_data, filter_query=f'{open_filter} && is_available_for_pickup = "true"'
        )
    return count


async def _apply_single(
    action: ScopedActionType, target: dict[str, Any], changes: TaskChanges, now: datetime
) -> ScopedActionResult:
    result = ScopedActionResult(
        action=action.value, scope=ActionScope.SINGLE.value, template_id=target.get("parent_task_id")
    )

    if _is_template(target):
        _ensure_live_template(target)
        result.template_id = target["id"]
        if action == ScopedActionType.EDIT:
            await _edit_template(target, changes, now)
        else:
            await _retire_template(target, now)
        result.template_updated = True
        return result

    if target["status"] in FINISHED_STATUSES:
        msg = f"Task {target['id']} is {target['status']} and can no longer be changed"
        raise NotEditableError(msg)

    if action == ScopedActionType.EDIT:
        result.updated_count = await _edit_single_instance(target, changes)
    else:
        result.archived_count = await _delete_single_instance(target, now)
    return result


async def _apply_series(
    action: ScopedActionType, template: dict[str, Any], changes: TaskChanges, now: datetime
) -> ScopedActionResult:
    _ensure_live_template(template)
    result = ScopedActionResult(
        action=action.value, scope=ActionScope.SERIES.value, template_id=template["id"], template_updated=True
    )

    if action == ScopedActionType.EDIT:
        await _edit_template(template, changes, now)
        instance_data = changes.instance_update()
        if instance_data:
            result.updated_count = await _update_open_instances(template["id"], instance_data)
    else:
        result.archived_count = await db_client.update_records(
            collection="tasks", data=_archive_data(now), filter_query=_open_instances_filter(template["id"])
        )
        await _retire_template(template, now)

    logger.info(
        "Series %s on template %s: %d updated, %d archived",
        action.value,
        template["id"],
        result.updated_count,
        result.archived_count,
    )
    return result


async def apply_scoped_action(
    *,
    action: ScopedActionType,
    target_id: str,
    scope: ActionScope,
    changes: TaskChanges | None = None,
    now: datetime | None = None,
) -> ScopedActionResult:
    """Edit or delete a task with single or series scope.

    Args:
        action: edit or delete
        target_id: A template, one of its instances, or a one-off task
        scope: ``single`` touches only the target; ``series`` touches the
            template and all of its pending/in-progress instances
        changes: Field changes for an edit
        now: Reference time for schedule validation and archive timestamps

    Raises:
        NotEditableError: If single scope targets a completed, approved or archived task,
            or any scope targets a deleted template
        SlotTakenError: If a single edit moves an instance onto a due date its series already uses
        InvalidScheduleError: If an edit makes the template's schedule invalid
        KeyError: If the target does not exist
    """
    now = now or utc_now()
    changes = changes or TaskChanges()
    if action == ScopedActionType.EDIT and not changes.as_update():
        msg = "No changes provided"
        raise ValueError(msg)

    with span("series.apply_scoped_action"):
        target = await db_client.get_record(collection="tasks", record_id=target_id)

        if scope == ActionScope.SERIES:
            template_id = target["id"] if _is_template(target) else target.get("parent_task_id")
            if template_id:
                template = target if template_id == target["id"] else await db_client.get_record(
                    collection="tasks", record_id=template_id
                )
                return await _apply_series(action, template, changes, now)

        return await _apply_single(action, target, changes, now)
