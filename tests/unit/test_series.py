"""Tests for single/series scoped edit and delete."""

import pytest

from src.core import db_client
from src.core.clock import to_iso
from src.core.errors import InvalidScheduleError, NotEditableError, SlotTakenError
from src.domain.create_models import TaskCreate
from src.domain.task import ActionScope, ScopedActionType, TaskStatus, TaskType
from src.domain.update_models import TaskChanges
from src.modules.tasks import materializer, pickup, series, service
from tests.unit.timeline import at


async def _series_with_history(make_template) -> tuple[dict, list[dict]]:
    """Template with four instances: approved, completed, in progress, pending."""
    template = await make_template()
    for day in range(4):
        await materializer.ensure_current_instances(now=at(9, 1, day_offset=day))
    instances = await materializer.get_series(template_id=template["id"])
    for instance, status in zip(
        instances, [TaskStatus.APPROVED, TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS, TaskStatus.PENDING], strict=True
    ):
        await db_client.update_record(collection="tasks", record_id=instance["id"], data={"status": status.value})
    return template, await materializer.get_series(template_id=template["id"])


@pytest.mark.unit
class TestSeriesScope:
    """Test "this and all future" actions."""

    async def test_series_delete_leaves_finished_instances(self, make_template):
        template, instances = await _series_with_history(make_template)

        result = await series.apply_scoped_action(
            action=ScopedActionType.DELETE, target_id=instances[3]["id"], scope=ActionScope.SERIES, now=at(12, day_offset=3)
        )

        assert result.archived_count == 2
        after = await materializer.get_series(template_id=template["id"])
        assert [task["status"] for task in after] == [
            TaskStatus.APPROVED,
            TaskStatus.COMPLETED,
            TaskStatus.ARCHIVED,
            TaskStatus.ARCHIVED,
        ]
        retired = await service.get_task(task_id=template["id"])
        assert retired["status"] == TaskStatus.ARCHIVED
        assert not retired["is_recurring_enabled"]

    async def test_series_delete_stops_materialization(self, make_template):
        template, _ = await _series_with_history(make_template)
        await series.apply_scoped_action(
            action=ScopedActionType.DELETE, target_id=template["id"], scope=ActionScope.SERIES, now=at(12, day_offset=3)
        )

        result = await materializer.ensure_current_instances(now=at(9, 1, day_offset=5))

        assert result.generated_count == 0
        assert await materializer.materialize_next_occurrence(template_id=template["id"], after=at(9, day_offset=3)) is None

    async def test_series_edit_updates_template_and_open_instances(self, make_template):
        template, instances = await _series_with_history(make_template)

        result = await series.apply_scoped_action(
            action=ScopedActionType.EDIT,
            target_id=instances[2]["id"],
            scope=ActionScope.SERIES,
            changes=TaskChanges(title="Feed both cats", points=6),
            now=at(12, day_offset=3),
        )

        assert result.updated_count == 2
        assert result.template_updated
        assert (await service.get_task(task_id=template["id"]))["title"] == "Feed both cats"
        after = await materializer.get_series(template_id=template["id"])
        assert [task["title"] for task in after] == ["Feed the cat", "Feed the cat", "Feed both cats", "Feed both cats"]
        assert [task["points"] for task in after] == [4, 4, 6, 6]

    async def test_series_edit_never_moves_due_dates(self, make_template):
        template, instances = await _series_with_history(make_template)

        await series.apply_scoped_action(
            action=ScopedActionType.EDIT,
            target_id=template["id"],
            scope=ActionScope.SERIES,
            changes=TaskChanges(recurring_time="18:00"),
            now=at(12, day_offset=3),
        )

        after = await materializer.get_series(template_id=template["id"])
        assert [task["due_date"] for task in after] == [task["due_date"] for task in instances]
        assert (await service.get_task(task_id=template["id"]))["recurring_time"] == "18:00"

    async def test_series_edit_revalidates_schedule(self, make_template):
        template = await make_template()

        with pytest.raises(InvalidScheduleError):
            await series.apply_scoped_action(
                action=ScopedActionType.EDIT,
                target_id=template["id"],
                scope=ActionScope.SERIES,
                changes=TaskChanges(recurring_time="08:10"),
                now=at(8),
            )

    async def test_series_scope_on_one_off_task_acts_on_the_task(self, parent, child):
        task = await service.create_task(
            params=TaskCreate(title="Wash car", assigned_to=child["id"], created_by=parent["id"], due_date=to_iso(at(17)))
        )

        result = await series.apply_scoped_action(
            action=ScopedActionType.DELETE, target_id=task["id"], scope=ActionScope.SERIES, now=at(12)
        )

        assert result.scope == ActionScope.SINGLE
        assert result.archived_count == 1
        assert (await service.get_task(task_id=task["id"]))["status"] == TaskStatus.ARCHIVED


@pytest.mark.unit
class TestSingleScope:
    """Test "this one only" actions."""

    async def test_edit_one_instance_leaves_siblings(self, make_template):
        template, instances = await _series_with_history(make_template)

        result = await series.apply_scoped_action(
            action=ScopedActionType.EDIT,
            target_id=instances[3]["id"],
            scope=ActionScope.SINGLE,
            changes=TaskChanges(title="Feed the cat (vet food)", due_date="2026-03-05T11:00:00Z"),
        )

        assert result.updated_count == 1
        edited = await service.get_task(task_id=instances[3]["id"])
        assert edited["title"] == "Feed the cat (vet food)"
        assert edited["due_date"] == "2026-03-05T11:00:00+00:00"
        assert (await service.get_task(task_id=instances[2]["id"]))["title"] == "Feed the cat"
        assert (await service.get_task(task_id=template["id"]))["title"] == "Feed the cat"

    async def test_single_edit_ignores_schedule_fields_on_instance(self, make_template):
        _, instances = await _series_with_history(make_template)

        result = await series.apply_scoped_action(
            action=ScopedActionType.EDIT,
            target_id=instances[3]["id"],
            scope=ActionScope.SINGLE,
            changes=TaskChanges(recurring_time="18:00"),
        )

        assert result.updated_count == 0

    @pytest.mark.parametrize("index", [0, 1])
    async def test_finished_instance_is_not_editable(self, make_template, index):
        _, instances = await _series_with_history(make_template)

        with pytest.raises(NotEditableError):
            await series.apply_scoped_action(
                action=ScopedActionType.EDIT,
                target_id=instances[index]["id"],
                scope=ActionScope.SINGLE,
                changes=TaskChanges(title="Too late"),
            )

    async def test_completed_instance_cannot_be_deleted(self, make_template):
        _, instances = await _series_with_history(make_template)

        with pytest.raises(NotEditableError):
            await series.apply_scoped_action(
                action=ScopedActionType.DELETE, target_id=instances[1]["id"], scope=ActionScope.SINGLE
            )

    async def test_delete_one_instance(self, make_template):
        template, instances = await _series_with_history(make_template)

        result = await series.apply_scoped_action(
            action=ScopedActionType.DELETE, target_id=instances[2]["id"], scope=ActionScope.SINGLE, now=at(12, day_offset=3)
        )

        assert result.archived_count == 1
        after = await materializer.get_series(template_id=template["id"])
        assert [task["status"] for task in after][2:] == [TaskStatus.ARCHIVED, TaskStatus.PENDING]
        assert (await service.get_task(task_id=template["id"]))["is_recurring_enabled"]

    async def test_single_delete_on_template_stops_future_instances(self, make_template):
        template, instances = await _series_with_history(make_template)

        result = await series.apply_scoped_action(
            action=ScopedActionType.DELETE, target_id=template["id"], scope=ActionScope.SINGLE, now=at(12, day_offset=3)
        )

        assert result.template_updated
        assert result.archived_count == 0
        assert (await service.get_task(task_id=instances[3]["id"]))["status"] == TaskStatus.PENDING
        assert (await materializer.ensure_current_instances(now=at(9, 1, day_offset=5))).generated_count == 0

    async def test_edit_without_changes_is_rejected(self, make_template):
        template = await make_template()

        with pytest.raises(ValueError, match="No changes"):
            await series.apply_scoped_action(
                action=ScopedActionType.EDIT, target_id=template["id"], scope=ActionScope.SINGLE
            )

    async def test_unknown_target(self, db):
        with pytest.raises(KeyError):
            await series.apply_scoped_action(action=ScopedActionType.DELETE, target_id="999", scope=ActionScope.SINGLE)

    async def test_moving_instance_onto_taken_slot_is_not_allowed(self, make_template):
        template = await make_template()
        for day in range(2):
            await materializer.ensure_current_instances(now=at(9, 1, day_offset=day))
        first, second = await materializer.get_series(template_id=template["id"])

        with pytest.raises(SlotTakenError):
            await series.apply_scoped_action(
                action=ScopedActionType.EDIT,
                target_id=first["id"],
                scope=ActionScope.SINGLE,
                changes=TaskChanges(due_date=second["due_date"]),
            )
        assert (await service.get_task(task_id=first["id"]))["due_date"] == first["due_date"]


@pytest.mark.unit
class TestDeletedTemplate:
    """Test that a deleted template can't be changed again."""

    async def _delete(self, template: dict) -> None:
        await series.apply_scoped_action(
            action=ScopedActionType.DELETE, target_id=template["id"], scope=ActionScope.SINGLE, now=at(12)
        )

    @pytest.mark.parametrize("action", [ScopedActionType.EDIT, ScopedActionType.DELETE])
    async def test_single_scope_on_deleted_template(self, make_template, action):
        template = await make_template()
        await self._delete(template)

        with pytest.raises(NotEditableError, match="deleted"):
            await series.apply_scoped_action(
                action=action, target_id=template["id"], scope=ActionScope.SINGLE, changes=TaskChanges(title="Again")
            )
        assert (await service.get_task(task_id=template["id"]))["title"] == "Feed the cat"

    async def test_series_scope_through_instance_of_deleted_template(self, make_template):
        template = await make_template()
        await materializer.ensure_current_instances(now=at(9, 1))
        [instance] = await materializer.get_series(template_id=template["id"])
        await self._delete(template)

        with pytest.raises(NotEditableError):
            await series.apply_scoped_action(
                action=ScopedActionType.EDIT,
                target_id=instance["id"],
                scope=ActionScope.SERIES,
                changes=TaskChanges(title="Again"),
            )
        assert (await service.get_task(task_id=template["id"]))["title"] == "Feed the cat"
        assert (await service.get_task(task_id=instance["id"]))["title"] == "Feed the cat"


@pytest.mark.unit
class TestHangingSeries:
    async def test_series_assignee_change_keeps_offers_claimable(self, make_template, sibling):
        template = await make_template(task_type=TaskType.HANGING)
        await materializer.ensure_current_instances(now=at(9, 1))

        result = await series.apply_scoped_action(
            action=ScopedActionType.EDIT,
            target_id=template["id"],
            scope=ActionScope.SERIES,
            changes=TaskChanges(title="Sweep the porch", assigned_to=sibling["id"]),
            now=at(10),
        )

        [instance] = await materializer.get_series(template_id=template["id"])
        assert result.updated_count == 1
        assert instance["title"] == "Sweep the porch"
        assert instance["assigned_to"] is None
        assert instance["is_available_for_pickup"]

        claimed = await pickup.pickup_hanging_task(task_id=instance["id"], claimant_id=sibling["id"], now=at(10, 5))
        assert claimed["assigned_to"] == sibling["id"]
