"""Tests for overdue detection and penalty enforcement."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from src.core import db_client
from src.core.clock import to_iso
from src.domain.create_models import TaskCreate
from src.domain.task import TaskStatus
from src.modules.household import points
from src.modules.tasks import materializer, penalties, service
from src.services import notification_service
from tests.unit.timeline import at


async def _materialized_instance(make_template) -> dict:
    template = await make_template()
    await materializer.ensure_current_instances(now=at(9, 1))
    return (await materializer.get_series(template_id=template["id"]))[0]


@pytest.mark.unit
class TestProcessOverduePenalties:
    """Test at-most-once penalty application."""

    async def test_penalizes_overdue_instance_and_materializes_next(self, make_template, child):
        instance = await _materialized_instance(make_template)

        result = await penalties.process_overdue_penalties(now=at(10))

        assert result.penalized_count == 1
        assert result.next_instances_created == 1
        assert await points.get_balance(member_id=child["id"]) == 5

        penalized = await service.get_task(task_id=instance["id"])
        assert penalized["penalized_at"] == to_iso(at(10))

        series = await materializer.get_series(template_id=instance["parent_task_id"])
        assert [task["due_date"] for task in series] == [to_iso(at(9)), to_iso(at(9, day_offset=1))]

    async def test_balance_floors_at_zero(self, make_template, child):
        await db_client.update_record(collection="members", record_id=child["id"], data={"points": 3})
        await _materialized_instance(make_template)

        await penalties.process_overdue_penalties(now=at(10))

        assert await points.get_balance(member_id=child["id"]) == 0

    async def test_second_run_does_not_penalize_again(self, make_template, child):
        await _materialized_instance(make_template)

        await penalties.process_overdue_penalties(now=at(10))
        second = await penalties.process_overdue_penalties(now=at(11))

        assert second.penalized_count == 0
        assert await points.get_balance(member_id=child["id"]) == 5

    async def test_concurrent_runs_deduct_once(self, make_template, child):
        instance = await _materialized_instance(make_template)

        results = await asyncio.gather(
            penalties.process_overdue_penalties(now=at(10)),
            penalties.process_overdue_penalties(now=at(10)),
            penalties.process_overdue_penalties(now=at(10)),
        )

        assert sum(result.penalized_count for result in results) == 1
        assert await points.get_balance(member_id=child["id"]) == 5
        assert len(await materializer.get_series(template_id=instance["parent_task_id"])) == 2

    async def test_not_yet_due_is_left_alone(self, make_template, child):
        await _materialized_instance(make_template)

        result = await penalties.process_overdue_penalties(now=at(9, 0))

        assert result.penalized_count == 0
        assert await points.get_balance(member_id=child["id"]) == 10

    @pytest.mark.parametrize("status", [TaskStatus.COMPLETED, TaskStatus.APPROVED, TaskStatus.ARCHIVED])
    async def test_finished_tasks_are_not_penalized(self, make_template, child, status):
        instance = await _materialized_instance(make_template)
        await db_client.update_record(collection="tasks", record_id=instance["id"], data={"status": status.value})

        result = await penalties.process_overdue_penalties(now=at(10))

        assert result.penalized_count == 0
        assert await points.get_balance(member_id=child["id"]) == 10

    async def test_rejected_after_deadline_is_exempt(self, make_template, child):
        instance = await _materialized_instance(make_template)
        await db_client.update_record(
            collection="tasks",
            record_id=instance["id"],
            data={"status": TaskStatus.IN_PROGRESS.value, "rejected_after_deadline": True},
        )

        result = await penalties.process_overdue_penalties(now=at(10))

        assert result.penalized_count == 0

    async def test_one_off_task_is_penalized_without_next_occurrence(self, parent, child):
        task = await service.create_task(
            params=TaskCreate(
                title="Tidy room",
                penalty_points=2,
                assigned_to=child["id"],
                created_by=parent["id"],
                due_date=to_iso(at(17)),
            )
        )

        result = await penalties.process_overdue_penalties(now=at(18))

        assert result.penalized_count == 1
        assert result.next_instances_created == 0
        assert await points.get_balance(member_id=child["id"]) == 8
        assert (await service.get_task(task_id=task["id"]))["penalized_at"] is not None

    async def test_failure_is_isolated_per_task(self, make_template, child):
        await _materialized_instance(make_template)

        with patch.object(penalties, "apply_penalty", AsyncMock(side_effect=RuntimeError("store down"))):
            result = await penalties.process_overdue_penalties(now=at(10))

        assert result.failed_count == 1
        assert result.errors == ["Feed the cat: store down"]

    async def test_slow_notification_does_not_hold_up_the_batch(self, make_template):
        instance = await _materialized_instance(make_template)
        gate = asyncio.Event()
        delivered = []

        async def slow_notify(*, task, penalty_points):
            await gate.wait()
            delivered.append((task["id"], penalty_points))

        with patch.object(notification_service, "notify_task_overdue", slow_notify):
            result = await penalties.process_overdue_penalties(now=at(10))

            assert result.penalized_count == 1
            assert delivered == []

            gate.set()
            await notification_service.drain()

        assert delivered == [(instance["id"], 5)]


@pytest.mark.unit
class TestOverdueStatus:
    def _task(self, **overrides) -> dict:
        task = {
            "status": TaskStatus.PENDING.value,
            "due_date": to_iso(at(9)),
            "penalized_at": None,
            "rejected_after_deadline": 0,
        }
        task.update(overrides)
        return task

    def test_upcoming(self):
        status = penalties.get_overdue_status(self._task(), now=at(8))

        assert not status.is_overdue
        assert status.status_message == ""

    def test_overdue_not_yet_penalized(self):
        status = penalties.get_overdue_status(self._task(), now=at(10))

        assert status.is_overdue
        assert not status.is_penalized
        assert status.status_message == "Task is overdue - penalty points will be applied"

    def test_already_penalized(self):
        status = penalties.get_overdue_status(self._task(penalized_at=to_iso(at(10))), now=at(11))

        assert status.is_penalized
        assert status.status_message == "Task overdue - penalty points already applied"

    def test_rejected_after_deadline(self):
        task = self._task(status=TaskStatus.REJECTED.value, rejected_after_deadline=1)

        status = penalties.get_overdue_status(task, now=at(11))

        assert status.can_resubmit_without_penalty
        assert status.status_message == "Resubmit (no additional penalty - parent reviewed late)"

    def test_finished_task_is_not_overdue(self):
        assert not penalties.is_task_overdue(self._task(status=TaskStatus.APPROVED.value), now=at(11))
