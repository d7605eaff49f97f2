"""Tests for first-come-first-served hanging task pickup."""

import asyncio

import pytest

from src.core.clock import to_iso
from src.core.errors import AlreadyClaimedError, TaskNotAvailableError
from src.domain.create_models import TaskCreate
from src.domain.member import MemberRole
from src.domain.task import TaskStatus, TaskType
from src.modules.household import points
from src.modules.tasks import pickup, service
from tests.unit.timeline import at


@pytest.fixture
async def hanging_task(parent) -> dict:
    return await service.create_task(
        params=TaskCreate(
            title="Rake leaves",
            points=8,
            created_by=parent["id"],
            task_type=TaskType.HANGING,
            due_date=to_iso(at(18)),
            hanging_expires_at=to_iso(at(12)),
        )
    )


@pytest.mark.unit
class TestPickupHangingTask:
    """Test hanging task claims."""

    async def test_first_claim_wins(self, hanging_task, child):
        picked = await pickup.pickup_hanging_task(task_id=hanging_task["id"], claimant_id=child["id"], now=at(10))

        assert picked["assigned_to"] == child["id"]
        assert picked["status"] == TaskStatus.IN_PROGRESS
        assert not picked["is_available_for_pickup"]

        history = await pickup.get_transfer_history(task_id=hanging_task["id"])
        assert len(history) == 1
        assert history[0]["from_member_id"] is None
        assert history[0]["to_member_id"] == child["id"]
        assert history[0]["transfer_reason"] == pickup.PICKUP_TRANSFER_REASON

    async def test_second_claim_is_rejected(self, hanging_task, child, sibling):
        await pickup.pickup_hanging_task(task_id=hanging_task["id"], claimant_id=child["id"], now=at(10))

        with pytest.raises(AlreadyClaimedError):
            await pickup.pickup_hanging_task(task_id=hanging_task["id"], claimant_id=sibling["id"], now=at(10, 1))

    async def test_concurrent_claims_have_one_winner(self, hanging_task):
        claimants = [
            await points.create_member(name=f"Kid {n}", role=MemberRole.CHILD) for n in range(6)
        ]

        outcomes = await asyncio.gather(
            *(
                pickup.pickup_hanging_task(task_id=hanging_task["id"], claimant_id=claimant["id"], now=at(10))
                for claimant in claimants
            ),
            return_exceptions=True,
        )

        winners = [outcome for outcome in outcomes if isinstance(outcome, dict)]
        losers = [outcome for outcome in outcomes if isinstance(outcome, AlreadyClaimedError)]
        assert len(winners) == 1
        assert len(losers) == len(claimants) - 1

        task = await service.get_task(task_id=hanging_task["id"])
        assert task["assigned_to"] == winners[0]["assigned_to"]
        assert len(await pickup.get_transfer_history(task_id=hanging_task["id"])) == 1

    async def test_expired_task_cannot_be_claimed(self, hanging_task, child):
        with pytest.raises(TaskNotAvailableError, match="no longer available"):
            await pickup.pickup_hanging_task(task_id=hanging_task["id"], claimant_id=child["id"], now=at(12))

    async def test_parent_cannot_claim(self, hanging_task, parent):
        with pytest.raises(PermissionError):
            await pickup.pickup_hanging_task(task_id=hanging_task["id"], claimant_id=parent["id"], now=at(10))

    async def test_regular_task_cannot_be_claimed(self, parent, child, sibling):
        task = await service.create_task(
            params=TaskCreate(title="Homework", assigned_to=child["id"], created_by=parent["id"])
        )

        with pytest.raises(TaskNotAvailableError, match="cannot be picked up"):
            await pickup.pickup_hanging_task(task_id=task["id"], claimant_id=sibling["id"], now=at(10))


@pytest.mark.unit
class TestListHangingTasks:
    async def test_lists_only_open_unexpired_tasks(self, hanging_task, parent, child):
        open_forever = await service.create_task(
            params=TaskCreate(title="Sweep porch", created_by=parent["id"], task_type=TaskType.HANGING)
        )

        before_expiry = await pickup.list_hanging_tasks(now=at(10))
        after_expiry = await pickup.list_hanging_tasks(now=at(13))

        assert {task["id"] for task in before_expiry} == {hanging_task["id"], open_forever["id"]}
        assert [task["id"] for task in after_expiry] == [open_forever["id"]]

        await pickup.pickup_hanging_task(task_id=open_forever["id"], claimant_id=child["id"], now=at(13))
        assert await pickup.list_hanging_tasks(now=at(13)) == []
