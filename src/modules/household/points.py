"""Point balances and reward redemptions.

Every balance change is a relative adjustment executed by the store in one
statement; nothing here reads a balance, computes, and writes it back.
"""

import logging
from typing import Any

from src.core import db_client
from src.core.clock import to_iso, utc_now
from src.core.errors import InsufficientPointsError, InvalidStateTransitionError
from src.core.logging import span
from src.domain.member import MemberRole, RedemptionStatus


logger = logging.getLogger(__name__)


async def create_member(*, name: str, role: MemberRole = MemberRole.CHILD, points: int = 0) -> dict[str, Any]:
    """Create a household member."""
    with span("points.create_member"):
        return await db_client.create_record(
            collection="members",
            data={"name": name, "role": role.value, "points": points},
        )


async def get_member(*, member_id: str) -> dict[str, Any]:
    """Get a member by ID.

    Raises:
        KeyError: If the member does not exist
    """
    return await db_client.get_record(collection="members", record_id=member_id)


async def get_balance(*, member_id: str) -> int:
    member = await get_member(member_id=member_id)
    return int(member["points"])


async def award_points(*, member_id: str, amount: int) -> dict[str, Any]:
    """Add points to a member's balance."""
    if amount < 0:
        msg = f"Award amount must be non-negative, got {amount}"
        raise ValueError(msg)
    with span("points.award_points"):
        member = await db_client.adjust_field(
            collection="members", record_id=member_id, field="points", delta=amount, floor=0
        )
        logger.info("Awarded %d points to member %s", amount, member_id)
        return member


async def deduct_points(*, member_id: str, amount: int) -> dict[str, Any]:
    """Remove points from a member's balance, stopping at zero."""
    if amount < 0:
        msg = f"Deduction amount must be non-negative, got {amount}"
        raise ValueError(msg)
    with span("points.deduct_points"):
        member = await db_client.adjust_field(
            collection="members", record_id=member_id, field="points", delta=-amount, floor=0
        )
        logger.info("Deducted up to %d points from member %s", amount, member_id)
        return member


async def redeem_reward(*, member_id: str, reward_id: str, points_cost: int) -> dict[str, Any]:
    """Debit the reward cost and open a redemption request for parent review.

    The debit only applies while the balance covers the cost, and the request
    row is written in the same transaction.

    Raises:
        InsufficientPointsError: If the balance is lower than the cost (nothing changes)
        KeyError: If the member does not exist
    """
    if points_cost < 0:
        msg = f"Reward cost must be non-negative, got {points_cost}"
        raise ValueError(msg)

    with span("points.redeem_reward"):
        await get_member(member_id=member_id)

        async with db_client.transaction() as tx:
            debited = await tx.adjust(
                collection="members",
                record_id=member_id,
                field="points",
                delta=-points_cost,
                floor=None,
                condition=f'points >= "{points_cost}"',
            )
            if debited == 0:
                msg = "Insufficient points"
                raise InsufficientPointsError(msg)

            redemption_id = await tx.create(
                collection="reward_redemptions",
                data={
                    "member_id": member_id,
                    "reward_id": reward_id,
                    "points_cost": points_cost,
                    "status": RedemptionStatus.PENDING.value,
                },
            )

        logger.info("Member %s redeemed reward %s for %d points", member_id, reward_id, points_cost)
        return await db_client.get_record(collection="reward_redemptions", record_id=redemption_id)


async def approve_redemption(*, redemption_id: str) -> dict[str, Any]:
    """Mark a pending redemption approved (points were already debited)."""
    with span("points.approve_redemption"):
        updated = await db_client.update_record_if(
            collection="reward_redemptions",
            record_id=redemption_id,
            data={"status": RedemptionStatus.APPROVED.value, "reviewed_at": to_iso(utc_now())},
            condition=f'status = "{RedemptionStatus.PENDING.value}"',
        )
        if updated is None:
            await db_client.get_record(collection="reward_redemptions", record_id=redemption_id)
            msg = f"Cannot approve redemption {redemption_id}: it is no longer pending"
            raise InvalidStateTransitionError(msg)
        return updated


async def deny_redemption(*, redemption_id: str, reason: str | None = None) -> dict[str, Any]:
    """Deny a pending redemption and refund its cost.

    The status change is conditional, so a redemption is refunded at most once.
    """
    with span("points.deny_redemption"):
        redemption = await db_client.get_record(collection="reward_redemptions", record_id=redemption_id)

        async with db_client.transaction() as tx:
            denied = await tx.update_if(
                collection="reward_redemptions",
                record_id=redemption_id,
                data={
                    "status": RedemptionStatus.DENIED.value,
                    "denial_reason": reason,
                    "reviewed_at": to_iso(utc_now()),
                },
                condition=f'status = "{RedemptionStatus.PENDING.value}"',
            )
            if denied == 0:
                msg = f"Cannot deny redemption {redemption_id}: it is no longer pending"
                raise InvalidStateTransitionError(msg)

            await tx.adjust(
                collection="members",
                record_id=redemption["member_id"],
                field="points",
                delta=int(redemption["points_cost"]),
                floor=0,
            )

        logger.info("Denied redemption %s and refunded %s points", redemption_id, redemption["points_cost"])
        return await db_client.get_record(collection="reward_redemptions", record_id=redemption_id)
