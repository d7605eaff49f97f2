"""Task negotiations: sibling transfers with point splits, and parent requests.

A sibling transfer moves a task to another child for a share of its points. A
parent request asks a parent to change one task's points, deadline or
description. Either kind is ``pending`` until the recipient accepts, rejects or
counters it, the initiator withdraws it, or its ``expires_at`` passes. Expiry
is evaluated whenever an offer is read; there is no background sweep. Every
status change is a conditional update on ``status = "pending"`` so two
responses can't both win.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from src.core import db_client
from src.core.clock import parse_iso, to_iso, utc_now
from src.core.config import constants, settings
from src.core.db_client import DuplicateRecordError, sanitize_param
from src.core.errors import InvalidStateTransitionError, SlotTakenError, TaskNotAvailableError
from src.core.logging import log_with_context, span
from src.domain.create_models import ParentNegotiationCreate, TransferOfferCreate
from src.domain.member import MemberRole
from src.domain.negotiation import NegotiationStatus, NegotiationType
from src.domain.task import OPEN_STATUSES, TaskStatus, TaskType
from src.services import notification_service
from src.services.notification_service import NotificationEvent


logger = logging.getLogger(__name__)

TRANSFER_REASON = "Accepted sibling transfer"


def effective_status(negotiation: dict[str, Any], now: datetime | None = None) -> NegotiationStatus:
    """Stored status, except that a pending offer past its expiry reads as expired."""
    status = NegotiationStatus(negotiation["status"])
    if status == NegotiationStatus.PENDING and parse_iso(negotiation["expires_at"]) <= (now or utc_now()):
        return NegotiationStatus.EXPIRED
    return status


def _live_condition(now: datetime) -> str:
    return f'status = "{NegotiationStatus.PENDING.value}" && expires_at > "{to_iso(now)}"'


def _is_template(task: dict[str, Any]) -> bool:
    return bool(task["is_recurring"]) and task.get("parent_task_id") is None


async def _ensure_no_live_negotiation(task_id: str, now: datetime) -> None:
    existing = await db_client.get_first_record(
        collection="negotiations",
        filter_query=f'task_id = "{sanitize_param(task_id)}" && {_live_condition(now)}',
    )
    if existing is not None:
        msg = "A negotiation for this task is already pending"
        raise TaskNotAvailableError(msg)


def _validate_split(task: dict[str, Any], offered: int, kept: int) -> None:
    if offered < 0 or kept < 0:
        msg = "Point values cannot be negative"
        raise ValueError(msg)
    if offered + kept != int(task["points"]):
        msg = f"Point split must equal original task points ({task['points']})"
        raise ValueError(msg)


async def _raise_not_pending(negotiation_id: str, now: datetime) -> None:
    negotiation = await db_client.get_record(collection="negotiations", record_id=negotiation_id)
    status = effective_status(negotiation, now)
    if status == NegotiationStatus.EXPIRED:
        msg = "This offer has expired"
        raise TaskNotAvailableError(msg)
    msg = f"Offer {negotiation_id} is already {status.value}"
    raise InvalidStateTransitionError(msg)


async def _load_for_response(negotiation_id: str, responder_id: str) -> dict[str, Any]:
    negotiation = await db_client.get_record(collection="negotiations", record_id=negotiation_id)
    if negotiation["recipient_id"] != responder_id:
        msg = "Only the recipient can respond to this offer"
        raise PermissionError(msg)
    return negotiation


async def create_transfer_offer(*, params: TransferOfferCreate, now: datetime | None = None) -> dict[str, Any]:
    """Offer a negotiable task to a sibling for a share of its points.

    Raises:
        TaskNotAvailableError: If the task is not negotiable, not open, or already has a live offer
        PermissionError: If the initiator doesn't hold the task or the recipient isn't another child
        ValueError: If the split is negative or doesn't add up to the task's points
    """
    now = now or utc_now()
    with span("negotiation.create_transfer_offer"):
        task = await db_client.get_record(collection="tasks", record_id=params.task_id)
        if task["task_type"] != TaskType.NEGOTIABLE or task["status"] not in OPEN_STATUSES or _is_template(task):
            msg = "Task is not available for negotiation"
            raise TaskNotAvailableError(msg)
        if task.get("assigned_to") != params.initiator_id:
            msg = "You can only negotiate tasks assigned to you"
            raise PermissionError(msg)

        recipient = await db_client.get_record(collection="members", record_id=params.recipient_id)
        if recipient["role"] != MemberRole.CHILD or params.recipient_id == params.initiator_id:
            msg = "Tasks can only be offered to a sibling"
            raise PermissionError(msg)

        _validate_split(task, params.points_offered_to_recipient, params.points_kept_by_initiator)

        await _ensure_no_live_negotiation(params.task_id, now)

        hours = params.expires_in_hours or settings.negotiation_default_expiry_hours
        negotiation = await db_client.create_record(
            collection="negotiations",
            data={
                "task_id": params.task_id,
                "initiator_id": params.initiator_id,
                "recipient_id": params.recipient_id,
                "negotiation_type": NegotiationType.SIBLING_TRANSFER.value,
                "points_offered_to_recipient": params.points_offered_to_recipient,
                "points_kept_by_initiator": params.points_kept_by_initiator,
                "status": NegotiationStatus.PENDING.value,
                "expires_at": to_iso(now + timedelta(hours=hours)),
                "offer_message": params.offer_message,
            },
        )

        logger.info(
            "Member %s offered task %s to %s (%d/%d)",
            params.initiator_id,
            params.task_id,
            params.recipient_id,
            params.points_offered_to_recipient,
            params.points_kept_by_initiator,
        )
        await notification_service.notify_transfer(
            event=NotificationEvent.TRANSFER_OFFERED, negotiation=negotiation, recipient_id=params.recipient_id
        )
        return negotiation


async def create_parent_negotiation_request(
    *, params: ParentNegotiationCreate, now: datetime | None = None
) -> dict[str, Any]:
    """Ask a parent to change the points, deadline or description of one task.

    Only the child holding an open task (a one-off or a single instance of a
    series) may ask, and nothing changes until the parent accepts.

    Raises:
        TaskNotAvailableError: If the task is not open, is a template, or already has a live negotiation
        PermissionError: If the initiator doesn't hold the task or the recipient isn't a parent
        ValueError: If no change is requested
    """
    now = now or utc_now()
    with span("negotiation.create_parent_negotiation_request"):
        changes = params.requested_changes()
        if not changes:
            msg = "Ask for at least one change: points, due date or description"
            raise ValueError(msg)

        task = await db_client.get_record(collection="tasks", record_id=params.task_id)
        if task["status"] not in OPEN_STATUSES or _is_template(task):
            msg = "Task is not available for negotiation"
            raise TaskNotAvailableError(msg)
        if task.get("assigned_to") != params.initiator_id:
            msg = "You can only negotiate tasks assigned to you"
            raise PermissionError(msg)

        recipient = await db_client.get_record(collection="members", record_id=params.recipient_id)
        if recipient["role"] != MemberRole.PARENT:
            msg = "Change requests must be sent to a parent"
            raise PermissionError(msg)

        await _ensure_no_live_negotiation(params.task_id, now)

        hours = params.expires_in_hours or settings.negotiation_default_expiry_hours
        requested_due_date = changes.get("due_date")
        negotiation = await db_client.create_record(
            collection="negotiations",
            data={
                "task_id": params.task_id,
                "initiator_id": params.initiator_id,
                "recipient_id": params.recipient_id,
                "negotiation_type": NegotiationType.PARENT_NEGOTIATION.value,
                "requested_points": params.requested_points,
                "requested_due_date": to_iso(parse_iso(requested_due_date)) if requested_due_date else None,
                "requested_description": params.requested_description,
                "status": NegotiationStatus.PENDING.value,
                "expires_at": to_iso(now + timedelta(hours=hours)),
                "offer_message": params.offer_message,
            },
        )

        logger.info(
            "Member %s asked parent %s to change task %s: %s",
            params.initiator_id,
            params.recipient_id,
            params.task_id,
            ", ".join(changes),
        )
        await notification_service.notify_parent_request(
            event=NotificationEvent.PARENT_REQUEST_SENT, negotiation=negotiation, recipient_id=params.recipient_id
        )
        return negotiation


def _transfer_terms(negotiation: dict[str, Any], task: dict[str, Any]) -> tuple[str, str, dict[str, int]]:
    """Work out who ends up with the task and how its points are split.

    The task always moves away from its original holder, whichever side made
    the accepted offer (counter-offers swap initiator and recipient).

    Returns:
        (original assignee, final assignee, point split)
    """
    original = task.get("original_assignee") or task["assigned_to"]
    if negotiation["initiator_id"] == original:
        final = negotiation["recipient_id"]
        final_points = int(negotiation["points_offered_to_recipient"])
        original_points = int(negotiation["points_kept_by_initiator"])
    else:
        final = negotiation["initiator_id"]
        final_points = int(negotiation["points_kept_by_initiator"])
        original_points = int(negotiation["points_offered_to_recipient"])
    return original, final, {"original_assignee": original_points, "final_assignee": final_points}


async def _accept(negotiation: dict[str, Any], response_message: str | None, now: datetime) -> dict[str, Any]:
    task = await db_client.get_record(collection="tasks", record_id=negotiation["task_id"])
    original, final, split = _transfer_terms(negotiation, task)

    async with db_client.transaction() as tx:
        accepted = await tx.update_if(
            collection="negotiations",
            record_id=negotiation["id"],
            data={
                "status": NegotiationStatus.ACCEPTED.value,
                "response_message": response_message,
                "responded_at": to_iso(now),
            },
            condition=_live_condition(now),
        )
        if accepted:
            moved = await tx.update_if(
                collection="tasks",
                record_id=task["id"],
                data={"assigned_to": final, "original_assignee": original, "point_split": split},
                condition=f'assigned_to = "{sanitize_param(original)}" && '
                f'(status = "{TaskStatus.PENDING.value}" || status = "{TaskStatus.IN_PROGRESS.value}")',
            )
            if moved == 0:
                msg = "Task is no longer available for transfer"
                raise TaskNotAvailableError(msg)
            await tx.create(
                collection="task_transfers",
                data={
                    "task_id": task["id"],
                    "from_member_id": original,
                    "to_member_id": final,
                    "transfer_reason": TRANSFER_REASON,
                    "negotiation_id": negotiation["id"],
                },
            )

    if not accepted:
        await _raise_not_pending(negotiation["id"], now)

    log_with_context(
        logger,
        "info",
        "Task transferred",
        task_id=task["id"],
        from_member_id=original,
        to_member_id=final,
        point_split=split,
    )
    updated = await db_client.get_record(collection="negotiations", record_id=negotiation["id"])
    await notification_service.notify_transfer(
        event=NotificationEvent.TRANSFER_ACCEPTED, negotiation=updated, recipient_id=negotiation["initiator_id"]
    )
    return updated


def _requested_task_update(negotiation: dict[str, Any]) -> dict[str, Any]:
    fields = {
        "points": negotiation.get("requested_points"),
        "due_date": negotiation.get("requested_due_date"),
        "description": negotiation.get("requested_description"),
    }
    return {field: value for field, value in fields.items() if value is not None}


async def _accept_parent_request(
    negotiation: dict[str, Any], response_message: str | None, now: datetime
) -> dict[str, Any]:
    responder = await db_client.get_record(collection="members", record_id=negotiation["recipient_id"])
    if responder["role"] != MemberRole.PARENT:
        msg = "Only a parent can approve a change request"
        raise PermissionError(msg)

    changes = _requested_task_update(negotiation)
    open_condition = (
        f'assigned_to = "{sanitize_param(negotiation["initiator_id"])}" && '
        f'(status = "{TaskStatus.PENDING.value}" || status = "{TaskStatus.IN_PROGRESS.value}")'
    )
    try:
        async with db_client.transaction() as tx:
            accepted = await tx.update_if(
                collection="negotiations",
                record_id=negotiation["id"],
                data={
                    "status": NegotiationStatus.ACCEPTED.value,
                    "response_message": response_message,
                    "responded_at": to_iso(now),
                },
                condition=_live_condition(now),
            )
            if accepted:
                changed = await tx.update_if(
                    collection="tasks", record_id=negotiation["task_id"], data=changes, condition=open_condition
                )
                if changed == 0:
                    msg = "Task can no longer be changed"
                    raise TaskNotAvailableError(msg)
    except DuplicateRecordError as e:
        msg = f"Another task in this series is already due at {changes.get('due_date')}"
        raise SlotTakenError(msg) from e

    if not accepted:
        await _raise_not_pending(negotiation["id"], now)

    log_with_context(
        logger,
        "info",
        "Change request accepted",
        task_id=negotiation["task_id"],
        parent_id=negotiation["recipient_id"],
        changes=sorted(changes),
    )
    updated = await db_client.get_record(collection="negotiations", record_id=negotiation["id"])
    await notification_service.notify_parent_request(
        event=NotificationEvent.PARENT_REQUEST_ACCEPTED, negotiation=updated, recipient_id=negotiation["initiator_id"]
    )
    return updated


async def respond_to_offer(
    *,
    negotiation_id: str,
    responder_id: str,
    accept: bool,
    response_message: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Accept or reject a pending offer.

    Accepting a sibling transfer moves the task to the sibling, records the
    original assignee and the point split, and writes a transfer audit row, all
    in one transaction. Accepting a parent request applies the requested points,
    deadline and description to the still-open task in the same way.

    Raises:
        PermissionError: If the responder is not the offer's recipient
        SlotTakenError: If a requested deadline collides with another instance of the series
        TaskNotAvailableError: If the offer has expired or the task can no longer move
        InvalidStateTransitionError: If the offer was already resolved
    """
    now = now or utc_now()
    with span("negotiation.respond_to_offer"):
        negotiation = await _load_for_response(negotiation_id, responder_id)

        if accept:
            if negotiation["negotiation_type"] == NegotiationType.PARENT_NEGOTIATION:
                return await _accept_parent_request(negotiation, response_message, now)
            return await _accept(negotiation, response_message, now)

        rejected = await db_client.update_record_if(
            collection="negotiations",
            record_id=negotiation_id,
            data={
                "status": NegotiationStatus.REJECTED.value,
                "response_message": response_message,
                "responded_at": to_iso(now),
            },
            condition=_live_condition(now),
        )
        if rejected is None:
            await _raise_not_pending(negotiation_id, now)
        logger.info("Offer %s rejected by %s", negotiation_id, responder_id)
        return rejected


async def counter_offer(
    *,
    negotiation_id: str,
    responder_id: str,
    points_offered_to_recipient: int,
    points_kept_by_initiator: int,
    message: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Reject an offer and propose a different split with the roles swapped.

    The responder becomes the initiator of the new offer, which expires after
    a fixed window. The task does not move until some offer is accepted.
    """
    now = now or utc_now()
    with span("negotiation.counter_offer"):
        negotiation = await _load_for_response(negotiation_id, responder_id)
        if negotiation["negotiation_type"] != NegotiationType.SIBLING_TRANSFER:
            msg = "Change requests can only be accepted or rejected"
            raise InvalidStateTransitionError(msg)
        task = await db_client.get_record(collection="tasks", record_id=negotiation["task_id"])
        _validate_split(task, points_offered_to_recipient, points_kept_by_initiator)

        async with db_client.transaction() as tx:
            rejected = await tx.update_if(
                collection="negotiations",
                record_id=negotiation_id,
                data={"status": NegotiationStatus.REJECTED.value, "responded_at": to_iso(now)},
                condition=_live_condition(now),
            )
            counter_id = None
            if rejected:
                counter_id = await tx.create(
                    collection="negotiations",
                    data={
                        "task_id": negotiation["task_id"],
                        "initiator_id": negotiation["recipient_id"],
                        "recipient_id": negotiation["initiator_id"],
                        "negotiation_type": negotiation["negotiation_type"],
                        "points_offered_to_recipient": points_offered_to_recipient,
                        "points_kept_by_initiator": points_kept_by_initiator,
                        "status": NegotiationStatus.PENDING.value,
                        "expires_at": to_iso(now + timedelta(hours=constants.COUNTER_OFFER_EXPIRY_HOURS)),
                        "offer_message": message,
                        "parent_negotiation_id": negotiation_id,
                    },
                )

        if counter_id is None:
            await _raise_not_pending(negotiation_id, now)

        logger.info("Offer %s countered by %s with offer %s", negotiation_id, responder_id, counter_id)
        counter = await db_client.get_record(collection="negotiations", record_id=counter_id)
        await notification_service.notify_transfer(
            event=NotificationEvent.TRANSFER_OFFERED, negotiation=counter, recipient_id=counter["recipient_id"]
        )
        return counter


async def withdraw_offer(*, negotiation_id: str, initiator_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Cancel a pending offer. Only the initiator may withdraw it."""
    now = now or utc_now()
    with span("negotiation.withdraw_offer"):
        negotiation = await db_client.get_record(collection="negotiations", record_id=negotiation_id)
        if negotiation["initiator_id"] != initiator_id:
            msg = "Only the initiator can withdraw this offer"
            raise PermissionError(msg)

        withdrawn = await db_client.update_record_if(
            collection="negotiations",
            record_id=negotiation_id,
            data={"status": NegotiationStatus.WITHDRAWN.value, "responded_at": to_iso(now)},
            condition=_live_condition(now),
        )
        if withdrawn is None:
            await _raise_not_pending(negotiation_id, now)
        return withdrawn


async def list_negotiations_for_member(*, member_id: str, now: datetime | None = None) -> list[dict[str, Any]]:
    """Offers sent or received by a member, newest first, with expiry applied."""
    now = now or utc_now()
    member = sanitize_param(member_id)
    negotiations = await db_client.list_all_records(
        collection="negotiations",
        filter_query=f'(initiator_id = "{member}" || recipient_id = "{member}")',
        sort="-id",
    )
    for negotiation in negotiations:
        negotiation["status"] = effective_status(negotiation, now).value
    return negotiations
