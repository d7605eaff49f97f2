"""HTTP API for recurring tasks, lifecycle, pickups, negotiations and points.

Actor identities are passed explicitly in request bodies; authentication is
handled in front of this service.
"""

import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel, Field

from src.core.clock import to_iso, utc_now
from src.core.errors import ErrorCategory, ErrorCode, classify_error_with_response
from src.core.rate_limiter import rate_limiter
from src.domain.create_models import ParentNegotiationCreate, RecurringTemplateCreate, TaskCreate, TransferOfferCreate
from src.domain.member import MemberRole
from src.domain.task import ActionScope, ScopedActionType, TaskStatus
from src.domain.update_models import TaskChanges
from src.models.service_models import CatchUpResult, MaterializationResult, OverdueStatus, PenaltyResult, ScopedActionResult
from src.modules.household import points
from src.modules.tasks import materializer, negotiation, penalties, pickup, series, service, state_machine


logger = logging.getLogger(__name__)

router = APIRouter(tags=["chorepoints"])

T = TypeVar("T")

_STATUS_BY_CATEGORY = {
    ErrorCategory.ALREADY_HANDLED: 409,
    ErrorCategory.NOT_ALLOWED: 409,
    ErrorCategory.INVALID_INPUT: 422,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.TRANSIENT: 503,
    ErrorCategory.UNKNOWN: 500,
}


async def _run(operation: Awaitable[T]) -> T:
    """Await a service call, translating domain errors into HTTP responses."""
    try:
        return await operation
    except HTTPException:
        raise
    except Exception as e:
        response = classify_error_with_response(e)
        status_code = 403 if response.code == ErrorCode.ERR_PERMISSION_DENIED else _STATUS_BY_CATEGORY[response.category]
        if status_code >= 500:  # noqa: PLR2004
            logger.error("Request failed: %s", e, exc_info=True)
        else:
            logger.info("Request rejected: %s (%s)", response.code, e)
        raise HTTPException(status_code=status_code, detail=response.model_dump(mode="json")) from e


class ScopedActionRequest(BaseModel):
    action: ScopedActionType
    scope: ActionScope = ActionScope.SINGLE
    changes: TaskChanges | None = None


class MemberAction(BaseModel):
    member_id: str


class ReviewRequest(BaseModel):
    reviewer_id: str
    reason: str | None = None


class OfferResponse(BaseModel):
    responder_id: str
    accept: bool
    message: str | None = None


class CounterOfferRequest(BaseModel):
    responder_id: str
    points_offered_to_recipient: int = Field(..., ge=0)
    points_kept_by_initiator: int = Field(..., ge=0)
    message: str | None = None


class MemberCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    role: MemberRole = MemberRole.CHILD


class RedemptionRequest(BaseModel):
    reward_id: str
    points_cost: int = Field(..., ge=0)


class DenyRequest(BaseModel):
    reason: str | None = None


# Recurring task triggers


@router.post("/recurring-tasks/generate")
async def generate_instances() -> MaterializationResult:
    return await _run(materializer.ensure_current_instances())


@router.post("/recurring-tasks/penalties")
async def apply_penalties() -> PenaltyResult:
    return await _run(penalties.process_overdue_penalties())


@router.post("/recurring-tasks/check-overdue")
async def check_overdue(x_caller_id: str = Header(default="global")) -> CatchUpResult:
    """Catch-up check: materialize due instances, then apply overdue penalties."""
    await rate_limiter.check_catchup_rate_limit(x_caller_id)

    generated = await _run(materializer.ensure_current_instances())
    penalized = await _run(penalties.process_overdue_penalties())
    errors = [*generated.errors, *penalized.errors]
    return CatchUpResult(
        success=not errors,
        generated_count=generated.generated_count,
        penalties_processed=penalized.penalized_count,
        timestamp=to_iso(utc_now()),
        errors=errors,
    )


@router.post("/recurring-tasks", status_code=201)
async def create_recurring_template(params: RecurringTemplateCreate) -> dict[str, Any]:
    return await _run(service.create_recurring_template(params=params))


@router.get("/recurring-tasks")
async def list_recurring_templates(include_disabled: bool = False) -> list[dict[str, Any]]:
    return await _run(service.list_templates(include_disabled=include_disabled))


@router.get("/recurring-tasks/{template_id}/series")
async def get_series(template_id: str) -> list[dict[str, Any]]:
    return await _run(materializer.get_series(template_id=template_id))


# Tasks


@router.post("/tasks", status_code=201)
async def create_task(params: TaskCreate) -> dict[str, Any]:
    return await _run(service.create_task(params=params))


@router.get("/tasks")
async def list_tasks(assigned_to: str | None = None, status: TaskStatus | None = None) -> list[dict[str, Any]]:
    return await _run(service.list_tasks(assigned_to=assigned_to, status=status))


@router.get("/tasks/hanging")
async def list_hanging_tasks() -> list[dict[str, Any]]:
    return await _run(pickup.list_hanging_tasks())


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    return await _run(service.get_task(task_id=task_id))


@router.get("/tasks/{task_id}/overdue-status")
async def get_overdue_status(task_id: str) -> OverdueStatus:
    task = await _run(service.get_task(task_id=task_id))
    return penalties.get_overdue_status(task)


@router.get("/tasks/{task_id}/transfers")
async def get_transfer_history(task_id: str) -> list[dict[str, Any]]:
    return await _run(pickup.get_transfer_history(task_id=task_id))


@router.post("/tasks/{task_id}/scoped-action")
async def scoped_action(task_id: str, request: ScopedActionRequest) -> ScopedActionResult:
    return await _run(
        series.apply_scoped_action(
            action=request.action, target_id=task_id, scope=request.scope, changes=request.changes
        )
    )


@router.post("/tasks/{task_id}/pickup")
async def pickup_task(task_id: str, request: MemberAction) -> dict[str, Any]:
    return await _run(pickup.pickup_hanging_task(task_id=task_id, claimant_id=request.member_id))


@router.post("/tasks/{task_id}/start")
async def start_task(task_id: str, request: MemberAction) -> dict[str, Any]:
    return await _run(state_machine.start_task(task_id=task_id, member_id=request.member_id))


@router.post("/tasks/{task_id}/submit")
async def submit_task(task_id: str, request: MemberAction) -> dict[str, Any]:
    return await _run(state_machine.submit_task(task_id=task_id, member_id=request.member_id))


@router.post("/tasks/{task_id}/approve")
async def approve_task(task_id: str, request: ReviewRequest) -> dict[str, Any]:
    return await _run(state_machine.approve_task(task_id=task_id, approver_id=request.reviewer_id))


@router.post("/tasks/{task_id}/reject")
async def reject_task(task_id: str, request: ReviewRequest) -> dict[str, Any]:
    return await _run(
        state_machine.reject_task(task_id=task_id, reviewer_id=request.reviewer_id, reason=request.reason)
    )


@router.post("/tasks/{task_id}/resubmit")
async def resubmit_task(task_id: str, request: MemberAction) -> dict[str, Any]:
    return await _run(state_machine.resubmit_task(task_id=task_id, member_id=request.member_id))


# Negotiations


@router.post("/negotiations", status_code=201)
async def create_offer(params: TransferOfferCreate) -> dict[str, Any]:
    return await _run(negotiation.create_transfer_offer(params=params))


@router.post("/negotiations/parent-requests", status_code=201)
async def create_parent_request(params: ParentNegotiationCreate) -> dict[str, Any]:
    return await _run(negotiation.create_parent_negotiation_request(params=params))


@router.post("/negotiations/{negotiation_id}/respond")
async def respond_to_offer(negotiation_id: str, request: OfferResponse) -> dict[str, Any]:
    return await _run(
        negotiation.respond_to_offer(
            negotiation_id=negotiation_id,
            responder_id=request.responder_id,
            accept=request.accept,
            response_message=request.message,
        )
    )


@router.post("/negotiations/{negotiation_id}/counter", status_code=201)
async def counter_offer(negotiation_id: str, request: CounterOfferRequest) -> dict[str, Any]:
    return await _run(
        negotiation.counter_offer(
            negotiation_id=negotiation_id,
            responder_id=request.responder_id,
            points_offered_to_recipient=request.points_offered_to_recipient,
            points_kept_by_initiator=request.points_kept_by_initiator,
            message=request.message,
        )
    )


@router.post("/negotiations/{negotiation_id}/withdraw")
async def withdraw_offer(negotiation_id: str, request: MemberAction) -> dict[str, Any]:
    return await _run(negotiation.withdraw_offer(negotiation_id=negotiation_id, initiator_id=request.member_id))


# Members and points


@router.post("/members", status_code=201)
async def create_member(request: MemberCreateRequest) -> dict[str, Any]:
    return await _run(points.create_member(name=request.name, role=request.role))


@router.get("/members/{member_id}")
async def get_member(member_id: str) -> dict[str, Any]:
    return await _run(points.get_member(member_id=member_id))


@router.get("/members/{member_id}/negotiations")
async def list_member_negotiations(member_id: str) -> list[dict[str, Any]]:
    return await _run(negotiation.list_negotiations_for_member(member_id=member_id))


@router.post("/members/{member_id}/redemptions", status_code=201)
async def redeem_reward(member_id: str, request: RedemptionRequest) -> dict[str, Any]:
    return await _run(
        points.redeem_reward(member_id=member_id, reward_id=request.reward_id, points_cost=request.points_cost)
    )


@router.post("/redemptions/{redemption_id}/approve")
async def approve_redemption(redemption_id: str) -> dict[str, Any]:
    return await _run(points.approve_redemption(redemption_id=redemption_id))


@router.post("/redemptions/{redemption_id}/deny")
async def deny_redemption(redemption_id: str, request: DenyRequest) -> dict[str, Any]:
    return await _run(points.deny_redemption(redemption_id=redemption_id, reason=request.reason))
