"""Domain models and DTOs."""

from src.domain.create_models import RecurringTemplateCreate, TaskCreate, TransferOfferCreate
from src.domain.member import Member, MemberRole, RedemptionStatus
from src.domain.negotiation import Negotiation, NegotiationStatus, NegotiationType
from src.domain.task import (
    ActionScope,
    RecurringPattern,
    ScopedActionType,
    Task,
    TaskStatus,
    TaskType,
)
from src.domain.update_models import TaskChanges


__all__ = [
    "ActionScope",
    "Member",
    "MemberRole",
    "Negotiation",
    "NegotiationStatus",
    "NegotiationType",
    "RecurringPattern",
    "RecurringTemplateCreate",
    "RedemptionStatus",
    "ScopedActionType",
    "Task",
    "TaskChanges",
    "TaskCreate",
    "TaskStatus",
    "TaskType",
    "TransferOfferCreate",
]
