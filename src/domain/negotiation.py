"""Negotiation domain models: sibling transfers and parent renegotiation requests."""

from enum import StrEnum

from pydantic import BaseModel, Field


class NegotiationStatus(StrEnum):
    """Offer lifecycle. Only PENDING may change; the rest are terminal."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"


class NegotiationType(StrEnum):
    """Kind of negotiation."""

    SIBLING_TRANSFER = "sibling_transfer"
    PARENT_NEGOTIATION = "parent_negotiation"


class Negotiation(BaseModel):
    """Negotiation data transfer object."""

    id: str = Field(..., description="Unique negotiation ID")
    task_id: str = Field(..., description="Task being transferred")
    initiator_id: str = Field(..., description="Child offering the task or asking for changes")
    recipient_id: str = Field(..., description="Sibling receiving the offer, or the parent asked")
    negotiation_type: NegotiationType = Field(default=NegotiationType.SIBLING_TRANSFER)
    points_offered_to_recipient: int = Field(default=0, ge=0)
    points_kept_by_initiator: int = Field(default=0, ge=0)
    requested_points: int | None = Field(default=None, ge=0, description="Parent request: new points")
    requested_due_date: str | None = Field(default=None, description="Parent request: new deadline")
    requested_description: str | None = Field(default=None, description="Parent request: new description")
    status: NegotiationStatus = Field(default=NegotiationStatus.PENDING)
    expires_at: str = Field(..., description="Offer expiry (UTC ISO format)")
    offer_message: str | None = Field(default=None)
    response_message: str | None = Field(default=None)
    responded_at: str | None = Field(default=None)
    parent_negotiation_id: str | None = Field(default=None, description="Offer this one counters")
