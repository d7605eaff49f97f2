"""Pydantic models for creating records in database."""

from pydantic import BaseModel, Field, field_validator

from src.core.config import constants
from src.domain.task import RecurringPattern, TaskType


class TaskCreate(BaseModel):
    """Payload for a one-off task."""

    title: str = Field(..., min_length=1, description="Task title")
    description: str | None = Field(default=None, description="Task description")
    points: int = Field(default=0, ge=0, description="Points awarded on approval")
    penalty_points: int = Field(default=0, ge=0, description="Points deducted once when overdue")
    assigned_to: str | None = Field(default=None, description="Assigned child (None for hanging tasks)")
    created_by: str = Field(..., description="Parent creating the task")
    task_type: TaskType = Field(default=TaskType.NON_NEGOTIABLE, description="Assignment mode")
    due_date: str | None = Field(default=None, description="Deadline (ISO format)")
    hanging_expires_at: str | None = Field(default=None, description="Pickup window end for hanging tasks")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Strip surrounding whitespace and reject blank titles."""
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty")
        return v


class RecurringTemplateCreate(TaskCreate):
    """Payload for a recurring template.

    Schedule completeness (weekday list, day of month, time format) is checked by
    the recurrence validator so that it surfaces as an invalid schedule.
    """

    recurring_pattern: RecurringPattern = Field(..., description="daily, weekly or monthly")
    recurring_time: str = Field(default=constants.DEFAULT_RECURRING_TIME, description="Local time (HH:MM)")
    recurring_days: list[int] | None = Field(default=None, description="Weekly: 0=Monday .. 6=Sunday")
    recurring_day_of_month: int | None = Field(default=None, description="Monthly: 1..31")


class TransferOfferCreate(BaseModel):
    """Payload for a sibling transfer offer."""

    task_id: str
    initiator_id: str
    recipient_id: str
    points_offered_to_recipient: int = Field(..., ge=0)
    points_kept_by_initiator: int = Field(..., ge=0)
    expires_in_hours: int | None = Field(default=None, gt=0)
    offer_message: str | None = None


class ParentNegotiationCreate(BaseModel):
    """Payload for a child asking a parent to change one task."""

    task_id: str
    initiator_id: str
    recipient_id: str
    requested_points: int | None = Field(default=None, ge=0)
    requested_due_date: str | None = Field(default=None, description="New deadline (ISO format)")
    requested_description: str | None = None
    expires_in_hours: int | None = Field(default=None, gt=0)
    offer_message: str | None = None

    def requested_changes(self) -> dict:
        """Task fields the request would change."""
        return {
            field: value
            for field, value in {
                "points": self.requested_points,
                "due_date": self.requested_due_date,
                "description": self.requested_description,
            }.items()
            if value is not None
        }
