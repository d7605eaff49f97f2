"""Update models for database operations."""

from pydantic import BaseModel, Field

from src.domain.task import RecurringPattern


# Fields copied from a template to its open instances on a series edit
INSTANCE_FIELDS = ("title", "description", "points", "penalty_points", "assigned_to")

# Fields that change a template's schedule and therefore need revalidation
SCHEDULE_FIELDS = ("recurring_pattern", "recurring_time", "recurring_days", "recurring_day_of_month")


class TaskChanges(BaseModel):
    """Partial update for a task, template or series. Unset fields are left alone."""

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    points: int | None = Field(default=None, ge=0)
    penalty_points: int | None = Field(default=None, ge=0)
    assigned_to: str | None = None
    due_date: str | None = None
    recurring_pattern: RecurringPattern | None = None
    recurring_time: str | None = None
    recurring_days: list[int] | None = None
    recurring_day_of_month: int | None = None

    def as_update(self) -> dict:
        return self.model_dump(exclude_unset=True)

    def instance_update(self) -> dict:
        """Subset applied to open instances of a series; due dates never move."""
        return {key: value for key, value in self.as_update().items() if key in INSTANCE_FIELDS}

    def touches_schedule(self) -> bool:
        return any(key in SCHEDULE_FIELDS for key in self.as_update())
