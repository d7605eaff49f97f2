"""Task domain models and enums (templates and their instances share one table)."""

from enum import StrEnum

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    """Task lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


# Statuses that automated processes and series edits may still touch
OPEN_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})

# Finished work is never edited with single scope
FINISHED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.APPROVED, TaskStatus.ARCHIVED})


class TaskType(StrEnum):
    """How a task is assigned."""

    NON_NEGOTIABLE = "non_negotiable"
    NEGOTIABLE = "negotiable"  # Can be transferred to a sibling with a point split
    HANGING = "hanging"  # First come, first served pickup


class RecurringPattern(StrEnum):
    """Cadence of a recurring template."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ScopedActionType(StrEnum):
    """User action applied through the series resolver."""

    EDIT = "edit"
    DELETE = "delete"


class ActionScope(StrEnum):
    """Whether an action affects one task or the whole series."""

    SINGLE = "single"
    SERIES = "series"


class Task(BaseModel):
    """Task data transfer object (template or instance)."""

    id: str = Field(..., description="Unique task ID from database")
    created: str = Field(..., description="Creation timestamp")
    updated: str = Field(..., description="Last update timestamp")
    title: str = Field(..., description="Task title")
    description: str | None = Field(default=None, description="Detailed task description")
    points: int = Field(default=0, description="Points awarded on approval")
    penalty_points: int = Field(default=0, description="Points deducted once when overdue")
    assigned_to: str | None = Field(default=None, description="Assigned member ID")
    created_by: str | None = Field(default=None, description="Parent who created the task")
    task_type: TaskType = Field(default=TaskType.NON_NEGOTIABLE, description="Assignment mode")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Current lifecycle status")
    due_date: str | None = Field(default=None, description="Deadline (UTC ISO format)")

    is_recurring: bool = Field(default=False, description="True for templates")
    is_recurring_enabled: bool = Field(default=False, description="Template generates new instances")
    parent_task_id: str | None = Field(default=None, description="Template ID for series instances")
    recurring_pattern: RecurringPattern | None = Field(default=None, description="Template cadence")
    recurring_time: str | None = Field(default=None, description="Template local time (HH:MM)")
    recurring_days: list[int] | None = Field(default=None, description="Weekly template weekdays")
    recurring_day_of_month: int | None = Field(default=None, description="Monthly template day")
    sequence_number: int | None = Field(default=None, description="Ordinal within the series")

    penalized_at: str | None = Field(default=None, description="When the overdue penalty was applied")
    completed_at: str | None = Field(default=None, description="Submission timestamp")
    approved_at: str | None = Field(default=None, description="Approval timestamp")
    archived_at: str | None = Field(default=None, description="Archive timestamp")
    rejection_reason: str | None = Field(default=None, description="Parent feedback on rejection")
    rejected_after_deadline: bool = Field(default=False, description="Rejected once the deadline had passed")

    is_available_for_pickup: bool = Field(default=False, description="Hanging task still unclaimed")
    hanging_expires_at: str | None = Field(default=None, description="Pickup window end")
    original_assignee: str | None = Field(default=None, description="Assignee before a transfer")
    point_split: dict[str, int] | None = Field(default=None, description="Points split after a transfer")

    @property
    def is_template(self) -> bool:
        return self.is_recurring and self.parent_task_id is None
