"""Pydantic models for service layer return types.

Batch operations report aggregate counts so that one failing template or
instance never hides the outcome of the rest.
"""

from pydantic import BaseModel, Field


class MaterializationResult(BaseModel):
    """Outcome of one ensure-current-instances run."""

    generated_count: int = 0
    templates_processed: int = 0
    templates_failed: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def summary(self) -> str:
        ok = self.templates_processed - self.templates_failed
        text = f"generated {self.generated_count} instances for {ok} of {self.templates_processed} templates"
        if self.errors:
            text += f"; {self.templates_failed} failed: {', '.join(self.errors)}"
        return text


class PenaltyResult(BaseModel):
    """Outcome of one overdue-penalty run."""

    penalized_count: int = 0
    failed_count: int = 0
    next_instances_created: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def summary(self) -> str:
        text = f"penalized {self.penalized_count} overdue tasks"
        if self.errors:
            text += f"; {self.failed_count} failed: {', '.join(self.errors)}"
        return text


class CatchUpResult(BaseModel):
    """Combined result of a catch-up check (materialize, then penalize)."""

    success: bool
    generated_count: int
    penalties_processed: int
    timestamp: str
    errors: list[str] = Field(default_factory=list)


class OverdueStatus(BaseModel):
    """Overdue/penalty state of a single task as shown to the child."""

    is_overdue: bool
    is_penalized: bool
    can_resubmit_without_penalty: bool
    status_message: str


class ScopedActionResult(BaseModel):
    """Rows touched by a single/series edit or delete."""

    action: str
    scope: str
    template_id: str | None = None
    updated_count: int = 0
    archived_count: int = 0
    template_updated: bool = False


class NotificationResult(BaseModel):
    """Result of dispatching one notification event."""

    delivered: bool
    event: str
    error: str | None = None
