"""Domain exceptions and error classification for user-facing responses."""

from enum import Enum

from pydantic import BaseModel


class ChorePointsError(Exception):
    """Base class for errors raised by chorepoints operations."""


class InvalidScheduleError(ChorePointsError):
    """A recurring rule is malformed or its next occurrence is too close to now."""


class NotEditableError(ChorePointsError):
    """A single-scope action targeted a finished (completed/approved/archived) task."""


class AlreadyClaimedError(ChorePointsError):
    """Another member claimed or resolved the item first."""


class InsufficientPointsError(ChorePointsError):
    """A member's balance cannot cover the requested amount."""


class TaskNotAvailableError(ChorePointsError):
    """The task is not open for the requested pickup or negotiation."""


class InvalidStateTransitionError(ChorePointsError, ValueError):
    """A lifecycle transition is not allowed from the current status."""


class SlotTakenError(ChorePointsError):
    """Another live instance of the series already occupies that due date."""


class ErrorCategory(Enum):
    """Categories of errors surfaced to clients."""

    ALREADY_HANDLED = "already_handled"
    NOT_ALLOWED = "not_allowed"
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Scheduling
    ERR_INVALID_SCHEDULE = "ERR_INVALID_SCHEDULE"

    # Task actions
    ERR_NOT_EDITABLE = "ERR_NOT_EDITABLE"
    ERR_ALREADY_CLAIMED = "ERR_ALREADY_CLAIMED"
    ERR_TASK_NOT_AVAILABLE = "ERR_TASK_NOT_AVAILABLE"
    ERR_INVALID_STATE_TRANSITION = "ERR_INVALID_STATE_TRANSITION"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_SLOT_TAKEN = "ERR_SLOT_TAKEN"

    # Points
    ERR_INSUFFICIENT_POINTS = "ERR_INSUFFICIENT_POINTS"

    # Permission errors
    ERR_PERMISSION_DENIED = "ERR_PERMISSION_DENIED"

    # Infrastructure
    ERR_STORE_UNAVAILABLE = "ERR_STORE_UNAVAILABLE"
    ERR_RATE_LIMIT_EXCEEDED = "ERR_RATE_LIMIT_EXCEEDED"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    category: ErrorCategory
    message: str
    suggestion: str
    severity: ErrorSeverity


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response with recovery suggestions.

    The category tells the client whether someone else already handled the item,
    whether the action is simply not allowed, or whether retrying may help.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, category, message, suggestion, and severity
    """
    detail = str(exception)

    if isinstance(exception, AlreadyClaimedError):
        return ErrorResponse(
            code=ErrorCode.ERR_ALREADY_CLAIMED,
            category=ErrorCategory.ALREADY_HANDLED,
            message="Someone else got to this one first.",
            suggestion="Refresh the list to see what is still available.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, NotEditableError):
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_EDITABLE,
            category=ErrorCategory.NOT_ALLOWED,
            message="Finished tasks can't be changed.",
            suggestion="Edit the whole series instead, or create a new task.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InvalidScheduleError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_SCHEDULE,
            category=ErrorCategory.INVALID_INPUT,
            message=detail or "This schedule is not valid.",
            suggestion="Pick a later time or a different day.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, SlotTakenError):
        return ErrorResponse(
            code=ErrorCode.ERR_SLOT_TAKEN,
            category=ErrorCategory.NOT_ALLOWED,
            message=detail or "Another task in this series is already due then.",
            suggestion="Pick a different due date or edit the other task instead.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InsufficientPointsError):
        return ErrorResponse(
            code=ErrorCode.ERR_INSUFFICIENT_POINTS,
            category=ErrorCategory.NOT_ALLOWED,
            message="Not enough points for this.",
            suggestion="Complete more tasks to earn points, then try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, TaskNotAvailableError):
        return ErrorResponse(
            code=ErrorCode.ERR_TASK_NOT_AVAILABLE,
            category=ErrorCategory.NOT_ALLOWED,
            message=detail or "This task is not available.",
            suggestion="Refresh the list to see current tasks.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InvalidStateTransitionError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_STATE_TRANSITION,
            category=ErrorCategory.NOT_ALLOWED,
            message="This action cannot be performed in the current state.",
            suggestion="Refresh the task and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, PermissionError):
        return ErrorResponse(
            code=ErrorCode.ERR_PERMISSION_DENIED,
            category=ErrorCategory.NOT_ALLOWED,
            message="You don't have permission for this action.",
            suggestion="Ask a parent if you think this is an error.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, KeyError):
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_FOUND,
            category=ErrorCategory.NOT_FOUND,
            message="That item no longer exists.",
            suggestion="Refresh and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, ValueError):
        return ErrorResponse(
            code=ErrorCode.ERR_UNKNOWN,
            category=ErrorCategory.INVALID_INPUT,
            message=detail or "The request was not valid.",
            suggestion="Check the values and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, RuntimeError | ConnectionError | TimeoutError):
        return ErrorResponse(
            code=ErrorCode.ERR_STORE_UNAVAILABLE,
            category=ErrorCategory.TRANSIENT,
            message="Something went wrong saving your change.",
            suggestion="Please try again in a moment.",
            severity=ErrorSeverity.HIGH,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        category=ErrorCategory.UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later.",
        severity=ErrorSeverity.MEDIUM,
    )
