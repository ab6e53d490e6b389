"""
Custom exception classes and structured error responses.

This module provides:
- Structured error response format ({"error": <message>, "code": ..., ...})
- Specific exception classes for the scheduler, import and pairing flows
- Error codes for programmatic error handling
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from app.core.correlation import get_correlation_id


class ErrorCode:
    """Error codes for programmatic error handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1003"

    # Schedule errors (2xxx)
    SCHEDULE_NOT_FOUND = "ERR_2001"
    SCHEDULE_INVALID_TRANSITION = "ERR_2002"
    SCHEDULE_DUPLICATE_ACTIVE = "ERR_2003"

    # Job errors (3xxx)
    JOB_NOT_FOUND = "ERR_3001"
    JOB_NOT_ELIGIBLE = "ERR_3002"

    # Pairing errors (4xxx)
    PAIRING_NOT_FOUND = "ERR_4001"
    PAIRING_EXPIRED_OR_INVALID = "ERR_4002"

    # Database errors (5xxx)
    DATABASE_ERROR = "ERR_5001"

    # Notification errors (6xxx)
    NOTIFICATION_PUBLISH_FAILED = "ERR_6001"


class ErrorResponse(BaseModel):
    """Structured error response for API."""

    model_config = ConfigDict(populate_by_name=True)

    error: str  # Human-readable message
    code: str  # Error code for programmatic handling
    type: str  # Error class name
    correlation_id: str | None = Field(None, alias="correlationId")
    timestamp: str  # ISO 8601 timestamp
    path: str | None = None

    @classmethod
    def create(
        cls,
        error_type: str,
        code: str,
        message: str,
        path: str | None = None,
    ) -> "ErrorResponse":
        """Create an error response with current timestamp and correlation ID."""
        return cls(
            error=message,
            code=code,
            type=error_type,
            correlation_id=get_correlation_id(),
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            path=path,
        )


class ApplicationSchedulerException(HTTPException):
    """Base exception for all application scheduler errors."""

    error_code: str = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        error_code: str | None = None,
    ):
        self.error_code = error_code or self.__class__.error_code
        self.message = detail
        error_response = ErrorResponse.create(
            error_type=self.__class__.__name__, code=self.error_code, message=detail
        )
        super().__init__(status_code=status_code, detail=error_response.model_dump(by_alias=True))


# =============================================================================
# Authentication Errors
# =============================================================================


class UnauthorizedError(ApplicationSchedulerException):
    """Raised when no valid identity could be resolved for the request."""

    error_code = ErrorCode.UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(detail=message, status_code=status.HTTP_401_UNAUTHORIZED)


# =============================================================================
# Not Found Errors
# =============================================================================


class NotFoundError(ApplicationSchedulerException):
    """Base class for not found errors (absent or not owned by the caller)."""

    error_code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            detail=f"{resource} not found: {identifier}", status_code=status.HTTP_404_NOT_FOUND
        )


class ScheduleNotFoundError(NotFoundError):
    """Raised when a schedule does not exist or belongs to another user."""

    error_code = ErrorCode.SCHEDULE_NOT_FOUND

    def __init__(self, schedule_id: str):
        super().__init__(resource="Schedule", identifier=schedule_id)


class JobNotFoundError(NotFoundError):
    """Raised when a job does not exist or belongs to another user."""

    error_code = ErrorCode.JOB_NOT_FOUND

    def __init__(self, job_id: str):
        super().__init__(resource="Job", identifier=job_id)


class PairingNotFoundError(NotFoundError):
    """Raised when a pairing session is unknown to the caller."""

    error_code = ErrorCode.PAIRING_NOT_FOUND

    def __init__(self, pairing_id: str):
        super().__init__(resource="Pairing", identifier=pairing_id)


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(ApplicationSchedulerException):
    """Raised for malformed temporal fields, bad emails or missing required fields."""

    error_code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str):
        super().__init__(detail=message, status_code=status.HTTP_400_BAD_REQUEST)


class JobNotEligibleError(ValidationError):
    """Raised when a job has progressed past the point where scheduling makes sense."""

    error_code = ErrorCode.JOB_NOT_ELIGIBLE

    def __init__(self, job_id: str, job_status: str):
        super().__init__(
            message=(
                f'Job {job_id} is currently marked as "{job_status}". '
                'Only "interested" jobs can be scheduled.'
            )
        )


# =============================================================================
# Schedule State Errors
# =============================================================================


class InvalidStateTransitionError(ApplicationSchedulerException):
    """Raised when an action is not valid for the schedule's current status."""

    error_code = ErrorCode.SCHEDULE_INVALID_TRANSITION

    def __init__(self, schedule_id: str, current_status: str, action: str):
        self.current_status = current_status
        super().__init__(
            detail=f"Cannot {action} schedule {schedule_id}: it is already {current_status}",
            status_code=status.HTTP_409_CONFLICT,
        )


class DuplicateActiveScheduleError(ApplicationSchedulerException):
    """Raised when the job already has a schedule in the scheduled state."""

    error_code = ErrorCode.SCHEDULE_DUPLICATE_ACTIVE

    def __init__(self, job_id: str):
        super().__init__(
            detail=(
                f"A schedule already exists for job {job_id}. "
                "Please reschedule the existing item."
            ),
            status_code=status.HTTP_409_CONFLICT,
        )


# =============================================================================
# Pairing Errors
# =============================================================================


class PairingExpiredOrInvalidError(ApplicationSchedulerException):
    """
    Raised for every failed pairing completion.

    Wrong code, unknown pairing, expiry and reuse share one message so the
    caller cannot tell them apart.
    """

    error_code = ErrorCode.PAIRING_EXPIRED_OR_INVALID

    def __init__(self):
        super().__init__(
            detail="Pairing code is invalid or has expired",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


# =============================================================================
# Operation Errors
# =============================================================================


class DatabaseOperationError(ApplicationSchedulerException):
    """
    Raised when a database operation fails.

    The client only sees a generic message; the operation name and the
    driver error stay on the exception for logging.
    """

    error_code = ErrorCode.DATABASE_ERROR

    def __init__(self, operation: str, reason: str | None = None):
        self.operation = operation
        self.reason = reason
        super().__init__(
            detail="Database operation failed",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


class NotificationPublishError(ApplicationSchedulerException):
    """Raised when a notification could not be handed to the notification queue."""

    error_code = ErrorCode.NOTIFICATION_PUBLISH_FAILED

    def __init__(self, detail: str):
        super().__init__(
            detail=f"Notification publish failed: {detail}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
