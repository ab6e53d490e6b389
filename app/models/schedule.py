"""
Application schedule models.

A schedule defers the submission of one job application to a chosen
instant. Lifecycle: scheduled -> submitted | expired | cancelled; every
terminal state is final.
"""
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from app.models.base import CamelModel, stringify_id


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    SUBMITTED = "submitted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class AuditEventName(str, Enum):
    """Entries of a schedule's append-only audit trail."""
    CREATED = "created"
    RESCHEDULED = "rescheduled"
    SUBMITTED = "submitted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    IMPORTED_SUBMITTED = "imported_submitted"
    REMINDER_SENT = "reminder_sent"
    NOTIFICATION_SENT = "notification_sent"
    JOB_STATUS_SYNCED = "job_status_synced"


class NotificationKind(str, Enum):
    CREATED = "created"
    SUBMITTED = "submitted"
    EXPIRED = "expired"
    REMINDER = "reminder"


class NotificationStatus(str, Enum):
    """
    Outbox entry states.

    pending -> sent | failed; skipped is written directly for reminder
    windows superseded by a narrower one.
    """
    PENDING = "pending"
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


class SubmissionSource(str, Enum):
    MANUAL = "manual"
    SWEEP = "sweep"
    IMPORT = "import"


def reminder_key(offset_minutes: int) -> str:
    return f"reminder:{offset_minutes}"


def new_notification(
    kind: NotificationKind,
    now: datetime,
    offset_minutes: int | None = None,
    status: NotificationStatus = NotificationStatus.PENDING,
) -> dict:
    """Build an outbox entry document."""
    key = reminder_key(offset_minutes) if kind == NotificationKind.REMINDER else kind.value
    return {
        "key": key,
        "kind": kind.value,
        "offset_minutes": offset_minutes,
        "status": status.value,
        "attempts": 0,
        "claimed_until": None,
        "created_at": now,
        "sent_at": None,
        "last_error": None,
    }


def audit_entry(event: AuditEventName, now: datetime, **meta: Any) -> dict:
    return {"event": event.value, "meta": meta or None, "timestamp": now}


# =============================================================================
# Request models
# =============================================================================


class ScheduleCreateRequest(CamelModel):
    """
    Temporal fields stay strings here so that malformed values surface as
    the service's own validation error rather than a schema error.
    """
    job_id: str = Field(..., description="Job to submit")
    scheduled_at: str | None = Field(None, description="ISO-8601 instant to submit at")
    timezone: str | None = Field(None, description="IANA zone the user picked the time in")
    deadline_at: str | None = Field(None, description="Optional ISO-8601 application deadline")
    notification_email: str | None = Field(None, description="Where to send schedule notifications")


class RescheduleRequest(CamelModel):
    scheduled_at: str | None = None
    timezone: str | None = None


class SubmitNowRequest(CamelModel):
    note: str | None = None


class DefaultEmailRequest(CamelModel):
    email: str | None = None


# =============================================================================
# Response models
# =============================================================================


class AuditEntry(CamelModel):
    event: str
    meta: dict | None = None
    timestamp: datetime


class NotificationEntry(CamelModel):
    key: str
    kind: str
    offset_minutes: int | None = None
    status: NotificationStatus
    attempts: int = 0
    sent_at: datetime | None = None
    last_error: str | None = None


class JobSummary(CamelModel):
    id: str = Field(..., alias="_id")
    title: str | None = None
    company: str | None = None
    status: str | None = None
    application_deadline: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict) -> "JobSummary":
        return cls(
            id=str(doc["_id"]),
            title=doc.get("title"),
            company=doc.get("company"),
            status=doc.get("status"),
            application_deadline=doc.get("application_deadline"),
        )


class ApplicationSchedule(CamelModel):
    """API representation of an application schedule."""
    id: str = Field(..., alias="_id")
    user_id: str
    job_id: str
    scheduled_at: datetime
    timezone: str
    deadline_at: datetime | None = None
    status: ScheduleStatus
    notification_email: str | None = None
    submitted_at: datetime | None = None
    expired_at: datetime | None = None
    cancelled_at: datetime | None = None
    audit: list[AuditEntry] = Field(default_factory=list)
    notifications: list[NotificationEntry] = Field(default_factory=list)
    job_synced: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_processed_at: datetime | None = None
    job: JobSummary | None = None

    @classmethod
    def from_document(cls, doc: dict, job: dict | None = None) -> "ApplicationSchedule":
        data = {key: value for key, value in doc.items() if key != "_id"}
        data["id"] = stringify_id(doc["_id"])
        data["job_id"] = stringify_id(doc.get("job_id"))
        if job is not None:
            data["job"] = JobSummary.from_document(job)
        return cls.model_validate(data)


class ScheduleListResponse(CamelModel):
    items: list[ApplicationSchedule]


class DefaultEmailResponse(CamelModel):
    email: str | None = None


class BestPracticesResponse(CamelModel):
    items: list[str]
