"""
Job models.

Jobs are owned by the platform's job tracker; this service only reads the
fields it needs for eligibility and advances a job's status when its
application goes out.
"""
from datetime import datetime
from enum import Enum

from pydantic import Field

from app.models.base import CamelModel


class JobStatus(str, Enum):
    """Pipeline stages of a tracked job, in order."""
    INTERESTED = "interested"
    APPLIED = "applied"
    PHONE_SCREEN = "phone_screen"
    INTERVIEW = "interview"
    OFFER = "offer"
    REJECTED = "rejected"


# Stages counted as "the employer responded" for submission statistics
RESPONSE_STATUSES = frozenset(
    {JobStatus.PHONE_SCREEN.value, JobStatus.INTERVIEW.value, JobStatus.OFFER.value}
)


def is_schedulable_status(status: str | None) -> bool:
    return status in (None, "", JobStatus.INTERESTED.value)


class EligibleJob(CamelModel):
    """A job that can still be scheduled."""
    id: str = Field(..., alias="_id")
    title: str | None = None
    company: str | None = None
    status: str | None = None
    location: str | None = None
    application_deadline: datetime | None = None
    job_posting_url: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict) -> "EligibleJob":
        return cls(
            id=str(doc["_id"]),
            title=doc.get("title"),
            company=doc.get("company"),
            status=doc.get("status"),
            location=doc.get("location"),
            application_deadline=doc.get("application_deadline"),
            job_posting_url=doc.get("job_posting_url"),
            updated_at=doc.get("updated_at"),
        )


class EligibleJobsResponse(CamelModel):
    items: list[EligibleJob]
