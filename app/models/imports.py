"""
Application import models.

An import event reports that the user already applied somewhere else
(observed by the browser extension or by a forwarded confirmation email).
"""
from datetime import datetime
from enum import Enum

from pydantic import Field

from app.models.base import CamelModel


class ImportSourceType(str, Enum):
    BROWSER_EXTENSION = "browser_extension"
    EMAIL_FORWARD = "email_forward"
    UNKNOWN = "unknown"


class DedupReason(str, Enum):
    MESSAGE_ID = "message_id"
    JOB_URL_WINDOW = "job_url_window"
    SAME_DAY_JOB = "same_day_job"


class ImportEventPayload(CamelModel):
    platform: str | None = Field(None, description="linkedin, indeed, glassdoor, ...")
    source_type: str | None = None
    job_title: str | None = None
    company: str | None = None
    location: str | None = None
    job_url: str | None = None
    message_id: str | None = None
    external_id: str | None = None
    email_from: str | None = None
    email_subject: str | None = None
    email_body_text: str | None = None
    applied_at: str | None = Field(None, description="ISO-8601; defaults to now")
    timezone: str | None = None


class BulkImportRequest(CamelModel):
    # validated one by one so a bad event cannot reject the whole batch
    events: list[dict] = Field(default_factory=list)


class ImportResult(CamelModel):
    ok: bool = True
    deduped: bool
    reason: str | None = None
    event_id: str | None = None
    job_id: str | None = None
    schedule_id: str | None = None
    created_job: bool | None = None
    merged_into_existing_job: bool | None = None
    created_schedule: bool | None = None


class BulkImportItem(ImportResult):
    deduped: bool | None = None
    error: str | None = None


class BulkImportResponse(CamelModel):
    ok: bool = True
    results: list[BulkImportItem]


class PlatformObservation(CamelModel):
    platform: str
    source_type: str
    job_url: str | None = None
    message_id: str | None = None
    external_id: str | None = None
    email_subject: str | None = None
    email_from: str | None = None
    applied_at: datetime | None = None
    imported_at: datetime | None = None


class PlatformInfo(CamelModel):
    platforms: list[str]
    source_types: list[str]
    job_urls: list[str]
    observations: list[PlatformObservation]


class PlatformInfoResponse(CamelModel):
    ok: bool = True
    job_id: str
    platform_info: PlatformInfo | None = None
