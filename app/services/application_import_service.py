"""
Import of applications the user made outside the scheduler.

Events come from the browser extension or from forwarded confirmation
emails. Each one either matches an earlier import (no-op) or is merged into
the job tracker: the job is created or advanced to ``applied`` and its
schedule ends up ``submitted``.
"""
import hashlib
from datetime import datetime, timedelta

from pydantic import ValidationError as PydanticValidationError

from app.core.config import Settings, settings
from app.core.exceptions import (
    ApplicationSchedulerException,
    InvalidStateTransitionError,
    ValidationError,
)
from app.core.metrics import record_import_event
from app.core.zoned_time import get_zone, parse_instant, utc_now
from app.log.logging import logger
from app.models.imports import (
    BulkImportItem,
    BulkImportResponse,
    DedupReason,
    ImportEventPayload,
    ImportResult,
    ImportSourceType,
    PlatformInfo,
    PlatformInfoResponse,
    PlatformObservation,
)
from app.models.schedule import ScheduleStatus, SubmissionSource
from app.services.email_extraction import extract_job_details_from_email, normalize_key
from app.services.import_event_store import ImportEventStore
from app.services.job_store import JobStore
from app.services.schedule_store import ScheduleStore

# audit meta.source written on schedules created from an import
AUDIT_SOURCES = {
    ImportSourceType.BROWSER_EXTENSION.value: "uc125",
    ImportSourceType.EMAIL_FORWARD.value: "email_forward",
}


def _clean(value) -> str:
    return str(value if value is not None else "").strip()


def event_fingerprint(user_id: str, company_key: str, title_key: str, applied_day: str) -> str:
    """Identity used by the unique index; two events with equal fingerprints are the same application."""
    raw = f"{user_id}|{company_key}|{title_key}|{applied_day}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


def _unique(values) -> list:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


class ApplicationImportService:

    def __init__(
        self,
        event_store: ImportEventStore,
        job_store: JobStore,
        schedule_store: ScheduleStore,
        config: Settings = settings,
    ):
        self.event_store = event_store
        self.job_store = job_store
        self.schedule_store = schedule_store
        self.config = config

    # ------------------------------------------------------------------
    # Single event
    # ------------------------------------------------------------------

    async def import_application_event(
        self,
        user_id: str,
        payload: ImportEventPayload,
        default_source_type: str | None = None,
    ) -> ImportResult:
        """
        Import one application event.

        Raises:
            ValidationError: if title or company cannot be determined, or
                ``appliedAt`` / ``timezone`` are malformed.
        """
        now = utc_now()
        source_type = _clean(payload.source_type) or default_source_type or ImportSourceType.UNKNOWN.value

        job_title = _clean(payload.job_title)
        company = _clean(payload.company)
        location = _clean(payload.location)
        platform = _clean(payload.platform)
        if not job_title or not company or not platform:
            extracted = extract_job_details_from_email(
                payload.email_subject, payload.email_from, payload.email_body_text
            )
            job_title = job_title or _clean(extracted["job_title"])
            company = company or _clean(extracted["company"])
            location = location or _clean(extracted["location"])
            platform = platform or extracted["platform"]

        if not job_title or not company:
            raise ValidationError(
                "Missing required fields: jobTitle and company "
                "(either provide them directly or via the email)."
            )

        timezone = _clean(payload.timezone) or self.config.default_timezone
        get_zone(timezone)
        applied_at = parse_instant(payload.applied_at, "appliedAt") if payload.applied_at else now
        job_url = _clean(payload.job_url) or None
        message_id = _clean(payload.message_id) or None
        external_id = _clean(payload.external_id) or None

        company_key = normalize_key(company)
        title_key = normalize_key(job_title)
        applied_day = applied_at.strftime("%Y-%m-%d")
        fingerprint = event_fingerprint(user_id, company_key, title_key, applied_day)

        match = await self._find_duplicate(
            user_id, message_id, external_id, job_url, applied_at, company_key, title_key, applied_day
        )
        if match is not None:
            existing, reason = match
            return self._deduped(user_id, existing, reason, source_type)

        # the fingerprint is claimed before any job or schedule is written
        event = await self.event_store.insert(
            {
                "user_id": user_id,
                "source_type": source_type,
                "platform": platform,
                "applied_at": applied_at,
                "applied_day": applied_day,
                "timezone": timezone,
                "job_title": job_title,
                "company": company,
                "location": location or None,
                "company_key": company_key,
                "title_key": title_key,
                "job_url": job_url,
                "message_id": message_id,
                "external_id": external_id,
                "event_fingerprint": fingerprint,
                "job_id": None,
                "schedule_id": None,
                "raw": {"email_from": payload.email_from, "email_subject": payload.email_subject},
                "created_at": now,
            }
        )
        if event is None:
            # lost a race against an identical event
            existing = await self.event_store.find_by_fingerprint(user_id, fingerprint)
            return self._deduped(user_id, existing or {}, DedupReason.SAME_DAY_JOB, source_type)

        try:
            job_id, created_job = await self._create_or_merge_job(
                user_id, job_title, company, location, job_url, platform, source_type, applied_at, now
            )
            schedule_id, created_schedule = await self._ensure_submitted_schedule(
                user_id, job_id, applied_at, timezone, platform, source_type, now
            )
        except Exception:
            await self.event_store.release(event["_id"])
            raise
        await self.event_store.attach(event["_id"], job_id, schedule_id)

        record_import_event(source_type, "imported")
        logger.info(
            "Imported application for job {job_id} ({platform}, {source_type})",
            job_id=job_id,
            platform=platform,
            source_type=source_type,
            user_id=user_id,
            created_job=created_job,
            created_schedule=created_schedule,
            event_type="application_imported",
        )
        return ImportResult(
            deduped=False,
            event_id=str(event["_id"]),
            job_id=job_id,
            schedule_id=schedule_id,
            created_job=created_job,
            merged_into_existing_job=not created_job,
            created_schedule=created_schedule,
        )

    async def _find_duplicate(
        self,
        user_id: str,
        message_id: str | None,
        external_id: str | None,
        job_url: str | None,
        applied_at: datetime,
        company_key: str,
        title_key: str,
        applied_day: str,
    ) -> tuple[dict, DedupReason] | None:
        if message_id or external_id:
            existing = await self.event_store.find_by_message_or_external_id(user_id, message_id, external_id)
            if existing:
                return existing, DedupReason.MESSAGE_ID
        elif job_url:
            window = timedelta(minutes=self.config.import_url_dedup_window_minutes)
            existing = await self.event_store.find_by_job_url_window(user_id, job_url, applied_at, window)
            if existing:
                return existing, DedupReason.JOB_URL_WINDOW

        existing = await self.event_store.find_same_day(user_id, company_key, title_key, applied_day)
        if existing:
            return existing, DedupReason.SAME_DAY_JOB
        return None

    def _deduped(self, user_id: str, existing: dict, reason: DedupReason, source_type: str) -> ImportResult:
        record_import_event(source_type, "deduped")
        logger.info(
            "Import deduplicated ({reason}) against event {event_id}",
            reason=reason.value,
            event_id=str(existing.get("_id")),
            user_id=user_id,
            event_type="application_import_deduped",
        )
        return ImportResult(
            deduped=True,
            reason=reason.value,
            event_id=str(existing["_id"]) if existing.get("_id") else None,
            job_id=existing.get("job_id"),
            schedule_id=existing.get("schedule_id"),
        )

    async def _create_or_merge_job(
        self,
        user_id: str,
        job_title: str,
        company: str,
        location: str,
        job_url: str | None,
        platform: str,
        source_type: str,
        applied_at: datetime,
        now: datetime,
    ) -> tuple[str, bool]:
        company_key = normalize_key(company)
        title_key = normalize_key(job_title)
        for job in await self.job_store.list_for_matching(user_id):
            if normalize_key(job.get("company")) == company_key and normalize_key(job.get("title")) == title_key:
                job_id = str(job["_id"])
                await self.job_store.advance_to_applied(
                    user_id, job_id, now, f"Imported application: applied via {platform} ({source_type})"
                )
                await self.job_store.set_posting_url_if_empty(user_id, job_id, job_url)
                return job_id, False

        job = await self.job_store.create_applied(
            user_id,
            title=job_title,
            company=company,
            location=location,
            job_posting_url=job_url,
            applied_at=applied_at,
            note=f"Imported ({platform})",
            now=now,
        )
        return str(job["_id"]), True

    async def _ensure_submitted_schedule(
        self,
        user_id: str,
        job_id: str,
        applied_at: datetime,
        timezone: str,
        platform: str,
        source_type: str,
        now: datetime,
    ) -> tuple[str, bool]:
        submitted = await self.schedule_store.find_for_job(user_id, job_id, ScheduleStatus.SUBMITTED.value)
        if submitted:
            return str(submitted["_id"]), False

        meta = {"source": AUDIT_SOURCES.get(source_type, source_type), "platform": platform}
        active = await self.schedule_store.find_for_job(user_id, job_id, ScheduleStatus.SCHEDULED.value)
        if active:
            try:
                schedule = await self.schedule_store.mark_imported(
                    user_id,
                    active["_id"],
                    applied_at,
                    now,
                    source=SubmissionSource.IMPORT.value,
                    meta=meta,
                )
            except InvalidStateTransitionError:
                schedule = await self.schedule_store.find_for_job(
                    user_id, job_id, ScheduleStatus.SUBMITTED.value
                )
                if schedule is None:
                    raise
            return str(schedule["_id"]), False

        schedule = await self.schedule_store.create_submitted(
            user_id,
            job_id,
            submitted_at=applied_at,
            timezone=timezone,
            source=SubmissionSource.IMPORT.value,
            meta=meta,
            now=now,
        )
        return str(schedule["_id"]), True

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def import_application_events_bulk(
        self, user_id: str, events: list[dict], default_source_type: str | None = None
    ) -> BulkImportResponse:
        """Import events one by one; a failing event is reported in place and does not stop the rest."""
        results = []
        for index, raw in enumerate(events):
            try:
                payload = ImportEventPayload.model_validate(raw)
                result = await self.import_application_event(user_id, payload, default_source_type)
            except ApplicationSchedulerException as e:
                record_import_event(default_source_type or ImportSourceType.UNKNOWN.value, "failed")
                results.append(BulkImportItem(ok=False, error=e.message))
                continue
            except PydanticValidationError as e:
                record_import_event(default_source_type or ImportSourceType.UNKNOWN.value, "failed")
                results.append(BulkImportItem(ok=False, error=f"Invalid event: {e.error_count()} error(s)"))
                continue
            except Exception as e:
                logger.exception(
                    "Bulk import event {index} failed: {error}",
                    index=index,
                    error=str(e),
                    user_id=user_id,
                    event_type="application_import_failed",
                )
                record_import_event(default_source_type or ImportSourceType.UNKNOWN.value, "failed")
                results.append(BulkImportItem(ok=False, error="Import failed"))
                continue
            results.append(BulkImportItem(**result.model_dump()))
        return BulkImportResponse(results=results)

    # ------------------------------------------------------------------
    # Platform info
    # ------------------------------------------------------------------

    async def get_platform_info_for_job(self, user_id: str, job_id: str) -> PlatformInfoResponse:
        events = await self.event_store.list_for_job(user_id, job_id)
        if not events:
            return PlatformInfoResponse(job_id=job_id, platform_info=None)

        observations = [
            PlatformObservation(
                platform=event.get("platform") or "unknown",
                source_type=event.get("source_type") or ImportSourceType.UNKNOWN.value,
                job_url=event.get("job_url"),
                message_id=event.get("message_id"),
                external_id=event.get("external_id"),
                email_subject=(event.get("raw") or {}).get("email_subject"),
                email_from=(event.get("raw") or {}).get("email_from"),
                applied_at=event.get("applied_at"),
                imported_at=event.get("created_at"),
            )
            for event in events
        ]
        return PlatformInfoResponse(
            job_id=job_id,
            platform_info=PlatformInfo(
                platforms=_unique(o.platform for o in observations),
                source_types=_unique(o.source_type for o in observations),
                job_urls=_unique(o.job_url for o in observations),
                observations=observations,
            ),
        )
