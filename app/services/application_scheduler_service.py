"""
Application scheduler: user-facing operations on application schedules.

This service validates requests, drives the schedule state machine through
the store's conditional transitions, keeps the linked job in step and kicks
off notification delivery.
"""
import re
from datetime import datetime, timedelta

from app.core.audit import audit_logger
from app.core.config import Settings, settings
from app.core.exceptions import (
    DatabaseOperationError,
    DuplicateActiveScheduleError,
    InvalidStateTransitionError,
    JobNotEligibleError,
    NotificationPublishError,
    ValidationError,
)
from app.core.metrics import record_schedule_transition
from app.core.zoned_time import is_valid_timezone, parse_instant, tz_parts, utc_now
from app.log.logging import logger
from app.models.job import RESPONSE_STATUSES, EligibleJob, is_schedulable_status
from app.models.schedule import (
    ApplicationSchedule,
    RescheduleRequest,
    ScheduleCreateRequest,
    ScheduleStatus,
    SubmissionSource,
)
from app.models.stats import TIME_WINDOWS, SubmissionTimeStats, WindowStats, time_window_for_hour
from app.services.job_store import JobStore
from app.services.notification_outbox import NotificationOutbox
from app.services.notification_settings_store import NotificationSettingsStore
from app.services.schedule_store import ScheduleStore

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

BEST_PRACTICES = [
    "Prefer weekday mornings/early afternoons when recruiters are active.",
    "Avoid weekends and late evenings for time-sensitive submissions.",
    "Submit 24–72 hours before the deadline when possible (buffer for issues).",
    "Batch submissions at consistent times so you can measure what works for you.",
]


def normalize_email(value: str | None) -> str | None:
    """
    Trim and lower-case an address; empty input yields None.

    Raises:
        ValidationError: if the address is not shaped like an email.
    """
    email = (value or "").strip().lower()
    if not email:
        return None
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Notification email looks invalid.")
    return email


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


class ApplicationSchedulerService:
    """
    Service for creating, listing and transitioning application schedules.
    """

    def __init__(
        self,
        schedule_store: ScheduleStore,
        job_store: JobStore,
        settings_store: NotificationSettingsStore,
        outbox: NotificationOutbox,
        config: Settings = settings,
    ):
        self.schedule_store = schedule_store
        self.job_store = job_store
        self.settings_store = settings_store
        self.outbox = outbox
        self.config = config

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _resolve_timezone(self, tz: str | None, fallback: str | None = None) -> str:
        zone = (tz or "").strip() or fallback or self.config.default_timezone
        if not is_valid_timezone(zone):
            raise ValidationError(f"Invalid timezone: {zone}")
        return zone

    def _validate_scheduled_at(
        self, scheduled_at: datetime, deadline_at: datetime | None, now: datetime
    ) -> None:
        tolerance = timedelta(minutes=self.config.schedule_past_tolerance_minutes)
        if scheduled_at < now - tolerance:
            raise ValidationError("Scheduled time must be in the future.")
        if deadline_at is not None and scheduled_at > deadline_at:
            raise ValidationError("Scheduled time must be on/before the deadline.")

    async def _resolve_notification_email(self, user_id: str, requested: str | None, now: datetime) -> str:
        email = normalize_email(requested)
        if email:
            await self.settings_store.set_default_email(user_id, email, now)
            return email

        default = await self.settings_store.get_default_email(user_id)
        if not default:
            raise ValidationError("No notification email is available. Please enter one and try again.")
        return default

    async def _dispatch_notifications(self, schedule: dict, now: datetime) -> None:
        """Best-effort delivery; anything left pending is retried by the sweep."""
        try:
            await self.outbox.deliver(schedule, now)
        except (DatabaseOperationError, NotificationPublishError) as e:
            logger.warning(
                "Deferred notifications for schedule {schedule_id}: {error}",
                schedule_id=str(schedule["_id"]),
                error=e.message,
                event_type="notification_deferred",
            )

    async def _to_model(self, user_id: str, schedule: dict) -> ApplicationSchedule:
        jobs = await self.job_store.get_many(user_id, [schedule["job_id"]])
        return ApplicationSchedule.from_document(schedule, jobs.get(str(schedule["job_id"])))

    # ------------------------------------------------------------------
    # Job side effect
    # ------------------------------------------------------------------

    async def sync_job_status(self, schedule: dict, now: datetime) -> bool:
        """
        Advance the linked job to at least ``applied`` and clear the
        schedule's unsynced flag. Idempotent; safe to retry.

        Returns True once the schedule is marked synced.
        """
        source = schedule.get("submission_source") or SubmissionSource.MANUAL.value
        outcome = await self.job_store.advance_to_applied(
            schedule["user_id"], schedule["job_id"], now, note=f"Scheduled submission ({source})"
        )
        if outcome is None:
            logger.warning(
                "Job {job_id} of schedule {schedule_id} no longer exists; nothing to sync",
                job_id=str(schedule["job_id"]),
                schedule_id=str(schedule["_id"]),
                event_type="job_sync_missing_job",
            )
        return await self.schedule_store.mark_job_synced(schedule["_id"], now)

    async def _sync_job_best_effort(self, schedule: dict, now: datetime) -> None:
        try:
            await self.sync_job_status(schedule, now)
        except DatabaseOperationError as e:
            logger.warning(
                "Job sync for schedule {schedule_id} deferred to sweep: {error}",
                schedule_id=str(schedule["_id"]),
                error=e.message,
                event_type="job_sync_deferred",
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_application_schedule(
        self, user_id: str, payload: ScheduleCreateRequest
    ) -> ApplicationSchedule:
        """
        Schedule the submission of one of the user's jobs.

        Raises:
            JobNotFoundError: unknown job or owned by someone else.
            JobNotEligibleError: job is archived or past ``interested``.
            ValidationError: bad instant, zone, deadline ordering or email.
            DuplicateActiveScheduleError: the job already has an active schedule.
        """
        now = utc_now()
        job = await self.job_store.get(user_id, payload.job_id)
        if job.get("archived") or not is_schedulable_status(job.get("status")):
            raise JobNotEligibleError(payload.job_id, job.get("status") or "archived")

        tz = self._resolve_timezone(payload.timezone)
        scheduled_at = parse_instant(payload.scheduled_at, "scheduledAt")
        if payload.deadline_at:
            deadline_at = parse_instant(payload.deadline_at, "deadlineAt")
        elif job.get("application_deadline"):
            deadline_at = parse_instant(job["application_deadline"], "applicationDeadline")
        else:
            deadline_at = None
        self._validate_scheduled_at(scheduled_at, deadline_at, now)

        if await self.schedule_store.find_for_job(user_id, payload.job_id, ScheduleStatus.SCHEDULED.value):
            raise DuplicateActiveScheduleError(payload.job_id)

        email = await self._resolve_notification_email(user_id, payload.notification_email, now)

        schedule = await self.schedule_store.create(
            user_id=user_id,
            job_id=payload.job_id,
            scheduled_at=scheduled_at,
            timezone=tz,
            deadline_at=deadline_at,
            notification_email=email,
            now=now,
        )
        record_schedule_transition(ScheduleStatus.SCHEDULED.value, "user")

        await self._dispatch_notifications(schedule, now)
        schedule = await self.schedule_store.get(user_id, str(schedule["_id"]))
        return ApplicationSchedule.from_document(schedule, job)

    async def list_application_schedules(
        self,
        user_id: str,
        status: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> list[ApplicationSchedule]:
        """
        All of the user's schedules with a summary of their job.

        Schedules whose deadline has passed are expired first, so the list
        never shows an overdue schedule as ``scheduled``.
        """
        if status and status not in {s.value for s in ScheduleStatus}:
            raise ValidationError(f"Invalid status filter: {status}")
        start = parse_instant(date_from, "from") if date_from else None
        end = parse_instant(date_to, "to") if date_to else None

        await self.schedule_store.expire_overdue_for_user(user_id, utc_now())
        schedules = await self.schedule_store.list_by_user(user_id, status, start, end)
        jobs = await self.job_store.get_many(user_id, [s["job_id"] for s in schedules])
        return [ApplicationSchedule.from_document(s, jobs.get(str(s["job_id"]))) for s in schedules]

    async def reschedule_application_schedule(
        self, user_id: str, schedule_id: str, payload: RescheduleRequest
    ) -> ApplicationSchedule:
        now = utc_now()
        current = await self.schedule_store.get(user_id, schedule_id)
        if current["status"] != ScheduleStatus.SCHEDULED.value:
            raise InvalidStateTransitionError(schedule_id, current["status"], "reschedule")

        scheduled_at = parse_instant(payload.scheduled_at, "scheduledAt")
        tz = self._resolve_timezone(payload.timezone, fallback=current.get("timezone"))
        self._validate_scheduled_at(scheduled_at, current.get("deadline_at"), now)

        schedule = await self.schedule_store.reschedule(user_id, schedule_id, scheduled_at, tz, now)
        logger.info(
            "Schedule {schedule_id} rescheduled",
            schedule_id=schedule_id,
            user_id=user_id,
            event_type="schedule_rescheduled",
        )
        return await self._to_model(user_id, schedule)

    async def submit_scheduled_application_now(
        self, user_id: str, schedule_id: str, note: str | None = None
    ) -> ApplicationSchedule:
        """
        Submit immediately, regardless of ``scheduled_at``.

        If the deadline has already passed the schedule is expired instead
        and returned in that state.
        """
        now = utc_now()
        current = await self.schedule_store.get(user_id, schedule_id)
        if current["status"] != ScheduleStatus.SCHEDULED.value:
            raise InvalidStateTransitionError(schedule_id, current["status"], "submit")

        deadline_at = current.get("deadline_at")
        if deadline_at is not None and now > deadline_at:
            schedule = await self.schedule_store.mark_expired(
                schedule_id, now, "past_deadline_on_submit", user_id=user_id
            )
            new_status = ScheduleStatus.EXPIRED.value
        else:
            schedule = await self.schedule_store.mark_submitted(
                user_id, schedule_id, now, now, source=SubmissionSource.MANUAL.value, note=note
            )
            new_status = ScheduleStatus.SUBMITTED.value

        record_schedule_transition(new_status, "user")
        audit_logger.log_schedule_transition(
            user_id, schedule_id, ScheduleStatus.SCHEDULED.value, new_status
        )

        if new_status == ScheduleStatus.SUBMITTED.value:
            await self._sync_job_best_effort(schedule, now)
        await self._dispatch_notifications(schedule, now)

        schedule = await self.schedule_store.get(user_id, schedule_id)
        return await self._to_model(user_id, schedule)

    async def cancel_application_schedule(self, user_id: str, schedule_id: str) -> ApplicationSchedule:
        schedule = await self.schedule_store.cancel(user_id, schedule_id, utc_now())
        record_schedule_transition(ScheduleStatus.CANCELLED.value, "user")
        audit_logger.log_schedule_transition(
            user_id, schedule_id, ScheduleStatus.SCHEDULED.value, ScheduleStatus.CANCELLED.value
        )
        return await self._to_model(user_id, schedule)

    async def list_eligible_jobs_for_scheduler(self, user_id: str) -> list[EligibleJob]:
        jobs = await self.job_store.list_schedulable(user_id)
        active = await self.schedule_store.active_job_ids(user_id)
        return [EligibleJob.from_document(job) for job in jobs if str(job["_id"]) not in active]

    async def get_submission_time_stats(self, user_id: str) -> SubmissionTimeStats:
        """
        Timing statistics over the user's submitted schedules.

        A submission counts as successful when its job has reached
        phone screen, interview or offer. Windows are taken from the hour of
        submission in the schedule's own time zone.
        """
        schedules = await self.schedule_store.list_submitted(user_id)
        jobs = await self.job_store.get_many(user_id, [s["job_id"] for s in schedules])

        buckets = {name: {"total": 0, "successful": 0} for name in TIME_WINDOWS}
        successful_count = 0
        lead_days: list[float] = []

        for schedule in schedules:
            job = jobs.get(str(schedule["job_id"])) or {}
            successful = job.get("status") in RESPONSE_STATUSES
            if successful:
                successful_count += 1

            submitted_at = schedule.get("submitted_at") or schedule.get("scheduled_at")
            if submitted_at is None:
                continue

            deadline_at = schedule.get("deadline_at")
            if deadline_at is not None:
                lead = (deadline_at - submitted_at).total_seconds() / 86400
                if lead >= 0:
                    lead_days.append(lead)

            tz = schedule.get("timezone")
            hour = tz_parts(submitted_at, tz if is_valid_timezone(tz) else "UTC").hour
            bucket = buckets[time_window_for_hour(hour)]
            bucket["total"] += 1
            if successful:
                bucket["successful"] += 1

        by_window = {
            name: WindowStats(
                total=b["total"], successful=b["successful"], success_rate=_percent(b["successful"], b["total"])
            )
            for name, b in buckets.items()
        }

        best = None
        for name in TIME_WINDOWS:
            stats = by_window[name]
            if stats.total == 0:
                continue
            if best is None or (stats.success_rate, stats.total) > (by_window[best].success_rate, by_window[best].total):
                best = name

        return SubmissionTimeStats(
            total_applications=len(schedules),
            avg_days_early=round(sum(lead_days) / len(lead_days), 1) if lead_days else 0.0,
            best_time_window=best,
            response_success_rate=_percent(successful_count, len(schedules)),
            response_by_window=by_window,
        )

    def get_best_practices(self) -> list[str]:
        return list(BEST_PRACTICES)

    async def get_default_notification_email(self, user_id: str) -> str | None:
        return await self.settings_store.get_default_email(user_id)

    async def set_default_notification_email(self, user_id: str, email: str | None) -> str | None:
        normalized = normalize_email(email)
        await self.settings_store.set_default_email(user_id, normalized, utc_now())
        return normalized
