"""
Periodic sweep over active schedules.

One pass:
1. expires schedules whose deadline has passed,
2. submits schedules whose time has come (and advances their jobs),
3. queues deadline reminders that fell due,
4. retries job-status syncs left over from earlier submissions,
5. drains pending notifications.

Every write is conditional on the prior state, so several sweepers (or a
sweeper racing a user request) never transition a schedule twice. Each
schedule is processed on its own; one failure is logged and counted and the
pass moves on.
"""
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from app.core.audit import audit_logger
from app.core.config import Settings, settings
from app.core.exceptions import InvalidStateTransitionError, ScheduleNotFoundError
from app.core.metrics import record_schedule_transition, record_sweep_error, record_sweep_run
from app.core.zoned_time import to_iso, utc_now
from app.log.logging import logger
from app.models.schedule import (
    NotificationKind,
    NotificationStatus,
    ScheduleStatus,
    SubmissionSource,
    new_notification,
    reminder_key,
)
from app.services.application_scheduler_service import ApplicationSchedulerService
from app.services.notification_outbox import NotificationOutbox
from app.services.schedule_store import ScheduleStore


@dataclass
class SweepResult:
    started_at: datetime
    finished_at: datetime | None = None
    expired: int = 0
    submitted: int = 0
    reminders_queued: int = 0
    reminders_skipped: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    jobs_synced: int = 0
    errors: int = 0
    error_details: list[str] = field(default_factory=list)

    def record_error(self, stage: str, schedule_id, error: Exception) -> None:
        self.errors += 1
        self.error_details.append(f"{stage}:{schedule_id}: {error}")
        record_sweep_error(stage)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = to_iso(self.started_at)
        data["finished_at"] = to_iso(self.finished_at)
        return data


def due_reminder_offsets(deadline_at: datetime, offsets: list[int], now: datetime) -> list[int]:
    """Offsets (minutes before the deadline) whose reminder time has been reached."""
    if now > deadline_at:
        return []
    return [offset for offset in offsets if deadline_at - timedelta(minutes=offset) <= now]


def plan_reminders(schedule: dict, offsets: list[int], now: datetime) -> list[dict]:
    """
    Outbox entries to add for a schedule's due reminder windows.

    Only the narrowest due window is delivered; wider windows that were
    never recorded (the schedule was created or the sweep ran late) are
    recorded as skipped so they are not sent later.
    """
    deadline_at = schedule.get("deadline_at")
    if deadline_at is None:
        return []

    due = due_reminder_offsets(deadline_at, offsets, now)
    if not due:
        return []

    recorded = {entry.get("key") for entry in schedule.get("notifications", [])}
    narrowest = min(due)
    entries = []
    for offset in sorted(due, reverse=True):
        if reminder_key(offset) in recorded:
            continue
        status = NotificationStatus.PENDING if offset == narrowest else NotificationStatus.SKIPPED
        entries.append(new_notification(NotificationKind.REMINDER, now, offset, status))
    return entries


class ScheduleSweeper:

    def __init__(
        self,
        schedule_store: ScheduleStore,
        scheduler_service: ApplicationSchedulerService,
        outbox: NotificationOutbox,
        config: Settings = settings,
    ):
        self.schedule_store = schedule_store
        self.scheduler_service = scheduler_service
        self.outbox = outbox
        self.config = config

    async def run_once(self, now: datetime | None = None) -> SweepResult:
        """Run one full pass. Raises only if a batch query itself fails."""
        now = now or utc_now()
        result = SweepResult(started_at=now)
        start_time = time.time()
        limit = self.config.sweep_batch_size

        try:
            await self._expire_overdue(now, limit, result)
            await self._submit_due(now, limit, result)
            await self._queue_reminders(now, limit, result)
            await self._retry_job_sync(now, limit, result)
            await self._deliver_notifications(now, limit, result)
        except Exception:
            record_sweep_run("error", time.time() - start_time)
            raise

        result.finished_at = utc_now()
        record_sweep_run("success", time.time() - start_time)
        logger.info(
            "Sweep finished: {expired} expired, {submitted} submitted, {sent} notifications sent, {errors} errors",
            expired=result.expired,
            submitted=result.submitted,
            sent=result.notifications_sent,
            errors=result.errors,
            event_type="sweep_completed",
            sweep_result=result.to_dict(),
        )
        return result

    async def _expire_overdue(self, now: datetime, limit: int, result: SweepResult) -> None:
        for schedule in await self.schedule_store.find_expirable(now, limit):
            schedule_id = str(schedule["_id"])
            try:
                await self.schedule_store.mark_expired(schedule_id, now, "deadline_passed")
            except (InvalidStateTransitionError, ScheduleNotFoundError):
                # another actor moved it first
                continue
            except Exception as e:
                logger.exception(
                    "Failed to expire schedule {schedule_id}: {error}",
                    schedule_id=schedule_id,
                    error=str(e),
                    event_type="sweep_expire_failed",
                )
                result.record_error("expire", schedule_id, e)
                continue

            result.expired += 1
            record_schedule_transition(ScheduleStatus.EXPIRED.value, "sweep")
            audit_logger.log_schedule_transition(
                schedule.get("user_id"), schedule_id, ScheduleStatus.SCHEDULED.value,
                ScheduleStatus.EXPIRED.value, initiator="sweep",
            )

    async def _submit_due(self, now: datetime, limit: int, result: SweepResult) -> None:
        for schedule in await self.schedule_store.find_due(now, limit):
            schedule_id = str(schedule["_id"])
            try:
                submitted = await self.schedule_store.mark_submitted(
                    None, schedule_id, now, now, source=SubmissionSource.SWEEP.value
                )
            except (InvalidStateTransitionError, ScheduleNotFoundError):
                continue
            except Exception as e:
                logger.exception(
                    "Failed to submit schedule {schedule_id}: {error}",
                    schedule_id=schedule_id,
                    error=str(e),
                    event_type="sweep_submit_failed",
                )
                result.record_error("submit", schedule_id, e)
                continue

            result.submitted += 1
            record_schedule_transition(ScheduleStatus.SUBMITTED.value, "sweep")
            audit_logger.log_schedule_transition(
                schedule.get("user_id"), schedule_id, ScheduleStatus.SCHEDULED.value,
                ScheduleStatus.SUBMITTED.value, initiator="sweep",
            )

            try:
                if await self.scheduler_service.sync_job_status(submitted, now):
                    result.jobs_synced += 1
            except Exception as e:
                # left unsynced; picked up again by _retry_job_sync
                logger.warning(
                    "Job sync for schedule {schedule_id} failed: {error}",
                    schedule_id=schedule_id,
                    error=str(e),
                    event_type="sweep_job_sync_failed",
                )
                result.record_error("job_sync", schedule_id, e)

    async def _queue_reminders(self, now: datetime, limit: int, result: SweepResult) -> None:
        offsets = self.config.reminder_offsets
        if not offsets:
            return
        horizon = timedelta(minutes=max(offsets))

        for schedule in await self.schedule_store.find_reminder_candidates(now, horizon, limit):
            entries = plan_reminders(schedule, offsets, now)
            if not entries:
                continue
            try:
                queued = await self.schedule_store.queue_reminders(schedule["_id"], entries, now)
            except Exception as e:
                logger.exception(
                    "Failed to queue reminders for schedule {schedule_id}: {error}",
                    schedule_id=str(schedule["_id"]),
                    error=str(e),
                    event_type="sweep_reminder_failed",
                )
                result.record_error("reminder", schedule["_id"], e)
                continue

            if queued:
                for entry in entries:
                    if entry["status"] == NotificationStatus.PENDING.value:
                        result.reminders_queued += 1
                    else:
                        result.reminders_skipped += 1

    async def _retry_job_sync(self, now: datetime, limit: int, result: SweepResult) -> None:
        for schedule in await self.schedule_store.find_unsynced_jobs(limit):
            try:
                if await self.scheduler_service.sync_job_status(schedule, now):
                    result.jobs_synced += 1
            except Exception as e:
                logger.exception(
                    "Job sync retry for schedule {schedule_id} failed: {error}",
                    schedule_id=str(schedule["_id"]),
                    error=str(e),
                    event_type="sweep_job_sync_failed",
                )
                result.record_error("job_sync", schedule["_id"], e)

    async def _deliver_notifications(self, now: datetime, limit: int, result: SweepResult) -> None:
        for schedule in await self.schedule_store.find_pending_notifications(now, limit):
            try:
                delivered = await self.outbox.deliver(schedule, now)
            except Exception as e:
                logger.exception(
                    "Notification delivery for schedule {schedule_id} failed: {error}",
                    schedule_id=str(schedule["_id"]),
                    error=str(e),
                    event_type="sweep_notification_failed",
                )
                result.record_error("notify", schedule["_id"], e)
                continue
            result.notifications_sent += delivered.sent
            result.notifications_failed += delivered.failed
