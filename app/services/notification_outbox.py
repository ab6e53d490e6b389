"""
Delivery of a schedule's queued notifications.

Entries are written into the schedule document together with the state
change that caused them; this module drains them. Each entry is leased
before publishing, so concurrent drainers (a request and the sweep, two
sweep instances) deliver a key at most once while the lease holds.
"""
from dataclasses import dataclass
from datetime import datetime

from app.core.config import Settings, settings
from app.core.exceptions import NotificationPublishError
from app.core.metrics import record_notification
from app.log.logging import logger
from app.models.schedule import (
    AuditEventName,
    NotificationKind,
    NotificationStatus,
    ScheduleStatus,
    audit_entry,
)
from app.services.job_store import JobStore
from app.services.notification_service import NotificationPublisher
from app.services.schedule_store import ScheduleStore


@dataclass
class DeliveryResult:
    sent: int = 0
    failed: int = 0
    retrying: int = 0
    skipped: int = 0


def _is_deliverable(entry: dict, now: datetime) -> bool:
    if entry.get("status") != NotificationStatus.PENDING.value:
        return False
    claimed_until = entry.get("claimed_until")
    return claimed_until is None or claimed_until < now


class NotificationOutbox:

    def __init__(
        self,
        schedule_store: ScheduleStore,
        job_store: JobStore,
        publisher: NotificationPublisher,
        config: Settings = settings,
    ):
        self.schedule_store = schedule_store
        self.job_store = job_store
        self.publisher = publisher
        self.config = config

    async def deliver(self, schedule: dict, now: datetime) -> DeliveryResult:
        """
        Publish every pending, unleased entry of ``schedule``.

        Publishing failures are recorded on the entry and never raised.
        """
        result = DeliveryResult()
        entries = [e for e in schedule.get("notifications", []) if _is_deliverable(e, now)]
        if not entries:
            return result

        jobs = await self.job_store.get_many(schedule["user_id"], [schedule["job_id"]])
        job = jobs.get(str(schedule["job_id"]))

        for entry in entries:
            key = entry["key"]

            # a reminder is moot once the schedule left "scheduled"
            if (
                entry["kind"] == NotificationKind.REMINDER.value
                and schedule.get("status") != ScheduleStatus.SCHEDULED.value
            ):
                if await self.schedule_store.skip_notification(schedule["_id"], key, now):
                    result.skipped += 1
                continue

            claimed = await self.schedule_store.claim_notification(
                schedule["_id"], key, now, self.config.notification_lease_seconds
            )
            if claimed is None:
                continue

            try:
                await self.publisher.publish_schedule_notification(claimed, entry, job)
            except NotificationPublishError as e:
                status = await self.schedule_store.release_notification(
                    schedule["_id"], key, e.message, self.config.notification_max_attempts, now
                )
                if status == NotificationStatus.FAILED.value:
                    result.failed += 1
                    record_notification(entry["kind"], "failed")
                    logger.error(
                        "Notification {key} for schedule {schedule_id} failed permanently: {error}",
                        key=key,
                        schedule_id=str(schedule["_id"]),
                        error=e.message,
                        event_type="notification_failed",
                    )
                else:
                    result.retrying += 1
                    record_notification(entry["kind"], "retry")
                    logger.warning(
                        "Notification {key} for schedule {schedule_id} will be retried: {error}",
                        key=key,
                        schedule_id=str(schedule["_id"]),
                        error=e.message,
                        event_type="notification_retry",
                    )
                continue

            if entry["kind"] == NotificationKind.REMINDER.value:
                audit = audit_entry(
                    AuditEventName.REMINDER_SENT, now, offset_minutes=entry.get("offset_minutes")
                )
            else:
                audit = audit_entry(AuditEventName.NOTIFICATION_SENT, now, kind=entry["kind"])

            await self.schedule_store.complete_notification(schedule["_id"], key, now, audit)
            result.sent += 1
            record_notification(entry["kind"], "sent")

        return result
