"""
Notification service for publishing schedule notifications to RabbitMQ.

The scheduler does not deliver email itself: it hands a rendered message
(recipient, subject, text) plus structured event data to the notification
queue, where the platform's mail worker picks it up.
"""
from datetime import datetime

from app.core.config import Settings, settings
from app.core.correlation import add_correlation_to_message
from app.core.exceptions import NotificationPublishError
from app.core.zoned_time import get_zone, to_iso, utc_now
from app.log.logging import logger
from app.models.schedule import NotificationKind
from app.services.base_publisher import BasePublisher


def format_local(instant: datetime | None, tz: str) -> str | None:
    """Human-readable rendering of an instant in the schedule's zone."""
    if instant is None:
        return None
    local = instant.astimezone(get_zone(tz))
    return local.strftime("%b %d, %Y %I:%M %p %Z").replace(" 0", " ")


def describe_offset(minutes: int) -> str:
    if minutes % 1440 == 0:
        days = minutes // 1440
        return f"{days} day" if days == 1 else f"{days} days"
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"


class NotificationPublisher(BasePublisher):
    """
    Publisher for application-schedule notifications.

    Every message carries the outbox key it was produced from so that a
    consumer can discard the rare duplicate left by an expired lease.
    """

    SCHEMA_VERSION = "1.0"

    def __init__(self, config: Settings = settings):
        super().__init__(config)

    def get_queue_name(self) -> str:
        return self.settings.notification_queue

    async def publish_schedule_notification(
        self, schedule: dict, entry: dict, job: dict | None = None
    ) -> dict:
        """
        Publish one outbox entry of a schedule.

        Args:
            schedule: The schedule document.
            entry: The outbox entry (``key``, ``kind``, ``offset_minutes``).
            job: The linked job document, for the title/company shown to the user.

        Returns:
            The published payload.

        Raises:
            NotificationPublishError: if the schedule has no recipient or the
                queue rejected the message.
        """
        recipient = schedule.get("notification_email")
        if not recipient:
            raise NotificationPublishError("schedule has no notification email")

        subject, text = self._render(schedule, entry, job)
        payload = self._build_event_payload(schedule, entry, recipient, subject, text)

        logger.info(
            "Publishing schedule.{kind} notification",
            kind=entry["kind"],
            schedule_id=str(schedule["_id"]),
            user_id=schedule.get("user_id"),
            notification_key=entry["key"],
            event_type="notification_publishing",
        )

        message_id = f"{payload['schedule_id']}:{entry['key']}"
        try:
            await self.publish(payload, persistent=True, message_id=message_id)
        except Exception as e:
            raise NotificationPublishError(str(e)) from e
        return payload

    def _render(self, schedule: dict, entry: dict, job: dict | None) -> tuple[str, str]:
        tz = schedule.get("timezone") or self.settings.default_timezone
        title = (job or {}).get("title") or "Job"
        company = (job or {}).get("company")
        label = f"{title} at {company}" if company else title
        scheduled = format_local(schedule.get("scheduled_at"), tz)
        deadline = format_local(schedule.get("deadline_at"), tz)
        kind = entry["kind"]

        if kind == NotificationKind.CREATED.value:
            subject = f"Application scheduled: {title}"
            lines = [f"Scheduled submission: {scheduled}"]
            if deadline:
                lines.append(f"Deadline: {deadline}")
            lines.append(f"Timezone: {tz}")
        elif kind == NotificationKind.SUBMITTED.value:
            subject = f"Application submitted (scheduled): {title}"
            submitted = format_local(schedule.get("submitted_at"), tz)
            lines = [f"Your scheduled submission for {label} was recorded as submitted at {submitted}."]
        elif kind == NotificationKind.EXPIRED.value:
            subject = f"Missed deadline: {title}"
            lines = [
                f"The scheduled submission for {label} was not completed before the deadline "
                f"({deadline}) and was marked expired."
            ]
        else:
            subject = f"Application reminder: {title}"
            lines = [
                f"Reminder: the deadline for {label} is in {describe_offset(entry['offset_minutes'])} ({deadline}).",
                f"Your submission is scheduled for {scheduled}.",
            ]
        return subject, "\n".join(lines) + "\n"

    def _build_event_payload(
        self, schedule: dict, entry: dict, recipient: str, subject: str, text: str
    ) -> dict:
        payload = {
            "event": f"schedule.{entry['kind']}",
            "version": self.SCHEMA_VERSION,
            "notification_key": entry["key"],
            "schedule_id": str(schedule["_id"]),
            "user_id": schedule.get("user_id"),
            "job_id": schedule.get("job_id"),
            "status": schedule.get("status"),
            "to": recipient,
            "subject": subject,
            "text": text,
            "scheduled_at": to_iso(schedule.get("scheduled_at")),
            "deadline_at": to_iso(schedule.get("deadline_at")),
            "timezone": schedule.get("timezone"),
            "timestamp": to_iso(utc_now()),
        }
        if entry.get("offset_minutes") is not None:
            payload["offset_minutes"] = entry["offset_minutes"]
        return add_correlation_to_message(payload)
