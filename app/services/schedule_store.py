"""
Persistence for application schedules.

Every state transition is a single conditional update whose filter carries
the expected prior status, so concurrent writers (two requests, a request
and the sweep, two sweep instances) produce exactly one transition. When a
transition matches nothing the document is re-read to tell "not yours /
not there" apart from "not in a state that allows this".
"""
from datetime import datetime, timedelta

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.database import SCHEDULES_COLLECTION, get_collection, handle_db_errors
from app.core.exceptions import (
    DuplicateActiveScheduleError,
    InvalidStateTransitionError,
    ScheduleNotFoundError,
)
from app.log.logging import logger
from app.models.schedule import (
    AuditEventName,
    NotificationKind,
    NotificationStatus,
    ScheduleStatus,
    audit_entry,
    new_notification,
)

SCHEDULED = ScheduleStatus.SCHEDULED.value


def to_object_id(value) -> ObjectId | None:
    """Parse a document id; malformed ids yield None."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def _lease_free(now: datetime) -> dict:
    return {"$or": [{"claimed_until": None}, {"claimed_until": {"$lt": now}}]}


class ScheduleStore:
    """Access to the ``application_schedules`` collection."""

    def __init__(self, collection=None):
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            self._collection = get_collection(SCHEDULES_COLLECTION)
        return self._collection

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @handle_db_errors("schedule.create")
    async def create(
        self,
        user_id: str,
        job_id: str,
        scheduled_at: datetime,
        timezone: str,
        deadline_at: datetime | None,
        notification_email: str | None,
        now: datetime,
    ) -> dict:
        """
        Insert a new schedule in the ``scheduled`` state.

        A ``created`` confirmation is queued in the outbox when there is an
        address to send it to.

        Raises:
            DuplicateActiveScheduleError: if the job already has an active schedule.
        """
        notifications = []
        if notification_email:
            notifications.append(new_notification(NotificationKind.CREATED, now))

        doc = {
            "user_id": user_id,
            "job_id": job_id,
            "scheduled_at": scheduled_at,
            "timezone": timezone,
            "deadline_at": deadline_at,
            "status": SCHEDULED,
            "notification_email": notification_email,
            "submitted_at": None,
            "expired_at": None,
            "cancelled_at": None,
            "submission_source": None,
            "audit": [audit_entry(AuditEventName.CREATED, now)],
            "notifications": notifications,
            "job_synced": True,
            "created_at": now,
            "updated_at": now,
            "last_processed_at": None,
        }
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            raise DuplicateActiveScheduleError(job_id)

        doc["_id"] = result.inserted_id
        logger.info(
            "Schedule {schedule_id} created for job {job_id}",
            schedule_id=str(result.inserted_id),
            job_id=job_id,
            user_id=user_id,
            event_type="schedule_created",
        )
        return doc

    @handle_db_errors("schedule.create_submitted")
    async def create_submitted(
        self,
        user_id: str,
        job_id: str,
        submitted_at: datetime,
        timezone: str,
        source: str,
        meta: dict | None,
        now: datetime,
    ) -> dict:
        """Insert a schedule that is already ``submitted`` (the user applied elsewhere)."""
        doc = {
            "user_id": user_id,
            "job_id": job_id,
            "scheduled_at": submitted_at,
            "timezone": timezone,
            "deadline_at": None,
            "status": ScheduleStatus.SUBMITTED.value,
            "notification_email": None,
            "submitted_at": submitted_at,
            "expired_at": None,
            "cancelled_at": None,
            "submission_source": source,
            "audit": [audit_entry(AuditEventName.IMPORTED_SUBMITTED, now, **{"source": source, **(meta or {})})],
            "notifications": [],
            "job_synced": True,
            "created_at": now,
            "updated_at": now,
            "last_processed_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @handle_db_errors("schedule.get")
    async def get(self, user_id: str, schedule_id: str) -> dict:
        """
        Raises:
            ScheduleNotFoundError: if absent, malformed or owned by someone else.
        """
        oid = to_object_id(schedule_id)
        doc = await self.collection.find_one({"_id": oid, "user_id": user_id}) if oid else None
        if doc is None:
            raise ScheduleNotFoundError(schedule_id)
        return doc


    @handle_db_errors("schedule.find_for_job")
    async def find_for_job(self, user_id: str, job_id: str, status: str | None = None) -> dict | None:
        """Newest schedule of a job, optionally restricted to one status."""
        query = {"user_id": user_id, "job_id": job_id}
        if status:
            query["status"] = status
        cursor = self.collection.find(query).sort("created_at", DESCENDING).limit(1)
        docs = await cursor.to_list(length=1)
        return docs[0] if docs else None

    @handle_db_errors("schedule.active_job_ids")
    async def active_job_ids(self, user_id: str) -> set[str]:
        job_ids = await self.collection.distinct("job_id", {"user_id": user_id, "status": SCHEDULED})
        return {str(job_id) for job_id in job_ids}

    @handle_db_errors("schedule.list_by_user")
    async def list_by_user(
        self,
        user_id: str,
        status: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[dict]:
        """All of a user's schedules, ordered by ``scheduled_at`` then id."""
        query: dict = {"user_id": user_id}
        if status:
            query["status"] = status
        if date_from or date_to:
            query["scheduled_at"] = {}
            if date_from:
                query["scheduled_at"]["$gte"] = date_from
            if date_to:
                query["scheduled_at"]["$lte"] = date_to

        cursor = self.collection.find(query).sort([("scheduled_at", ASCENDING), ("_id", ASCENDING)])
        return await cursor.to_list(length=None)

    @handle_db_errors("schedule.list_submitted")
    async def list_submitted(self, user_id: str) -> list[dict]:
        cursor = self.collection.find(
            {"user_id": user_id, "status": ScheduleStatus.SUBMITTED.value},
            {"job_id": 1, "scheduled_at": 1, "submitted_at": 1, "deadline_at": 1, "timezone": 1},
        )
        return await cursor.to_list(length=None)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _transition(
        self, user_id: str | None, schedule_id: str, update: dict | list, action: str, extra_filter: dict | None = None
    ) -> dict:
        oid = to_object_id(schedule_id)
        if oid is None:
            raise ScheduleNotFoundError(schedule_id)

        owner = {"_id": oid}
        if user_id is not None:
            owner["user_id"] = user_id

        doc = await self.collection.find_one_and_update(
            {**owner, "status": SCHEDULED, **(extra_filter or {})},
            update,
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return doc

        current = await self.collection.find_one(owner, {"status": 1})
        if current is None:
            raise ScheduleNotFoundError(schedule_id)
        raise InvalidStateTransitionError(schedule_id, current.get("status"), action)

    @handle_db_errors("schedule.reschedule")
    async def reschedule(
        self, user_id: str, schedule_id: str, scheduled_at: datetime, timezone: str, now: datetime
    ) -> dict:
        # pipeline update so the audit entry captures the pre-update scheduled_at
        update = [
            {
                "$set": {
                    "audit": {
                        "$concatArrays": [
                            {"$ifNull": ["$audit", []]},
                            [
                                {
                                    "event": AuditEventName.RESCHEDULED.value,
                                    "meta": {
                                        "from": "$scheduled_at",
                                        "to": scheduled_at,
                                        "timezone": {"$literal": timezone},
                                    },
                                    "timestamp": now,
                                }
                            ],
                        ]
                    },
                    "scheduled_at": scheduled_at,
                    "timezone": {"$literal": timezone},
                    "updated_at": now,
                }
            }
        ]
        return await self._transition(user_id, schedule_id, update, "reschedule")

    @handle_db_errors("schedule.cancel")
    async def cancel(self, user_id: str, schedule_id: str, now: datetime) -> dict:
        update = {
            "$set": {
                "status": ScheduleStatus.CANCELLED.value,
                "cancelled_at": now,
                "updated_at": now,
            },
            "$push": {"audit": audit_entry(AuditEventName.CANCELLED, now)},
        }
        return await self._transition(user_id, schedule_id, update, "cancel")

    @handle_db_errors("schedule.mark_submitted")
    async def mark_submitted(
        self,
        user_id: str | None,
        schedule_id,
        submitted_at: datetime,
        now: datetime,
        source: str,
        note: str | None = None,
    ) -> dict:
        """
        ``scheduled -> submitted``. The linked job is flagged unsynced and the
        ``submitted`` notification is queued in the same write.

        ``user_id=None`` is the system path (sweep).
        """
        update = {
            "$set": {
                "status": ScheduleStatus.SUBMITTED.value,
                "submitted_at": submitted_at,
                "submission_source": source,
                "job_synced": False,
                "updated_at": now,
                "last_processed_at": now,
            },
            "$push": {
                "audit": audit_entry(AuditEventName.SUBMITTED, now, source=source, note=note),
                "notifications": new_notification(NotificationKind.SUBMITTED, now),
            },
        }
        return await self._transition(user_id, str(schedule_id), update, "submit")

    @handle_db_errors("schedule.mark_imported")
    async def mark_imported(
        self,
        user_id: str,
        schedule_id,
        submitted_at: datetime,
        now: datetime,
        source: str,
        meta: dict | None,
    ) -> dict:
        """
        ``scheduled -> submitted`` because the user applied elsewhere.

        The caller has already advanced the job, and no confirmation is
        queued for a submission the scheduler did not make.
        """
        update = {
            "$set": {
                "status": ScheduleStatus.SUBMITTED.value,
                "submitted_at": submitted_at,
                "submission_source": source,
                "job_synced": True,
                "updated_at": now,
                "last_processed_at": now,
            },
            "$push": {
                "audit": audit_entry(AuditEventName.IMPORTED_SUBMITTED, now, **{"source": source, **(meta or {})}),
            },
        }
        return await self._transition(user_id, str(schedule_id), update, "submit")

    def _expire_update(self, now: datetime, reason: str) -> dict:
        return {
            "$set": {
                "status": ScheduleStatus.EXPIRED.value,
                "expired_at": now,
                "updated_at": now,
                "last_processed_at": now,
            },
            "$push": {
                "audit": audit_entry(AuditEventName.EXPIRED, now, reason=reason),
                "notifications": new_notification(NotificationKind.EXPIRED, now),
            },
        }

    @handle_db_errors("schedule.mark_expired")
    async def mark_expired(
        self, schedule_id, now: datetime, reason: str, user_id: str | None = None
    ) -> dict:
        """
        ``scheduled -> expired``, only once the deadline has passed.

        Raises:
            ScheduleNotFoundError / InvalidStateTransitionError: as for any transition;
            a schedule whose deadline has not passed reports its current status.
        """
        return await self._transition(
            user_id,
            str(schedule_id),
            self._expire_update(now, reason),
            "expire",
            extra_filter={"deadline_at": {"$ne": None, "$lt": now}},
        )

    @handle_db_errors("schedule.expire_overdue_for_user")
    async def expire_overdue_for_user(self, user_id: str, now: datetime) -> int:
        result = await self.collection.update_many(
            {"user_id": user_id, "status": SCHEDULED, "deadline_at": {"$ne": None, "$lt": now}},
            self._expire_update(now, "deadline_passed"),
        )
        if result.modified_count:
            logger.info(
                "Expired {count} overdue schedules for user {user_id}",
                count=result.modified_count,
                user_id=user_id,
                event_type="schedules_expired_on_list",
            )
        return result.modified_count

    # ------------------------------------------------------------------
    # Sweep queries
    # ------------------------------------------------------------------

    async def _find(self, query: dict, sort: list, limit: int) -> list[dict]:
        cursor = self.collection.find(query).sort(sort).limit(limit)
        return await cursor.to_list(length=limit)

    @handle_db_errors("schedule.find_expirable")
    async def find_expirable(self, now: datetime, limit: int) -> list[dict]:
        return await self._find(
            {"status": SCHEDULED, "deadline_at": {"$ne": None, "$lt": now}},
            [("deadline_at", ASCENDING)],
            limit,
        )

    @handle_db_errors("schedule.find_due")
    async def find_due(self, now: datetime, limit: int) -> list[dict]:
        return await self._find(
            {
                "status": SCHEDULED,
                "scheduled_at": {"$lte": now},
                "$or": [{"deadline_at": None}, {"deadline_at": {"$gte": now}}],
            },
            [("scheduled_at", ASCENDING)],
            limit,
        )

    @handle_db_errors("schedule.find_reminder_candidates")
    async def find_reminder_candidates(self, now: datetime, horizon: timedelta, limit: int) -> list[dict]:
        """Scheduled, not yet due, with a deadline inside ``horizon``."""
        return await self._find(
            {
                "status": SCHEDULED,
                "scheduled_at": {"$gt": now},
                "deadline_at": {"$gte": now, "$lte": now + horizon},
            },
            [("deadline_at", ASCENDING)],
            limit,
        )

    @handle_db_errors("schedule.find_pending_notifications")
    async def find_pending_notifications(self, now: datetime, limit: int) -> list[dict]:
        return await self._find(
            {
                "notifications": {
                    "$elemMatch": {"status": NotificationStatus.PENDING.value, **_lease_free(now)}
                }
            },
            [("updated_at", ASCENDING)],
            limit,
        )

    @handle_db_errors("schedule.find_unsynced_jobs")
    async def find_unsynced_jobs(self, limit: int) -> list[dict]:
        return await self._find(
            {"status": ScheduleStatus.SUBMITTED.value, "job_synced": False},
            [("submitted_at", ASCENDING)],
            limit,
        )

    # ------------------------------------------------------------------
    # Notification outbox
    # ------------------------------------------------------------------

    @handle_db_errors("schedule.queue_reminders")
    async def queue_reminders(self, schedule_id, entries: list[dict], now: datetime) -> bool:
        """
        Append reminder entries unless any of their keys is already recorded
        or the schedule left ``scheduled``.
        """
        if not entries:
            return False
        keys = [entry["key"] for entry in entries]
        result = await self.collection.update_one(
            {"_id": schedule_id, "status": SCHEDULED, "notifications.key": {"$nin": keys}},
            {
                "$push": {"notifications": {"$each": entries}},
                "$set": {"updated_at": now, "last_processed_at": now},
            },
        )
        return result.modified_count == 1

    @handle_db_errors("schedule.claim_notification")
    async def claim_notification(self, schedule_id, key: str, now: datetime, lease_seconds: int) -> dict | None:
        """
        Lease a pending outbox entry for delivery.

        Returns the schedule document, or None when the entry is not pending
        or another worker holds an unexpired lease.
        """
        return await self.collection.find_one_and_update(
            {
                "_id": schedule_id,
                "notifications": {
                    "$elemMatch": {"key": key, "status": NotificationStatus.PENDING.value, **_lease_free(now)}
                },
            },
            {"$set": {"notifications.$.claimed_until": now + timedelta(seconds=lease_seconds)}},
            return_document=ReturnDocument.AFTER,
        )

    async def _finish_notification(
        self, schedule_id, key: str, status: str, now: datetime, extra: dict | None = None, push: dict | None = None
    ) -> bool:
        update: dict = {
            "$set": {
                "notifications.$.status": status,
                "notifications.$.claimed_until": None,
                "updated_at": now,
                **(extra or {}),
            }
        }
        if push:
            update["$push"] = push
        result = await self.collection.update_one(
            {
                "_id": schedule_id,
                "notifications": {"$elemMatch": {"key": key, "status": NotificationStatus.PENDING.value}},
            },
            update,
        )
        return result.modified_count == 1

    @handle_db_errors("schedule.complete_notification")
    async def complete_notification(self, schedule_id, key: str, now: datetime, audit: dict) -> bool:
        return await self._finish_notification(
            schedule_id,
            key,
            NotificationStatus.SENT.value,
            now,
            extra={"notifications.$.sent_at": now},
            push={"audit": audit},
        )

    @handle_db_errors("schedule.skip_notification")
    async def skip_notification(self, schedule_id, key: str, now: datetime) -> bool:
        """Close a pending entry that should no longer go out."""
        return await self._finish_notification(schedule_id, key, NotificationStatus.SKIPPED.value, now)

    @handle_db_errors("schedule.release_notification")
    async def release_notification(
        self, schedule_id, key: str, error: str, max_attempts: int, now: datetime
    ) -> str | None:
        """
        Give a failed delivery back: count the attempt and drop the lease.
        Once ``max_attempts`` is reached the entry is marked ``failed``.

        Returns the entry's resulting status, or None if it was no longer pending.
        """
        doc = await self.collection.find_one_and_update(
            {
                "_id": schedule_id,
                "notifications": {"$elemMatch": {"key": key, "status": NotificationStatus.PENDING.value}},
            },
            {
                "$inc": {"notifications.$.attempts": 1},
                "$set": {
                    "notifications.$.claimed_until": None,
                    "notifications.$.last_error": error[:500],
                    "updated_at": now,
                },
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            return None

        entry = next((n for n in doc.get("notifications", []) if n.get("key") == key), None)
        if entry is None or entry.get("attempts", 0) < max_attempts:
            return NotificationStatus.PENDING.value

        await self.collection.update_one(
            {
                "_id": schedule_id,
                "notifications": {"$elemMatch": {"key": key, "status": NotificationStatus.PENDING.value}},
            },
            {"$set": {"notifications.$.status": NotificationStatus.FAILED.value}},
        )
        return NotificationStatus.FAILED.value

    @handle_db_errors("schedule.mark_job_synced")
    async def mark_job_synced(self, schedule_id, now: datetime) -> bool:
        result = await self.collection.update_one(
            {"_id": schedule_id, "job_synced": False},
            {
                "$set": {"job_synced": True, "updated_at": now},
                "$push": {"audit": audit_entry(AuditEventName.JOB_STATUS_SYNCED, now)},
            },
        )
        return result.modified_count == 1
