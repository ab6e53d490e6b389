from datetime import datetime, timedelta

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from app.core.database import IMPORT_EVENTS_COLLECTION, get_collection, handle_db_errors
from app.log.logging import logger


class ImportEventStore:
    """
    Access to ``application_import_events``.

    The lookups mirror the three ways two imports can describe the same
    application; the unique ``(user_id, event_fingerprint)`` index collapses
    concurrent replays that slip past them.
    """

    def __init__(self, collection=None):
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            self._collection = get_collection(IMPORT_EVENTS_COLLECTION)
        return self._collection

    @handle_db_errors("import_event.find_by_message_or_external_id")
    async def find_by_message_or_external_id(
        self, user_id: str, message_id: str | None, external_id: str | None
    ) -> dict | None:
        clauses = []
        if message_id:
            clauses.append({"message_id": message_id})
        if external_id:
            clauses.append({"external_id": external_id})
        if not clauses:
            return None
        return await self.collection.find_one({"user_id": user_id, "$or": clauses})

    @handle_db_errors("import_event.find_by_job_url_window")
    async def find_by_job_url_window(
        self, user_id: str, job_url: str, applied_at: datetime, window: timedelta
    ) -> dict | None:
        return await self.collection.find_one(
            {
                "user_id": user_id,
                "job_url": job_url,
                "applied_at": {"$gte": applied_at - window, "$lte": applied_at + window},
            }
        )

    @handle_db_errors("import_event.find_same_day")
    async def find_same_day(
        self, user_id: str, company_key: str, title_key: str, applied_day: str
    ) -> dict | None:
        return await self.collection.find_one(
            {
                "user_id": user_id,
                "company_key": company_key,
                "title_key": title_key,
                "applied_day": applied_day,
            }
        )

    @handle_db_errors("import_event.find_by_fingerprint")
    async def find_by_fingerprint(self, user_id: str, fingerprint: str) -> dict | None:
        return await self.collection.find_one({"user_id": user_id, "event_fingerprint": fingerprint})

    @handle_db_errors("import_event.insert")
    async def insert(self, doc: dict) -> dict | None:
        """
        Record an import event.

        Returns:
            The stored document, or None if an event with the same
            fingerprint already exists.
        """
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.info(
                "Import event {fingerprint} already recorded",
                fingerprint=doc.get("event_fingerprint"),
                user_id=doc.get("user_id"),
                event_type="import_event_duplicate",
            )
            return None
        doc["_id"] = result.inserted_id
        return doc

    @handle_db_errors("import_event.attach")
    async def attach(self, event_id, job_id: str, schedule_id: str) -> None:
        """Record the job and schedule an already-claimed event resolved to."""
        await self.collection.update_one(
            {"_id": event_id},
            {"$set": {"job_id": job_id, "schedule_id": schedule_id}},
        )

    @handle_db_errors("import_event.release")
    async def release(self, event_id) -> None:
        """Drop a claimed event whose import did not complete, so a retry is not deduplicated against it."""
        await self.collection.delete_one({"_id": event_id})

    @handle_db_errors("import_event.list_for_job")
    async def list_for_job(self, user_id: str, job_id: str) -> list[dict]:
        cursor = self.collection.find({"user_id": user_id, "job_id": job_id}).sort(
            [("applied_at", ASCENDING), ("created_at", ASCENDING)]
        )
        return await cursor.to_list(length=None)
