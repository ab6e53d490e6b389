"""
Access to the job tracker's ``jobs`` collection.

The scheduler reads eligibility fields and only ever moves a job forward to
``applied``; the import flow may also create jobs for applications made
elsewhere.
"""
from datetime import datetime

from pymongo import DESCENDING

from app.core.database import JOBS_COLLECTION, get_collection, handle_db_errors
from app.core.exceptions import JobNotFoundError
from app.log.logging import logger
from app.models.job import JobStatus
from app.services.schedule_store import to_object_id

# statuses that may still be advanced to "applied"
_PRE_APPLIED = [JobStatus.INTERESTED.value, None, ""]


class JobStore:

    def __init__(self, collection=None):
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            self._collection = get_collection(JOBS_COLLECTION)
        return self._collection

    @handle_db_errors("job.get")
    async def get(self, user_id: str, job_id: str) -> dict:
        """
        Raises:
            JobNotFoundError: if absent, malformed or owned by someone else.
        """
        oid = to_object_id(job_id)
        doc = await self.collection.find_one({"_id": oid, "user_id": user_id}) if oid else None
        if doc is None:
            raise JobNotFoundError(job_id)
        return doc

    @handle_db_errors("job.get_many")
    async def get_many(self, user_id: str, job_ids) -> dict[str, dict]:
        """Jobs keyed by string id; unknown or malformed ids are left out."""
        oids = [oid for oid in (to_object_id(job_id) for job_id in set(job_ids)) if oid]
        if not oids:
            return {}
        cursor = self.collection.find({"_id": {"$in": oids}, "user_id": user_id})
        return {str(doc["_id"]): doc for doc in await cursor.to_list(length=None)}

    @handle_db_errors("job.list_schedulable")
    async def list_schedulable(self, user_id: str) -> list[dict]:
        """Non-archived jobs still at ``interested`` (or without status), newest first."""
        cursor = self.collection.find(
            {"user_id": user_id, "archived": {"$ne": True}, "status": {"$in": _PRE_APPLIED}}
        ).sort("updated_at", DESCENDING)
        return await cursor.to_list(length=None)

    @handle_db_errors("job.list_for_matching")
    async def list_for_matching(self, user_id: str) -> list[dict]:
        cursor = self.collection.find(
            {"user_id": user_id},
            {"title": 1, "company": 1, "location": 1, "status": 1, "updated_at": 1},
        ).sort("updated_at", DESCENDING)
        return await cursor.to_list(length=None)

    @handle_db_errors("job.advance_to_applied")
    async def advance_to_applied(self, user_id: str, job_id: str, now: datetime, note: str) -> bool | None:
        """
        Move a job to ``applied`` unless it is already there or further along.

        Returns:
            True if the job was advanced, False if nothing needed to change,
            None if the job no longer exists.
        """
        oid = to_object_id(job_id)
        if oid is None:
            return None

        result = await self.collection.update_one(
            {"_id": oid, "user_id": user_id, "status": {"$in": _PRE_APPLIED}},
            {
                "$set": {"status": JobStatus.APPLIED.value, "updated_at": now},
                "$push": {
                    "status_history": {
                        "status": JobStatus.APPLIED.value,
                        "timestamp": now,
                        "note": note,
                    }
                },
            },
        )
        if result.modified_count:
            logger.info(
                "Job {job_id} advanced to applied",
                job_id=str(job_id),
                user_id=user_id,
                event_type="job_status_advanced",
            )
            return True

        exists = await self.collection.find_one({"_id": oid, "user_id": user_id}, {"_id": 1})
        return False if exists else None

    @handle_db_errors("job.create_applied")
    async def create_applied(
        self,
        user_id: str,
        title: str,
        company: str,
        location: str | None,
        job_posting_url: str | None,
        applied_at: datetime,
        note: str,
        now: datetime,
    ) -> dict:
        doc = {
            "user_id": user_id,
            "title": title,
            "company": company,
            "location": location or "",
            "status": JobStatus.APPLIED.value,
            "job_posting_url": job_posting_url or "",
            "application_deadline": None,
            "archived": False,
            "status_history": [
                {"status": JobStatus.APPLIED.value, "timestamp": applied_at, "note": note}
            ],
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    @handle_db_errors("job.set_posting_url_if_empty")
    async def set_posting_url_if_empty(self, user_id: str, job_id: str, url: str | None) -> None:
        oid = to_object_id(job_id)
        if not url or oid is None:
            return
        await self.collection.update_one(
            {
                "_id": oid,
                "user_id": user_id,
                "$or": [{"job_posting_url": ""}, {"job_posting_url": None}],
            },
            {"$set": {"job_posting_url": url}},
        )
