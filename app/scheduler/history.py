"""
Job execution history storage.

Stores one record per background job run in MongoDB for debugging and
for ``appsched sweep history``.
"""

from datetime import timedelta
from typing import Any

from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from app.core.database import JOB_HISTORY_COLLECTION, get_collection
from app.core.zoned_time import to_iso, utc_now
from app.log.logging import logger


def _collection():
    return get_collection(JOB_HISTORY_COLLECTION)


async def record_job_execution(
    job_id: str,
    job_name: str,
    status: str,
    result: dict[str, Any] | None = None,
    error: str | None = None,
    duration_ms: int = 0,
) -> str:
    """
    Record a job execution in the history collection.

    Args:
        job_id: Scheduler job identifier
        job_name: Human-readable job name
        status: Execution status (success, failed)
        result: Job result data (if successful)
        error: Error message (if failed)
        duration_ms: Execution duration in milliseconds

    Returns:
        Inserted document ID, or "" if the record could not be written
    """
    doc = {
        "job_id": job_id,
        "job_name": job_name,
        "status": status,
        "result": result,
        "error": error,
        "duration_ms": duration_ms,
        "executed_at": utc_now(),
    }
    try:
        inserted = await _collection().insert_one(doc)
    except PyMongoError as e:
        # history is diagnostic only; the job itself already ran
        logger.warning(
            "Failed to record job execution: {error}",
            error=str(e),
            job_id=job_id,
            event_type="job_history_error",
        )
        return ""
    return str(inserted.inserted_id)


async def get_job_history(
    job_id: str | None = None,
    status: str | None = None,
    limit: int = 20,
) -> list[dict[str, Any]]:
    """Most recent executions first."""
    query = {}
    if job_id:
        query["job_id"] = job_id
    if status:
        query["status"] = status

    cursor = _collection().find(query).sort("executed_at", DESCENDING).limit(limit)

    records = []
    async for doc in cursor:
        records.append({
            "id": str(doc["_id"]),
            "job_id": doc["job_id"],
            "job_name": doc["job_name"],
            "status": doc["status"],
            "result": doc.get("result"),
            "error": doc.get("error"),
            "duration_ms": doc.get("duration_ms", 0),
            "executed_at": to_iso(doc.get("executed_at")),
        })

    return records


async def cleanup_old_history(retention_days: int) -> int:
    """
    Remove job history older than the retention period.

    Returns:
        Number of deleted records
    """
    cutoff = utc_now() - timedelta(days=retention_days)
    result = await _collection().delete_many({"executed_at": {"$lt": cutoff}})
    return result.deleted_count
