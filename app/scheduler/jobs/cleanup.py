"""
Housekeeping scheduled jobs.
"""

import time

from app.core.config import settings
from app.log.logging import logger
from app.scheduler.history import cleanup_old_history, record_job_execution


async def cleanup_job_history() -> dict:
    """Remove job history older than ``JOB_HISTORY_RETENTION_DAYS`` (default 30)."""
    job_id = "cleanup_job_history"
    start_time = time.time()

    try:
        deleted = await cleanup_old_history(settings.job_history_retention_days)
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            "Failed to cleanup job history: {error}",
            error=str(e),
            event_type="cleanup_job_history_failed",
        )
        await record_job_execution(
            job_id=job_id,
            job_name="Cleanup job history",
            status="failed",
            error=str(e),
            duration_ms=duration_ms,
        )
        raise

    result = {"deleted": deleted, "retention_days": settings.job_history_retention_days}
    duration_ms = int((time.time() - start_time) * 1000)

    logger.info(
        "Cleaned up {deleted} job history records",
        deleted=deleted,
        event_type="cleanup_job_history",
    )
    await record_job_execution(
        job_id=job_id,
        job_name="Cleanup job history",
        status="success",
        result=result,
        duration_ms=duration_ms,
    )
    return result
