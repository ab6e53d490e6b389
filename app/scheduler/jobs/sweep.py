"""
The periodic application-schedule sweep.
"""

import time

from app.core.correlation import generate_correlation_id, set_correlation_id
from app.log.logging import logger
from app.scheduler.history import record_job_execution
from app.services.dependencies import get_sweeper

JOB_ID = "schedule_sweep"
JOB_NAME = "Application schedule sweep"


async def run_schedule_sweep() -> dict:
    """
    Run one sweep pass and record it in the job history.

    Failures of individual schedules are part of the result; only a failed
    batch query marks the run as failed. The pass gets its own correlation
    ID, carried by its log lines and the notifications it publishes.
    """
    correlation_id = f"sweep-{generate_correlation_id()}"
    set_correlation_id(correlation_id)
    start_time = time.time()

    with logger.contextualize(correlation_id=correlation_id):
        try:
            result = await get_sweeper().run_once()
        except Exception as e:
            logger.error(
                "Schedule sweep failed: {error}",
                error=str(e),
                event_type="sweep_failed",
            )
            await record_job_execution(
                job_id=JOB_ID,
                job_name=JOB_NAME,
                status="failed",
                error=str(e),
                duration_ms=int((time.time() - start_time) * 1000),
            )
            raise

        summary = result.to_dict()
        await record_job_execution(
            job_id=JOB_ID,
            job_name=JOB_NAME,
            status="success",
            result=summary,
            duration_ms=int((time.time() - start_time) * 1000),
        )
    return summary
