"""
APScheduler setup and configuration.

Runs the schedule sweep on a fixed interval plus daily housekeeping. State
lives in MongoDB, so the in-memory jobstore is enough: a restart simply
resumes sweeping.
"""

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.config import settings
from app.log.logging import logger

SWEEP_JOB_ID = "schedule_sweep"
HISTORY_CLEANUP_JOB_ID = "cleanup_job_history"

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


def create_scheduler() -> AsyncIOScheduler:
    """Create and configure the APScheduler instance."""
    global _scheduler

    if _scheduler is not None:
        return _scheduler

    job_defaults = {
        "coalesce": True,  # Combine missed runs into one
        "max_instances": 1,  # Never overlap two sweeps in one process
        "misfire_grace_time": settings.sweep_interval_seconds,
    }

    _scheduler = AsyncIOScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": AsyncIOExecutor()},
        job_defaults=job_defaults,
        timezone="UTC",
    )

    logger.info("Scheduler created", event_type="scheduler_created")

    return _scheduler


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the global scheduler instance."""
    return _scheduler


def register_jobs(scheduler: AsyncIOScheduler) -> None:
    """Register the sweep and housekeeping jobs."""
    from app.scheduler.jobs.cleanup import cleanup_job_history
    from app.scheduler.jobs.sweep import run_schedule_sweep

    scheduler.add_job(
        run_schedule_sweep,
        "interval",
        seconds=settings.sweep_interval_seconds,
        id=SWEEP_JOB_ID,
        name="Application schedule sweep",
        replace_existing=True,
    )

    scheduler.add_job(
        cleanup_job_history,
        "cron",
        hour=3,
        minute=0,
        id=HISTORY_CLEANUP_JOB_ID,
        name="Cleanup job history",
        replace_existing=True,
    )

    job_count = len(scheduler.get_jobs())
    logger.info(
        "Registered {job_count} scheduled jobs",
        job_count=job_count,
        event_type="scheduler_jobs_registered",
    )


async def start_scheduler() -> None:
    """Start the scheduler if enabled."""
    global _scheduler

    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled, not starting")
        return

    if _scheduler is None:
        _scheduler = create_scheduler()
        register_jobs(_scheduler)

    if not _scheduler.running:
        _scheduler.start()
        logger.info("Scheduler started", event_type="scheduler_started")


async def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped", event_type="scheduler_stopped")
    _scheduler = None
