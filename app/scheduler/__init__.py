"""Background job scheduler module using APScheduler."""

from app.scheduler.scheduler import create_scheduler, get_scheduler, register_jobs, start_scheduler, stop_scheduler

__all__ = ["create_scheduler", "get_scheduler", "register_jobs", "start_scheduler", "stop_scheduler"]
