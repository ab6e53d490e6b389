"""
Health check endpoints for Kubernetes probes and monitoring.

Provides:
- /health: Full health check with dependency status
- /health/live: Liveness probe (is the service running?)
- /health/ready: Readiness probe (can the service handle traffic?)

MongoDB is the only critical dependency. Notifications are queued in the
schedule documents, so an unreachable RabbitMQ only degrades the service.
"""

import time

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.core.config import settings
from app.core.database import db_manager
from app.core.zoned_time import to_iso, utc_now
from app.log.logging import logger
from app.scheduler.scheduler import get_scheduler
from app.services.dependencies import get_notification_publisher

router = APIRouter(tags=["healthcheck"])

SERVICE_VERSION = "1.0.0"


class DependencyStatus(BaseModel):
    """Status of a single dependency."""

    name: str
    status: str  # "healthy", "unhealthy", "disabled"
    latency_ms: float | None = None
    message: str | None = None


class HealthResponse(BaseModel):
    """Full health check response."""

    status: str  # "healthy", "unhealthy", "degraded"
    version: str = SERVICE_VERSION
    service: str = "application-scheduler-service"
    environment: str
    timestamp: str
    dependencies: list[DependencyStatus] = []


class LivenessResponse(BaseModel):
    """Liveness probe response."""

    status: str = "alive"
    timestamp: str


class ReadinessResponse(BaseModel):
    """Readiness probe response."""

    status: str  # "ready", "not_ready"
    timestamp: str
    checks: dict[str, str] = {}


async def _check_mongodb() -> DependencyStatus:
    start = time.perf_counter()
    healthy = await db_manager.ping()
    return DependencyStatus(
        name="mongodb",
        status="healthy" if healthy else "unhealthy",
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
    )


async def _check_rabbitmq() -> DependencyStatus:
    start = time.perf_counter()
    try:
        await get_notification_publisher().check_connection()
    except Exception as e:
        return DependencyStatus(name="rabbitmq", status="unhealthy", message=str(e))
    return DependencyStatus(
        name="rabbitmq",
        status="healthy",
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
    )


def _check_scheduler() -> DependencyStatus:
    if not settings.scheduler_enabled:
        return DependencyStatus(name="scheduler", status="disabled")
    scheduler = get_scheduler()
    running = scheduler is not None and scheduler.running
    return DependencyStatus(name="scheduler", status="healthy" if running else "unhealthy")


@router.get(
    "/health",
    summary="Full health check",
    description="Returns detailed health status including all dependencies.",
    response_model=HealthResponse,
    responses={
        200: {"description": "Service is healthy or degraded"},
        503: {"description": "Service is unhealthy"},
    },
)
async def health_check():
    """
    Full health check endpoint with dependency status.

    Unhealthy MongoDB makes the service unhealthy (503); a failing
    RabbitMQ or a stopped sweep scheduler only degrade it.
    """
    mongodb = await _check_mongodb()
    dependencies = [mongodb, await _check_rabbitmq(), _check_scheduler()]

    if mongodb.status != "healthy":
        overall_status = "unhealthy"
    elif any(dep.status == "unhealthy" for dep in dependencies):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    response = HealthResponse(
        status=overall_status,
        environment=settings.environment,
        timestamp=to_iso(utc_now()),
        dependencies=dependencies,
    )

    if overall_status == "unhealthy":
        logger.warning("Health check failed", event_type="health_check_failed")
        raise HTTPException(status_code=503, detail=response.model_dump())

    return response


@router.get(
    "/health/live",
    summary="Liveness probe",
    description="Kubernetes liveness probe - checks if the service is running.",
    response_model=LivenessResponse,
    responses={200: {"description": "Service is alive"}},
)
async def liveness_probe():
    """Always succeeds while the process is alive."""
    return LivenessResponse(status="alive", timestamp=to_iso(utc_now()))


@router.get(
    "/health/ready",
    summary="Readiness probe",
    description="Kubernetes readiness probe - checks if the service can handle traffic.",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Service is ready to handle traffic"},
        503: {"description": "Service is not ready"},
    },
)
async def readiness_probe():
    """Returns 503 while MongoDB is unreachable."""
    mongodb = await _check_mongodb()
    scheduler = _check_scheduler()
    checks = {
        "mongodb": "ready" if mongodb.status == "healthy" else "not_ready",
        "scheduler": scheduler.status,
    }
    ready = mongodb.status == "healthy"

    response = ReadinessResponse(
        status="ready" if ready else "not_ready",
        timestamp=to_iso(utc_now()),
        checks=checks,
    )
    if not ready:
        raise HTTPException(status_code=503, detail=response.model_dump())
    return response
