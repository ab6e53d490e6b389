"""
Prometheus metrics for service monitoring.

This module provides metrics collection for:
- HTTP request latency and counts
- Schedule state transitions
- Sweep runs and notification delivery
- Import and pairing outcomes
"""

import time
from collections.abc import Callable

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings

# =============================================================================
# Service Info
# =============================================================================

SERVICE_INFO = Info(
    "application_scheduler_service", "Information about the application scheduler service"
)
SERVICE_INFO.info(
    {"version": "1.0.0", "service_name": settings.service_name, "environment": settings.environment}
)


# =============================================================================
# HTTP Metrics
# =============================================================================

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=(0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

HTTP_REQUEST_TOTAL = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status_code"]
)

HTTP_REQUEST_IN_PROGRESS = Gauge(
    "http_requests_in_progress", "HTTP requests currently in progress", ["method", "endpoint"]
)


# =============================================================================
# Schedule Metrics
# =============================================================================

SCHEDULE_TRANSITIONS = Counter(
    "schedule_transitions_total",
    "Schedule state transitions",
    ["to_status", "initiator"],  # initiator: user, sweep, import
)


# =============================================================================
# Sweep Metrics
# =============================================================================

SWEEP_RUNS = Counter("sweep_runs_total", "Sweep passes executed", ["status"])

SWEEP_DURATION = Histogram(
    "sweep_duration_seconds",
    "Duration of one sweep pass",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

SWEEP_ERRORS = Counter("sweep_errors_total", "Schedules that failed during a sweep", ["stage"])


# =============================================================================
# Notification Metrics
# =============================================================================

NOTIFICATIONS = Counter(
    "schedule_notifications_total",
    "Notification delivery outcomes",
    ["kind", "status"],  # status: sent, retry, failed
)


# =============================================================================
# Import & Pairing Metrics
# =============================================================================

IMPORT_EVENTS = Counter(
    "application_import_events_total",
    "Application import events by outcome",
    ["source_type", "outcome"],  # outcome: created, merged, deduped, error
)

PAIRING_ATTEMPTS = Counter(
    "extension_pairing_total", "Extension pairing operations", ["stage", "outcome"]
)


# =============================================================================
# Middleware
# =============================================================================


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP request metrics.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        endpoint = self._normalize_path(request.url.path)

        HTTP_REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        except Exception:
            status_code = "500"
            raise
        finally:
            duration = time.time() - start_time
            HTTP_REQUEST_DURATION.labels(
                method=method, endpoint=endpoint, status_code=status_code
            ).observe(duration)
            HTTP_REQUEST_TOTAL.labels(
                method=method, endpoint=endpoint, status_code=status_code
            ).inc()
            HTTP_REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()

        return response

    def _normalize_path(self, path: str) -> str:
        """
        Normalize path by replacing dynamic segments with placeholders.

        Examples:
            /api/application-scheduler/schedules/65f1c0.../reschedule
                -> /api/application-scheduler/schedules/{id}/reschedule
            /api/application-import/pair/status/<32 hex> -> .../pair/status/{id}
        """
        parts = path.strip("/").split("/")
        normalized = []

        for part in parts:
            # ObjectId, pairing id or UUID
            if len(part) in (24, 32, 36) or (len(part) > 8 and "-" in part and part[0].isdigit()):
                normalized.append("{id}")
            else:
                normalized.append(part)

        return "/" + "/".join(normalized) if normalized else "/"


# =============================================================================
# Helper Functions
# =============================================================================


def record_schedule_transition(to_status: str, initiator: str = "user"):
    SCHEDULE_TRANSITIONS.labels(to_status=to_status, initiator=initiator).inc()


def record_sweep_run(status: str, duration_seconds: float):
    """Record a completed (or failed) sweep pass."""
    SWEEP_RUNS.labels(status=status).inc()
    SWEEP_DURATION.observe(duration_seconds)


def record_sweep_error(stage: str):
    SWEEP_ERRORS.labels(stage=stage).inc()


def record_notification(kind: str, status: str):
    NOTIFICATIONS.labels(kind=kind, status=status).inc()


def record_import_event(source_type: str, outcome: str):
    IMPORT_EVENTS.labels(source_type=source_type, outcome=outcome).inc()


def record_pairing(stage: str, outcome: str):
    PAIRING_ATTEMPTS.labels(stage=stage, outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for metrics response."""
    return CONTENT_TYPE_LATEST
