"""
Audit logging for security-sensitive operations.

Provides structured logging for:
- Authentication failures (bad bearer tokens, bad service credentials)
- Extension pairing (started, completed, rejected)
- Schedule state transitions initiated by users or the sweep
"""
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

from app.core.correlation import get_correlation_id
from app.core.zoned_time import to_iso, utc_now
from app.log.logging import logger


class AuditEventType(str, Enum):
    """Types of audit events."""
    # Authentication events
    AUTH_FAILURE = "auth.failure"
    AUTH_TOKEN_INVALID = "auth.token.invalid"

    # Pairing events
    PAIRING_STARTED = "pairing.started"
    PAIRING_COMPLETED = "pairing.completed"
    PAIRING_REJECTED = "pairing.rejected"

    # Schedule events
    SCHEDULE_STATUS_CHANGED = "schedule.status.changed"


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class AuditEvent:
    """Structured audit event."""
    event_type: AuditEventType
    timestamp: str
    correlation_id: Optional[str]
    user_id: Optional[str]
    ip_address: Optional[str]
    resource_type: Optional[str]
    resource_id: Optional[str]
    action: str
    outcome: str  # "success" or "failure"
    severity: AuditSeverity
    details: Optional[dict]
    error_message: Optional[str]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["event_type"] = self.event_type.value
        data["severity"] = self.severity.value
        return data


class AuditLogger:
    """
    Audit logger for security-sensitive operations.

    Usage:
        audit_logger.log_pairing_started(user_id="123", pairing_id="ab12...")
        audit_logger.log_schedule_transition(
            user_id="123", schedule_id="456", old_status="scheduled", new_status="submitted"
        )
    """

    def __init__(self):
        self._logger = logger.bind(audit=True)

    def _log(self, event: AuditEvent) -> None:
        log_method = {
            AuditSeverity.INFO: self._logger.info,
            AuditSeverity.WARNING: self._logger.warning,
            AuditSeverity.ERROR: self._logger.error,
        }.get(event.severity, self._logger.info)

        log_method(
            f"AUDIT: {event.event_type.value} - {event.action}",
            audit_event=event.to_dict(),
        )

    def _create_event(
        self,
        event_type: AuditEventType,
        action: str,
        outcome: str = "success",
        severity: AuditSeverity = AuditSeverity.INFO,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None,
        error_message: Optional[str] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            timestamp=to_iso(utc_now()),
            correlation_id=get_correlation_id(),
            user_id=user_id,
            ip_address=ip_address,
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            outcome=outcome,
            severity=severity,
            details=details,
            error_message=error_message
        )

    # Authentication events
    def log_auth_failure(
        self,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        reason: Optional[str] = None
    ) -> None:
        """Log a rejected service or developer credential."""
        event = self._create_event(
            event_type=AuditEventType.AUTH_FAILURE,
            action="Authentication failed",
            outcome="failure",
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            ip_address=ip_address,
            error_message=reason
        )
        self._log(event)

    def log_token_invalid(
        self,
        ip_address: Optional[str] = None,
        reason: Optional[str] = None
    ) -> None:
        """Log invalid bearer token usage."""
        event = self._create_event(
            event_type=AuditEventType.AUTH_TOKEN_INVALID,
            action="Invalid token presented",
            outcome="failure",
            severity=AuditSeverity.WARNING,
            ip_address=ip_address,
            error_message=reason
        )
        self._log(event)

    # Pairing events
    def log_pairing_started(self, user_id: str, pairing_id: str, device_name: Optional[str] = None) -> None:
        event = self._create_event(
            event_type=AuditEventType.PAIRING_STARTED,
            action="Extension pairing started",
            user_id=user_id,
            resource_type="pairing",
            resource_id=pairing_id,
            details={"device_name": device_name}
        )
        self._log(event)

    def log_pairing_completed(self, user_id: str, pairing_id: str) -> None:
        event = self._create_event(
            event_type=AuditEventType.PAIRING_COMPLETED,
            action="Extension pairing completed, token issued",
            user_id=user_id,
            resource_type="pairing",
            resource_id=pairing_id
        )
        self._log(event)

    def log_pairing_rejected(self, pairing_id: Optional[str], reason: str) -> None:
        """
        Log a failed pairing completion.

        The reason is recorded here only; callers always receive the same
        generic error.
        """
        event = self._create_event(
            event_type=AuditEventType.PAIRING_REJECTED,
            action="Extension pairing rejected",
            outcome="failure",
            severity=AuditSeverity.WARNING,
            resource_type="pairing",
            resource_id=pairing_id,
            error_message=reason
        )
        self._log(event)

    # Schedule events
    def log_schedule_transition(
        self,
        user_id: Optional[str],
        schedule_id: str,
        old_status: str,
        new_status: str,
        initiator: str = "user"
    ) -> None:
        event = self._create_event(
            event_type=AuditEventType.SCHEDULE_STATUS_CHANGED,
            action=f"Schedule status changed: {old_status} -> {new_status}",
            user_id=user_id,
            resource_type="application_schedule",
            resource_id=schedule_id,
            details={"old_status": old_status, "new_status": new_status, "initiator": initiator}
        )
        self._log(event)


# Global audit logger instance
audit_logger = AuditLogger()
