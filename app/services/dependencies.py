"""
Service wiring.

One shared instance of each service per process, built lazily so that
importing the routers does not touch MongoDB or RabbitMQ. Routers receive
them through ``Depends``; tests replace them with
``app.dependency_overrides``.
"""
from functools import lru_cache

from app.core.config import settings
from app.services.application_import_service import ApplicationImportService
from app.services.application_scheduler_service import ApplicationSchedulerService
from app.services.import_event_store import ImportEventStore
from app.services.job_store import JobStore
from app.services.notification_outbox import NotificationOutbox
from app.services.notification_service import NotificationPublisher
from app.services.notification_settings_store import NotificationSettingsStore
from app.services.pairing_service import PairingService
from app.services.pairing_store import PairingStore
from app.services.schedule_store import ScheduleStore
from app.services.schedule_sweeper import ScheduleSweeper


@lru_cache
def get_schedule_store() -> ScheduleStore:
    return ScheduleStore()


@lru_cache
def get_job_store() -> JobStore:
    return JobStore()


@lru_cache
def get_notification_publisher() -> NotificationPublisher:
    return NotificationPublisher(settings)


@lru_cache
def get_notification_outbox() -> NotificationOutbox:
    return NotificationOutbox(get_schedule_store(), get_job_store(), get_notification_publisher(), settings)


@lru_cache
def get_scheduler_service() -> ApplicationSchedulerService:
    return ApplicationSchedulerService(
        get_schedule_store(),
        get_job_store(),
        NotificationSettingsStore(),
        get_notification_outbox(),
        settings,
    )


@lru_cache
def get_import_service() -> ApplicationImportService:
    return ApplicationImportService(ImportEventStore(), get_job_store(), get_schedule_store(), settings)


@lru_cache
def get_pairing_service() -> PairingService:
    return PairingService(PairingStore(), settings)


@lru_cache
def get_sweeper() -> ScheduleSweeper:
    return ScheduleSweeper(get_schedule_store(), get_scheduler_service(), get_notification_outbox(), settings)
