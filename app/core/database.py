"""
Database configuration with connection pooling and index management.

This module provides:
- MongoDB connection with connection pooling (timezone-aware datetimes)
- Collection references for schedules, jobs, settings, pairings and imports
- Index creation backing the scheduler's conditional-update discipline
- Database health monitoring utilities
"""
from collections.abc import Callable
from functools import wraps
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import OperationFailure, PyMongoError

from app.core.config import settings
from app.core.exceptions import DatabaseOperationError
from app.log.logging import logger

SCHEDULES_COLLECTION = "application_schedules"
JOBS_COLLECTION = "jobs"
SCHEDULER_SETTINGS_COLLECTION = "application_scheduler_settings"
PAIRINGS_COLLECTION = "extension_pairings"
IMPORT_EVENTS_COLLECTION = "application_import_events"
JOB_HISTORY_COLLECTION = "job_history"


class DatabaseManager:
    """
    Manages MongoDB connections with connection pooling and index management.
    """

    _instance: Optional["DatabaseManager"] = None
    _client: Optional[AsyncIOMotorClient] = None
    _database: Optional[AsyncIOMotorDatabase] = None
    _indexes_created: bool = False

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def client(self) -> AsyncIOMotorClient:
        """Get or create the MongoDB client with connection pooling."""
        if self._client is None:
            self._client = AsyncIOMotorClient(
                settings.mongodb,
                maxPoolSize=settings.mongo_max_pool_size,
                minPoolSize=settings.mongo_min_pool_size,
                maxIdleTimeMS=settings.mongo_max_idle_time_ms,
                connectTimeoutMS=settings.mongo_connect_timeout_ms,
                serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
                socketTimeoutMS=settings.mongo_socket_timeout_ms,
                retryWrites=True,
                retryReads=True,
                # every instant read back is an aware UTC datetime
                tz_aware=True,
            )
        return self._client

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """Get the configured database."""
        if self._database is None:
            self._database = self.client[settings.mongodb_database]
        return self._database

    async def create_indexes(self) -> None:
        """
        Create indexes for all collections.

        Idempotent - indexes are only created once per application lifecycle.
        """
        if self._indexes_created:
            return

        try:
            schedule_indexes = [
                IndexModel(
                    [("user_id", ASCENDING), ("scheduled_at", ASCENDING)],
                    name="idx_user_scheduled_at",
                ),
                IndexModel(
                    [("user_id", ASCENDING), ("job_id", ASCENDING), ("status", ASCENDING)],
                    name="idx_user_job_status",
                ),
                # at most one active schedule per job, enforced by the server
                IndexModel(
                    [("user_id", ASCENDING), ("job_id", ASCENDING)],
                    name="uniq_active_schedule_per_job",
                    unique=True,
                    partialFilterExpression={"status": "scheduled"},
                ),
                IndexModel(
                    [("status", ASCENDING), ("scheduled_at", ASCENDING)],
                    name="idx_status_scheduled_at",
                ),
                IndexModel(
                    [("status", ASCENDING), ("deadline_at", ASCENDING)],
                    name="idx_status_deadline_at",
                ),
                IndexModel(
                    [("notifications.status", ASCENDING), ("notifications.claimed_until", ASCENDING)],
                    name="idx_pending_notifications",
                ),
                IndexModel(
                    [("status", ASCENDING), ("job_synced", ASCENDING)],
                    name="idx_unsynced_jobs",
                    partialFilterExpression={"job_synced": False},
                ),
            ]
            await self.database[SCHEDULES_COLLECTION].create_indexes(schedule_indexes)
            logger.info(f"Created indexes for {SCHEDULES_COLLECTION} collection")

            job_indexes = [
                IndexModel([("user_id", ASCENDING), ("status", ASCENDING)], name="idx_user_status"),
                IndexModel(
                    [("user_id", ASCENDING), ("updated_at", DESCENDING)], name="idx_user_updated"
                ),
            ]
            await self.database[JOBS_COLLECTION].create_indexes(job_indexes)
            logger.info(f"Created indexes for {JOBS_COLLECTION} collection")

            await self.database[SCHEDULER_SETTINGS_COLLECTION].create_indexes(
                [IndexModel([("user_id", ASCENDING)], name="uniq_user_id", unique=True)]
            )
            logger.info(f"Created indexes for {SCHEDULER_SETTINGS_COLLECTION} collection")

            pairing_indexes = [
                IndexModel([("pairing_id", ASCENDING)], name="uniq_pairing_id", unique=True),
                IndexModel(
                    [("code_lookup_hash", ASCENDING), ("created_at", DESCENDING)],
                    name="idx_code_lookup",
                ),
                IndexModel(
                    [("user_id", ASCENDING), ("created_at", DESCENDING)], name="idx_user_created"
                ),
                # garbage collection only; expiry itself is checked on every read
                IndexModel([("expires_at", ASCENDING)], name="idx_ttl", expireAfterSeconds=86400),
            ]
            await self.database[PAIRINGS_COLLECTION].create_indexes(pairing_indexes)
            logger.info(f"Created indexes for {PAIRINGS_COLLECTION} collection")

            import_indexes = [
                IndexModel(
                    [("user_id", ASCENDING), ("event_fingerprint", ASCENDING)],
                    name="uniq_event_fingerprint",
                    unique=True,
                ),
                IndexModel(
                    [("user_id", ASCENDING), ("message_id", ASCENDING)], name="idx_message_id"
                ),
                IndexModel(
                    [("user_id", ASCENDING), ("job_url", ASCENDING), ("applied_at", ASCENDING)],
                    name="idx_job_url_applied_at",
                ),
                IndexModel(
                    [
                        ("user_id", ASCENDING),
                        ("company_key", ASCENDING),
                        ("title_key", ASCENDING),
                        ("applied_day", ASCENDING),
                    ],
                    name="idx_company_title_day",
                ),
                IndexModel([("user_id", ASCENDING), ("job_id", ASCENDING)], name="idx_user_job"),
            ]
            await self.database[IMPORT_EVENTS_COLLECTION].create_indexes(import_indexes)
            logger.info(f"Created indexes for {IMPORT_EVENTS_COLLECTION} collection")

            await self.database[JOB_HISTORY_COLLECTION].create_indexes(
                [
                    IndexModel(
                        [("job_id", ASCENDING), ("executed_at", DESCENDING)],
                        name="idx_job_executed",
                    )
                ]
            )

            self._indexes_created = True
            logger.info("All database indexes created successfully")

        except OperationFailure as e:
            logger.error(f"Failed to create indexes: {e}")
            raise

    async def ping(self) -> bool:
        """
        Check if the database connection is healthy.

        Returns:
            True if connection is healthy, False otherwise.
        """
        try:
            await self.client.admin.command("ping")
            return True
        except Exception as e:
            logger.error(f"Database ping failed: {e}")
            return False

    async def close(self) -> None:
        """Close the database connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("Database connection closed")


# Singleton instance
db_manager = DatabaseManager()


async def init_database() -> None:
    """
    Initialize database connection and create indexes.

    Call this during application startup.
    """
    logger.info("Initializing database connection...")

    if await db_manager.ping():
        logger.info("Database connection established")
    else:
        raise RuntimeError("Failed to connect to database")

    await db_manager.create_indexes()


async def close_database() -> None:
    """
    Close database connection.

    Call this during application shutdown.
    """
    await db_manager.close()


def get_collection(name: str):
    """Get a collection of the configured database by name."""
    return db_manager.database[name]


def handle_db_errors(operation: str):
    """
    Decorator converting driver failures into DatabaseOperationError.

    Usage:
        @handle_db_errors("schedule.create")
        async def create(self, ...):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except PyMongoError as e:
                logger.error(
                    "Database operation {operation} failed: {error}",
                    operation=operation,
                    error=str(e),
                    event_type="database_error",
                )
                raise DatabaseOperationError(operation, str(e)) from e

        return wrapper

    return decorator
