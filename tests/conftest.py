from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from app.core.auth import get_current_user, get_import_user
from app.core.config import Settings
from app.main import app
from app.services.dependencies import get_import_service, get_pairing_service, get_scheduler_service

# Constants for testing
TEST_USER_ID = "test_user_123"
NOW = datetime(2025, 6, 2, 14, 0, tzinfo=timezone.utc)


# Auth fixtures
async def mock_get_current_user():
    """Mock the authentication to always return a test user ID."""
    return TEST_USER_ID


@pytest.fixture
def test_settings():
    """Settings with the defaults the tests are written against."""
    return Settings(
        default_timezone="America/New_York",
        reminder_offsets_minutes="1440,60",
        schedule_past_tolerance_minutes=5,
        notification_max_attempts=5,
        notification_lease_seconds=120,
        pairing_code_ttl_minutes=10,
        pairing_max_attempts=8,
        import_url_dedup_window_minutes=60,
        sweep_batch_size=200,
    )


@pytest.fixture
def test_client():
    """Create a test client for FastAPI with authentication mocked."""
    app.dependency_overrides[get_current_user] = mock_get_current_user
    app.dependency_overrides[get_import_user] = mock_get_current_user
    client = TestClient(app)

    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def mock_scheduler_service(test_client):
    service = MagicMock()
    service.create_application_schedule = AsyncMock()
    service.list_application_schedules = AsyncMock(return_value=[])
    service.reschedule_application_schedule = AsyncMock()
    service.submit_scheduled_application_now = AsyncMock()
    service.cancel_application_schedule = AsyncMock()
    service.list_eligible_jobs_for_scheduler = AsyncMock(return_value=[])
    service.get_submission_time_stats = AsyncMock()
    service.get_default_notification_email = AsyncMock(return_value=None)
    service.set_default_notification_email = AsyncMock()
    service.get_best_practices = MagicMock(return_value=["Submit early."])
    app.dependency_overrides[get_scheduler_service] = lambda: service
    return service


@pytest.fixture
def mock_import_service(test_client):
    service = MagicMock()
    service.import_application_event = AsyncMock()
    service.import_application_events_bulk = AsyncMock()
    service.get_platform_info_for_job = AsyncMock()
    app.dependency_overrides[get_import_service] = lambda: service
    return service


@pytest.fixture
def mock_pairing_service(test_client):
    service = MagicMock()
    service.start_extension_pairing = AsyncMock()
    service.get_extension_pairing_status = AsyncMock()
    service.complete_extension_pairing = AsyncMock()
    app.dependency_overrides[get_pairing_service] = lambda: service
    return service


# Document factories
@pytest.fixture
def make_job():
    def _make(**overrides) -> dict:
        doc = {
            "_id": ObjectId(),
            "user_id": TEST_USER_ID,
            "title": "Backend Engineer",
            "company": "Acme Corp",
            "location": "Remote",
            "status": "interested",
            "archived": False,
            "application_deadline": None,
            "job_posting_url": "",
            "updated_at": NOW,
        }
        doc.update(overrides)
        return doc

    return _make


@pytest.fixture
def make_schedule():
    def _make(**overrides) -> dict:
        doc = {
            "_id": ObjectId(),
            "user_id": TEST_USER_ID,
            "job_id": str(ObjectId()),
            "scheduled_at": NOW + timedelta(days=1),
            "timezone": "America/New_York",
            "deadline_at": NOW + timedelta(days=3),
            "status": "scheduled",
            "notification_email": "user@example.com",
            "submitted_at": None,
            "expired_at": None,
            "cancelled_at": None,
            "submission_source": None,
            "audit": [{"event": "created", "meta": None, "timestamp": NOW}],
            "notifications": [],
            "job_synced": True,
            "created_at": NOW,
            "updated_at": NOW,
            "last_processed_at": None,
        }
        doc.update(overrides)
        return doc

    return _make


# MongoDB fixtures
def make_cursor(docs: list[dict]) -> MagicMock:
    """A motor-like cursor: chainable sort/limit and an awaitable to_list."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


@pytest.fixture
def cursor():
    return make_cursor


@pytest.fixture
def mock_collection():
    """A collection whose async methods are AsyncMocks; ``find`` returns an empty cursor."""
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.update_one = AsyncMock()
    collection.update_many = AsyncMock()
    collection.delete_one = AsyncMock()
    collection.delete_many = AsyncMock()
    collection.distinct = AsyncMock(return_value=[])
    collection.find = MagicMock(return_value=make_cursor([]))
    return collection
