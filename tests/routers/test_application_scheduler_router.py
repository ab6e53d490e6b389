"""Tests for the application scheduler endpoints."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from app.core.exceptions import (
    DuplicateActiveScheduleError,
    InvalidStateTransitionError,
    ScheduleNotFoundError,
    ValidationError,
)
from app.main import app
from app.models.job import EligibleJob
from app.models.schedule import ApplicationSchedule
from app.models.stats import SubmissionTimeStats, WindowStats
from app.services.application_scheduler_service import ApplicationSchedulerService
from app.services.dependencies import get_scheduler_service
from app.services.schedule_store import ScheduleStore

BASE = "/api/application-scheduler"
NOW = datetime(2025, 6, 2, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def schedule(make_schedule, make_job):
    job = make_job()
    doc = make_schedule(job_id=str(job["_id"]))
    return ApplicationSchedule.from_document(doc, job)


class TestCreate:
    def test_created(self, test_client, mock_scheduler_service, schedule):
        mock_scheduler_service.create_application_schedule.return_value = schedule

        response = test_client.post(
            f"{BASE}/schedules",
            json={
                "jobId": schedule.job_id,
                "scheduledAt": "2025-06-03T13:00:00Z",
                "timezone": "America/New_York",
                "notificationEmail": "user@example.com",
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["_id"] == schedule.id
        assert body["jobId"] == schedule.job_id
        assert body["status"] == "scheduled"
        assert body["notificationEmail"] == "user@example.com"
        assert body["job"]["title"] == "Backend Engineer"
        assert body["audit"][0]["event"] == "created"

        user_id, payload = mock_scheduler_service.create_application_schedule.call_args.args
        assert user_id == "test_user_123"
        assert payload.scheduled_at == "2025-06-03T13:00:00Z"
        assert payload.deadline_at is None

    def test_missing_job_id(self, test_client, mock_scheduler_service):
        response = test_client.post(f"{BASE}/schedules", json={"scheduledAt": "2025-06-03T13:00:00Z"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "ERR_1001"
        assert "jobId" in body["error"]
        mock_scheduler_service.create_application_schedule.assert_not_called()

    def test_service_validation_error(self, test_client, mock_scheduler_service):
        mock_scheduler_service.create_application_schedule.side_effect = ValidationError(
            "Invalid timezone: Mars/Olympus"
        )

        response = test_client.post(f"{BASE}/schedules", json={"jobId": "abc", "timezone": "Mars/Olympus"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid timezone: Mars/Olympus"
        assert body["type"] == "ValidationError"
        assert body["path"] == f"{BASE}/schedules"

    def test_duplicate(self, test_client, mock_scheduler_service):
        mock_scheduler_service.create_application_schedule.side_effect = DuplicateActiveScheduleError("abc")

        response = test_client.post(f"{BASE}/schedules", json={"jobId": "abc"})

        assert response.status_code == 409
        assert response.json()["code"] == "ERR_2003"
        assert "reschedule the existing item" in response.json()["error"]


class TestList:
    def test_list_with_filters(self, test_client, mock_scheduler_service, schedule):
        mock_scheduler_service.list_application_schedules.return_value = [schedule]

        response = test_client.get(
            f"{BASE}/schedules",
            params={"status": "scheduled", "from": "2025-06-01T00:00:00Z", "to": "2025-06-30T00:00:00Z"},
        )

        assert response.status_code == 200
        assert [item["_id"] for item in response.json()["items"]] == [schedule.id]
        mock_scheduler_service.list_application_schedules.assert_awaited_once_with(
            "test_user_123", "scheduled", "2025-06-01T00:00:00Z", "2025-06-30T00:00:00Z"
        )

    def test_list_without_filters(self, test_client, mock_scheduler_service):
        response = test_client.get(f"{BASE}/schedules")

        assert response.status_code == 200
        assert response.json() == {"items": []}
        mock_scheduler_service.list_application_schedules.assert_awaited_once_with(
            "test_user_123", None, None, None
        )


class TestTransitions:
    def test_reschedule(self, test_client, mock_scheduler_service, schedule):
        mock_scheduler_service.reschedule_application_schedule.return_value = schedule

        response = test_client.post(
            f"{BASE}/schedules/{schedule.id}/reschedule",
            json={"scheduledAt": "2025-06-04T13:00:00Z", "timezone": "Europe/Rome"},
        )

        assert response.status_code == 200
        _, schedule_id, payload = mock_scheduler_service.reschedule_application_schedule.call_args.args
        assert schedule_id == schedule.id
        assert payload.timezone == "Europe/Rome"

    def test_submit_now_with_note(self, test_client, mock_scheduler_service, schedule):
        mock_scheduler_service.submit_scheduled_application_now.return_value = schedule

        response = test_client.post(f"{BASE}/schedules/{schedule.id}/submit-now", json={"note": "done"})

        assert response.status_code == 200
        mock_scheduler_service.submit_scheduled_application_now.assert_awaited_once_with(
            "test_user_123", schedule.id, "done"
        )

    def test_submit_now_without_body(self, test_client, mock_scheduler_service, schedule):
        mock_scheduler_service.submit_scheduled_application_now.return_value = schedule

        response = test_client.post(f"{BASE}/schedules/{schedule.id}/submit-now")

        assert response.status_code == 200
        mock_scheduler_service.submit_scheduled_application_now.assert_awaited_once_with(
            "test_user_123", schedule.id, None
        )

    def test_submit_now_conflict(self, test_client, mock_scheduler_service):
        schedule_id = str(ObjectId())
        mock_scheduler_service.submit_scheduled_application_now.side_effect = InvalidStateTransitionError(
            schedule_id, "cancelled", "submit"
        )

        response = test_client.post(f"{BASE}/schedules/{schedule_id}/submit-now")

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "ERR_2002"
        assert "already cancelled" in body["error"]

    def test_cancel(self, test_client, mock_scheduler_service, make_schedule):
        doc = make_schedule(status="cancelled", cancelled_at=NOW)
        mock_scheduler_service.cancel_application_schedule.return_value = ApplicationSchedule.from_document(doc)

        response = test_client.delete(f"{BASE}/schedules/{doc['_id']}")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["job"] is None

    def test_cancel_unknown(self, test_client, mock_scheduler_service):
        mock_scheduler_service.cancel_application_schedule.side_effect = ScheduleNotFoundError("nope")

        response = test_client.delete(f"{BASE}/schedules/nope")

        assert response.status_code == 404
        assert response.json()["code"] == "ERR_2001"

    def test_database_failure_is_not_exposed(self, test_client, mock_collection, test_settings):
        mock_collection.find_one_and_update.side_effect = ServerSelectionTimeoutError(
            "mongo-prod-0.internal:27017: [Errno 111] Connection refused"
        )
        service = ApplicationSchedulerService(
            ScheduleStore(mock_collection), MagicMock(), MagicMock(), MagicMock(), test_settings
        )
        app.dependency_overrides[get_scheduler_service] = lambda: service

        response = test_client.delete(f"{BASE}/schedules/{ObjectId()}")

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "ERR_5001"
        assert body["error"] == "Database operation failed"
        assert "mongo-prod-0" not in response.text
        assert "Errno" not in response.text
        assert "schedule.cancel" not in response.text


class TestInsights:
    def test_stats(self, test_client, mock_scheduler_service):
        mock_scheduler_service.get_submission_time_stats.return_value = SubmissionTimeStats(
            total_applications=3,
            avg_days_early=1.5,
            best_time_window="Morning",
            response_success_rate=66.7,
            response_by_window={"Morning": WindowStats(total=3, successful=2, success_rate=66.7)},
        )

        response = test_client.get(f"{BASE}/stats/submission-time")

        assert response.status_code == 200
        body = response.json()
        assert body["totalApplications"] == 3
        assert body["bestTimeWindow"] == "Morning"
        assert body["responseByWindow"]["Morning"]["successRate"] == 66.7

    def test_best_practices(self, test_client, mock_scheduler_service):
        response = test_client.get(f"{BASE}/best-practices")
        assert response.json() == {"items": ["Submit early."]}

    def test_eligible_jobs(self, test_client, mock_scheduler_service, make_job):
        job = make_job(application_deadline=NOW + timedelta(days=5))
        mock_scheduler_service.list_eligible_jobs_for_scheduler.return_value = [EligibleJob.from_document(job)]

        response = test_client.get(f"{BASE}/eligible-jobs")

        assert response.status_code == 200
        item = response.json()["items"][0]
        assert item["_id"] == str(job["_id"])
        assert item["company"] == "Acme Corp"
        assert item["applicationDeadline"].startswith("2025-06-07T14:00:00")


class TestDefaultEmail:
    def test_get(self, test_client, mock_scheduler_service):
        mock_scheduler_service.get_default_notification_email.return_value = "user@example.com"

        response = test_client.get(f"{BASE}/default-email")

        assert response.json() == {"email": "user@example.com"}

    def test_set(self, test_client, mock_scheduler_service):
        mock_scheduler_service.set_default_notification_email.return_value = "user@example.com"

        response = test_client.put(f"{BASE}/default-email", json={"email": " User@Example.com "})

        assert response.json() == {"email": "user@example.com"}
        mock_scheduler_service.set_default_notification_email.assert_awaited_once_with(
            "test_user_123", " User@Example.com "
        )

    def test_clear(self, test_client, mock_scheduler_service):
        mock_scheduler_service.set_default_notification_email.return_value = None

        response = test_client.put(f"{BASE}/default-email", json={"email": None})

        assert response.status_code == 200
        assert response.json() == {"email": None}
