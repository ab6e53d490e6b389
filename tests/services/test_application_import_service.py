"""Tests for importing applications made outside the scheduler."""
import asyncio
import hashlib
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import DatabaseOperationError, InvalidStateTransitionError, ValidationError
from app.models.imports import ImportEventPayload
from app.services.application_import_service import ApplicationImportService, event_fingerprint
from app.services.import_event_store import ImportEventStore

NOW = datetime(2025, 6, 2, 14, 0, tzinfo=timezone.utc)
USER_ID = "test_user_123"


@pytest.fixture(autouse=True)
def frozen_now():
    with patch("app.services.application_import_service.utc_now", return_value=NOW):
        yield


@pytest.fixture
def event_store():
    store = MagicMock()
    for name in ("find_by_message_or_external_id", "find_by_job_url_window", "find_same_day", "find_by_fingerprint"):
        setattr(store, name, AsyncMock(return_value=None))
    store.insert = AsyncMock(side_effect=lambda doc: {**doc, "_id": ObjectId()})
    store.attach = AsyncMock()
    store.release = AsyncMock()
    store.list_for_job = AsyncMock(return_value=[])
    return store


@pytest.fixture
def job_store():
    store = MagicMock()
    store.list_for_matching = AsyncMock(return_value=[])
    store.advance_to_applied = AsyncMock(return_value=True)
    store.set_posting_url_if_empty = AsyncMock()
    store.create_applied = AsyncMock(side_effect=lambda user_id, **kwargs: {"_id": ObjectId(), **kwargs})
    return store


@pytest.fixture
def schedule_store():
    store = MagicMock()
    store.find_for_job = AsyncMock(return_value=None)
    store.mark_submitted = AsyncMock()
    store.mark_imported = AsyncMock()
    store.create_submitted = AsyncMock(side_effect=lambda *args, **kwargs: {"_id": ObjectId()})
    return store


@pytest.fixture
def service(event_store, job_store, schedule_store, test_settings):
    return ApplicationImportService(event_store, job_store, schedule_store, test_settings)


def payload(**fields) -> ImportEventPayload:
    data = {
        "platform": "linkedin",
        "jobTitle": "Backend Engineer",
        "company": "Acme Corp",
        "appliedAt": "2025-06-02T13:30:00Z",
        "timezone": "America/New_York",
    }
    data.update(fields)
    return ImportEventPayload.model_validate(data)


def test_event_fingerprint():
    expected = hashlib.sha1(b"u1|acme corp|backend engineer|2025-06-02").hexdigest()
    assert event_fingerprint("u1", "acme corp", "backend engineer", "2025-06-02") == expected


class TestImportNewApplication:
    @pytest.mark.asyncio
    async def test_creates_job_and_submitted_schedule(self, service, job_store, schedule_store, event_store):
        result = await service.import_application_event(
            USER_ID, payload(jobUrl="https://jobs.example.com/1"), default_source_type="browser_extension"
        )

        assert result.deduped is False
        assert result.created_job is True
        assert result.merged_into_existing_job is False
        assert result.created_schedule is True

        job_kwargs = job_store.create_applied.call_args.kwargs
        assert job_kwargs["title"] == "Backend Engineer"
        assert job_kwargs["job_posting_url"] == "https://jobs.example.com/1"
        assert job_kwargs["note"] == "Imported (linkedin)"

        schedule_kwargs = schedule_store.create_submitted.call_args.kwargs
        assert schedule_kwargs["submitted_at"] == datetime(2025, 6, 2, 13, 30, tzinfo=timezone.utc)
        assert schedule_kwargs["source"] == "import"
        assert schedule_kwargs["meta"] == {"source": "uc125", "platform": "linkedin"}

        event = event_store.insert.call_args.args[0]
        assert event["source_type"] == "browser_extension"
        assert event["applied_day"] == "2025-06-02"
        assert event["company_key"] == "acme corp"
        assert event["title_key"] == "backend engineer"
        assert event["event_fingerprint"] == event_fingerprint(USER_ID, "acme corp", "backend engineer", "2025-06-02")
        assert event["job_id"] is None
        assert event["schedule_id"] is None
        event_store.attach.assert_awaited_once()
        event_id, job_id, schedule_id = event_store.attach.call_args.args
        assert (str(event_id), job_id, schedule_id) == (result.event_id, result.job_id, result.schedule_id)

    @pytest.mark.asyncio
    async def test_email_forward_audit_source(self, service, schedule_store):
        await service.import_application_event(USER_ID, payload(), default_source_type="email_forward")
        assert schedule_store.create_submitted.call_args.kwargs["meta"]["source"] == "email_forward"

    @pytest.mark.asyncio
    async def test_explicit_source_type_wins(self, service, event_store):
        await service.import_application_event(
            USER_ID, payload(sourceType="email_forward"), default_source_type="browser_extension"
        )
        assert event_store.insert.call_args.args[0]["source_type"] == "email_forward"

    @pytest.mark.asyncio
    async def test_applied_at_defaults_to_now(self, service, event_store):
        await service.import_application_event(USER_ID, payload(appliedAt=None))
        assert event_store.insert.call_args.args[0]["applied_at"] == NOW

    @pytest.mark.asyncio
    async def test_details_from_email(self, service, job_store):
        result = await service.import_application_event(
            USER_ID,
            payload(
                platform=None,
                jobTitle=None,
                company=None,
                emailSubject="You applied to Data Analyst at Globex",
                emailFrom="noreply@glassdoor.com",
            ),
        )
        assert result.created_job is True
        kwargs = job_store.create_applied.call_args.kwargs
        assert (kwargs["title"], kwargs["company"]) == ("Data Analyst", "Globex")
        assert kwargs["note"] == "Imported (glassdoor)"

    @pytest.mark.asyncio
    async def test_missing_title_and_company(self, service, job_store):
        with pytest.raises(ValidationError) as exc_info:
            await service.import_application_event(USER_ID, payload(jobTitle=None, company=" "))
        assert exc_info.value.message.startswith("Missing required fields: jobTitle and company")
        job_store.create_applied.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_applied_at(self, service):
        with pytest.raises(ValidationError):
            await service.import_application_event(USER_ID, payload(appliedAt="yesterday"))

    @pytest.mark.asyncio
    async def test_unknown_timezone(self, service):
        with pytest.raises(ValidationError):
            await service.import_application_event(USER_ID, payload(timezone="Atlantis/Capital"))


class TestMerge:
    @pytest.mark.asyncio
    async def test_merges_into_matching_job(self, service, job_store):
        existing = {"_id": ObjectId(), "title": "backend  ENGINEER", "company": "ACME corp."}
        job_store.list_for_matching.return_value = [{"_id": ObjectId(), "title": "Other", "company": "Acme"}, existing]

        result = await service.import_application_event(USER_ID, payload(jobUrl="https://x.test/1"))

        assert result.created_job is False
        assert result.merged_into_existing_job is True
        assert result.job_id == str(existing["_id"])
        job_store.advance_to_applied.assert_awaited_once()
        job_store.set_posting_url_if_empty.assert_awaited_once_with(
            USER_ID, str(existing["_id"]), "https://x.test/1"
        )
        job_store.create_applied.assert_not_called()

    @pytest.mark.asyncio
    async def test_active_schedule_is_submitted(self, service, job_store, schedule_store, make_schedule):
        job = {"_id": ObjectId(), "title": "Backend Engineer", "company": "Acme Corp"}
        job_store.list_for_matching.return_value = [job]
        active = make_schedule(job_id=str(job["_id"]))
        schedule_store.find_for_job.side_effect = [None, active]
        schedule_store.mark_imported.return_value = {**active, "status": "submitted"}

        result = await service.import_application_event(USER_ID, payload(), default_source_type="email_forward")

        assert result.schedule_id == str(active["_id"])
        assert result.created_schedule is False
        args, kwargs = schedule_store.mark_imported.call_args
        assert args == (USER_ID, active["_id"], datetime(2025, 6, 2, 13, 30, tzinfo=timezone.utc), NOW)
        assert kwargs == {"source": "import", "meta": {"source": "email_forward", "platform": "linkedin"}}
        schedule_store.mark_submitted.assert_not_called()
        schedule_store.create_submitted.assert_not_called()

    @pytest.mark.asyncio
    async def test_active_schedule_tagged_with_extension_channel(
        self, service, job_store, schedule_store, make_schedule
    ):
        job = {"_id": ObjectId(), "title": "Backend Engineer", "company": "Acme Corp"}
        job_store.list_for_matching.return_value = [job]
        active = make_schedule(job_id=str(job["_id"]))
        schedule_store.find_for_job.side_effect = [None, active]
        schedule_store.mark_imported.return_value = {**active, "status": "submitted"}

        await service.import_application_event(USER_ID, payload(), default_source_type="browser_extension")

        assert schedule_store.mark_imported.call_args.kwargs["meta"] == {"source": "uc125", "platform": "linkedin"}

    @pytest.mark.asyncio
    async def test_schedule_submitted_concurrently(self, service, job_store, schedule_store, make_schedule):
        job = {"_id": ObjectId(), "title": "Backend Engineer", "company": "Acme Corp"}
        job_store.list_for_matching.return_value = [job]
        active = make_schedule(job_id=str(job["_id"]))
        submitted = {**active, "status": "submitted"}
        schedule_store.find_for_job.side_effect = [None, active, submitted]
        schedule_store.mark_imported.side_effect = InvalidStateTransitionError(
            str(active["_id"]), "submitted", "submit"
        )

        result = await service.import_application_event(USER_ID, payload())

        assert result.schedule_id == str(active["_id"])
        schedule_store.create_submitted.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_submitted_schedule_is_reused(self, service, schedule_store, make_schedule):
        submitted = make_schedule(status="submitted")
        schedule_store.find_for_job.return_value = submitted

        result = await service.import_application_event(USER_ID, payload())

        assert result.schedule_id == str(submitted["_id"])
        schedule_store.mark_imported.assert_not_called()
        schedule_store.create_submitted.assert_not_called()


class TestDedup:
    EXISTING = {"_id": ObjectId(), "job_id": "job-1", "schedule_id": "sched-1"}

    @pytest.mark.asyncio
    async def test_message_id(self, service, event_store, job_store):
        event_store.find_by_message_or_external_id.return_value = self.EXISTING

        result = await service.import_application_event(USER_ID, payload(messageId="<abc@mail>"))

        assert result.deduped is True
        assert result.reason == "message_id"
        assert result.event_id == str(self.EXISTING["_id"])
        assert result.job_id == "job-1"
        job_store.list_for_matching.assert_not_called()
        event_store.insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_job_url_window(self, service, event_store, test_settings):
        event_store.find_by_job_url_window.return_value = self.EXISTING

        result = await service.import_application_event(USER_ID, payload(jobUrl="https://jobs.example.com/1"))

        assert result.reason == "job_url_window"
        args = event_store.find_by_job_url_window.call_args.args
        assert args[1] == "https://jobs.example.com/1"
        assert args[3] == timedelta(minutes=test_settings.import_url_dedup_window_minutes)

    @pytest.mark.asyncio
    async def test_job_url_not_checked_when_message_id_present(self, service, event_store):
        await service.import_application_event(
            USER_ID, payload(messageId="<new@mail>", jobUrl="https://jobs.example.com/1")
        )
        event_store.find_by_job_url_window.assert_not_called()

    @pytest.mark.asyncio
    async def test_same_day_company_and_title(self, service, event_store):
        event_store.find_same_day.return_value = self.EXISTING

        result = await service.import_application_event(
            USER_ID, payload(company="ACME CORP", jobTitle="Backend engineer", appliedAt="2025-06-02T23:59:00Z")
        )

        assert result.reason == "same_day_job"
        event_store.find_same_day.assert_awaited_once_with(USER_ID, "acme corp", "backend engineer", "2025-06-02")

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_insert(self, service, event_store, job_store, schedule_store):
        event_store.insert.side_effect = None
        event_store.insert.return_value = None
        event_store.find_by_fingerprint.return_value = self.EXISTING

        result = await service.import_application_event(USER_ID, payload())

        assert result.deduped is True
        assert result.reason == "same_day_job"
        assert result.event_id == str(self.EXISTING["_id"])
        assert result.job_id == "job-1"
        job_store.list_for_matching.assert_not_called()
        job_store.create_applied.assert_not_awaited()
        schedule_store.create_submitted.assert_not_awaited()
        event_store.attach.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_import_releases_claim(self, service, event_store, schedule_store):
        schedule_store.create_submitted.side_effect = DatabaseOperationError("schedule.create_submitted", "down")

        with pytest.raises(DatabaseOperationError):
            await service.import_application_event(USER_ID, payload())

        claimed = event_store.insert.call_args.args[0]
        released_id = event_store.release.call_args.args[0]
        assert claimed["event_fingerprint"] == event_fingerprint(
            USER_ID, "acme corp", "backend engineer", "2025-06-02"
        )
        assert released_id is not None
        event_store.attach.assert_not_awaited()


class InMemoryImportEventStore:
    """Same contract as ImportEventStore; lookups yield to the loop so concurrent imports interleave."""

    def __init__(self):
        self.docs: list[dict] = []

    async def _first(self, predicate):
        await asyncio.sleep(0)
        return next((d for d in self.docs if predicate(d)), None)

    async def find_by_message_or_external_id(self, user_id, message_id, external_id):
        return await self._first(
            lambda d: d["user_id"] == user_id
            and ((message_id and d["message_id"] == message_id) or (external_id and d["external_id"] == external_id))
        )

    async def find_by_job_url_window(self, user_id, job_url, applied_at, window):
        return await self._first(
            lambda d: d["user_id"] == user_id and d["job_url"] == job_url
            and abs(d["applied_at"] - applied_at) <= window
        )

    async def find_same_day(self, user_id, company_key, title_key, applied_day):
        return await self._first(
            lambda d: (d["user_id"], d["company_key"], d["title_key"], d["applied_day"])
            == (user_id, company_key, title_key, applied_day)
        )

    async def find_by_fingerprint(self, user_id, fingerprint):
        return await self._first(lambda d: d["user_id"] == user_id and d["event_fingerprint"] == fingerprint)

    async def insert(self, doc):
        if any(
            d["user_id"] == doc["user_id"] and d["event_fingerprint"] == doc["event_fingerprint"]
            for d in self.docs
        ):
            return None
        doc = {**doc, "_id": ObjectId()}
        self.docs.append(doc)
        return doc

    async def attach(self, event_id, job_id, schedule_id):
        for doc in self.docs:
            if doc["_id"] == event_id:
                doc.update(job_id=job_id, schedule_id=schedule_id)

    async def release(self, event_id):
        self.docs = [d for d in self.docs if d["_id"] != event_id]


class InMemoryJobStore:

    def __init__(self):
        self.jobs: list[dict] = []

    async def list_for_matching(self, user_id):
        return [j for j in self.jobs if j["user_id"] == user_id]

    async def advance_to_applied(self, user_id, job_id, now, note):
        return True

    async def set_posting_url_if_empty(self, user_id, job_id, url):
        return None

    async def create_applied(self, user_id, **fields):
        job = {"_id": ObjectId(), "user_id": user_id, **fields}
        self.jobs.append(job)
        return job


class InMemoryScheduleStore:

    def __init__(self):
        self.schedules: list[dict] = []

    async def find_for_job(self, user_id, job_id, status=None):
        return next(
            (
                s for s in self.schedules
                if s["user_id"] == user_id and s["job_id"] == job_id and (status is None or s["status"] == status)
            ),
            None,
        )

    async def create_submitted(self, user_id, job_id, submitted_at, timezone, source, meta, now):
        schedule = {
            "_id": ObjectId(),
            "user_id": user_id,
            "job_id": job_id,
            "status": "submitted",
            "submitted_at": submitted_at,
            "submission_source": source,
            "audit": [{"event": "imported_submitted", "meta": {"source": source, **meta}}],
        }
        self.schedules.append(schedule)
        return schedule


class TestReplay:
    @pytest.fixture
    def stores(self):
        return InMemoryImportEventStore(), InMemoryJobStore(), InMemoryScheduleStore()

    @pytest.fixture
    def replay_service(self, stores, test_settings):
        return ApplicationImportService(*stores, test_settings)

    @pytest.mark.asyncio
    async def test_same_message_id_twice(self, replay_service, stores):
        events, jobs, schedules = stores
        event = payload(messageId="<confirmation-1@mail.linkedin.com>")

        first = await replay_service.import_application_event(USER_ID, event, "email_forward")
        second = await replay_service.import_application_event(USER_ID, event, "email_forward")

        assert first.deduped is False
        assert second.deduped is True
        assert second.reason == "message_id"
        assert (second.job_id, second.schedule_id) == (first.job_id, first.schedule_id)
        assert len(jobs.jobs) == 1
        assert len(schedules.schedules) == 1
        assert len(events.docs) == 1
        assert schedules.schedules[0]["audit"][0]["meta"]["source"] == "email_forward"

    @pytest.mark.asyncio
    async def test_concurrent_replays(self, replay_service, stores):
        events, jobs, schedules = stores
        event = payload(messageId="<confirmation-2@mail.linkedin.com>")

        results = await asyncio.gather(
            *(replay_service.import_application_event(USER_ID, event, "browser_extension") for _ in range(3))
        )

        assert sorted(r.deduped for r in results) == [False, True, True]
        assert len(jobs.jobs) == 1
        assert len(schedules.schedules) == 1
        assert len(events.docs) == 1
        assert events.docs[0]["job_id"] == str(jobs.jobs[0]["_id"])


class TestBulk:
    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, service, job_store):
        job_store.create_applied.side_effect = [
            {"_id": ObjectId()},
            RuntimeError("unexpected"),
        ]
        events = [
            {"jobTitle": "Backend Engineer", "company": "Acme Corp"},
            {"jobTitle": "", "company": ""},
            {"jobTitle": 123, "company": "Acme Corp"},
            {"jobTitle": "Designer", "company": "Initech"},
        ]

        response = await service.import_application_events_bulk(USER_ID, events, "browser_extension")

        results = response.results
        assert len(results) == 4
        assert results[0].ok is True and results[0].created_job is True
        assert results[1].ok is False
        assert results[1].error.startswith("Missing required fields")
        assert results[2].ok is False
        assert results[2].error == "Invalid event: 1 error(s)"
        assert results[3].ok is False
        assert results[3].error == "Import failed"


class TestPlatformInfo:
    @pytest.mark.asyncio
    async def test_no_events(self, service):
        response = await service.get_platform_info_for_job(USER_ID, "job-1")
        assert response.job_id == "job-1"
        assert response.platform_info is None

    @pytest.mark.asyncio
    async def test_aggregates_observations(self, service, event_store):
        event_store.list_for_job.return_value = [
            {"platform": "linkedin", "source_type": "browser_extension", "job_url": "https://a", "applied_at": NOW,
             "created_at": NOW},
            {"platform": "linkedin", "source_type": "email_forward", "job_url": None, "message_id": "<m1>",
             "raw": {"email_subject": "Your application was sent to Acme", "email_from": "x@linkedin.com"},
             "applied_at": NOW, "created_at": NOW},
            {"platform": None, "source_type": None, "job_url": "https://b", "applied_at": NOW, "created_at": NOW},
        ]

        response = await service.get_platform_info_for_job(USER_ID, "job-1")

        info = response.platform_info
        assert info.platforms == ["linkedin", "unknown"]
        assert info.source_types == ["browser_extension", "email_forward", "unknown"]
        assert info.job_urls == ["https://a", "https://b"]
        assert info.observations[1].email_subject == "Your application was sent to Acme"
        assert len(info.observations) == 3


class TestImportEventStore:
    @pytest.mark.asyncio
    async def test_duplicate_fingerprint_returns_none(self, mock_collection):
        mock_collection.insert_one.side_effect = DuplicateKeyError("dup")
        store = ImportEventStore(mock_collection)
        assert await store.insert({"user_id": USER_ID, "event_fingerprint": "f"}) is None

    @pytest.mark.asyncio
    async def test_no_ids_no_lookup(self, mock_collection):
        store = ImportEventStore(mock_collection)
        assert await store.find_by_message_or_external_id(USER_ID, None, None) is None
        mock_collection.find_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_job_url_window_bounds(self, mock_collection):
        store = ImportEventStore(mock_collection)
        await store.find_by_job_url_window(USER_ID, "https://a", NOW, timedelta(minutes=60))
        query = mock_collection.find_one.call_args.args[0]
        assert query["applied_at"] == {"$gte": NOW - timedelta(hours=1), "$lte": NOW + timedelta(hours=1)}

    @pytest.mark.asyncio
    async def test_attach_sets_resolved_ids(self, mock_collection):
        event_id = ObjectId()
        store = ImportEventStore(mock_collection)
        await store.attach(event_id, "job-1", "sched-1")
        mock_collection.update_one.assert_awaited_once_with(
            {"_id": event_id}, {"$set": {"job_id": "job-1", "schedule_id": "sched-1"}}
        )

    @pytest.mark.asyncio
    async def test_release_deletes_claim(self, mock_collection):
        event_id = ObjectId()
        store = ImportEventStore(mock_collection)
        await store.release(event_id)
        mock_collection.delete_one.assert_awaited_once_with({"_id": event_id})
