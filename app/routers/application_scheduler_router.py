"""
Application scheduler endpoints.

This module provides endpoints for:
- Creating, listing, rescheduling, submitting and cancelling schedules
- Submission timing statistics and best practices
- Jobs eligible for scheduling
- The user's default notification email
"""
from fastapi import APIRouter, Body, Depends, Query, status

from app.core.auth import get_current_user
from app.models.job import EligibleJobsResponse
from app.models.schedule import (
    ApplicationSchedule,
    BestPracticesResponse,
    DefaultEmailRequest,
    DefaultEmailResponse,
    RescheduleRequest,
    ScheduleCreateRequest,
    ScheduleListResponse,
    SubmitNowRequest,
)
from app.models.stats import SubmissionTimeStats
from app.services.application_scheduler_service import ApplicationSchedulerService
from app.services.dependencies import get_scheduler_service

router = APIRouter(prefix="/api/application-scheduler", tags=["application-scheduler"])


# -----------------------------------------------------------------------------
# Schedules
# -----------------------------------------------------------------------------

@router.post(
    "/schedules",
    summary="Schedule an application",
    description="Schedules the submission of one of the user's jobs at a chosen instant.",
    response_model=ApplicationSchedule,
    status_code=status.HTTP_201_CREATED,
)
async def create_schedule(
    payload: ScheduleCreateRequest,
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    return await service.create_application_schedule(current_user, payload)


@router.get(
    "/schedules",
    summary="List schedules",
    description=(
        "Lists the user's schedules ordered by scheduled time, optionally "
        "filtered by status and a scheduled-time range."
    ),
    response_model=ScheduleListResponse,
)
async def list_schedules(
    status_filter: str | None = Query(None, alias="status"),
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    items = await service.list_application_schedules(current_user, status_filter, date_from, date_to)
    return ScheduleListResponse(items=items)


@router.post(
    "/schedules/{schedule_id}/reschedule",
    summary="Reschedule",
    response_model=ApplicationSchedule,
)
async def reschedule(
    schedule_id: str,
    payload: RescheduleRequest,
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    return await service.reschedule_application_schedule(current_user, schedule_id, payload)


@router.post(
    "/schedules/{schedule_id}/submit-now",
    summary="Submit now",
    description=(
        "Submits immediately and marks the job as applied. A schedule whose "
        "deadline already passed is expired instead."
    ),
    response_model=ApplicationSchedule,
)
async def submit_now(
    schedule_id: str,
    payload: SubmitNowRequest | None = Body(None),
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    note = payload.note if payload else None
    return await service.submit_scheduled_application_now(current_user, schedule_id, note)


@router.delete(
    "/schedules/{schedule_id}",
    summary="Cancel a schedule",
    response_model=ApplicationSchedule,
)
async def cancel_schedule(
    schedule_id: str,
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    return await service.cancel_application_schedule(current_user, schedule_id)


# -----------------------------------------------------------------------------
# Insights
# -----------------------------------------------------------------------------

@router.get(
    "/stats/submission-time",
    summary="Submission timing statistics",
    response_model=SubmissionTimeStats,
)
async def submission_time_stats(
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    return await service.get_submission_time_stats(current_user)


@router.get(
    "/best-practices",
    summary="Submission timing best practices",
    response_model=BestPracticesResponse,
)
async def best_practices(
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    return BestPracticesResponse(items=service.get_best_practices())


@router.get(
    "/eligible-jobs",
    summary="Jobs that can be scheduled",
    response_model=EligibleJobsResponse,
)
async def eligible_jobs(
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    items = await service.list_eligible_jobs_for_scheduler(current_user)
    return EligibleJobsResponse(items=items)


# -----------------------------------------------------------------------------
# Default notification email
# -----------------------------------------------------------------------------

@router.get(
    "/default-email",
    summary="Get the default notification email",
    response_model=DefaultEmailResponse,
)
async def get_default_email(
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    return DefaultEmailResponse(email=await service.get_default_notification_email(current_user))


@router.put(
    "/default-email",
    summary="Set the default notification email",
    description="An empty email clears the default.",
    response_model=DefaultEmailResponse,
)
async def set_default_email(
    payload: DefaultEmailRequest,
    current_user: str = Depends(get_current_user),
    service: ApplicationSchedulerService = Depends(get_scheduler_service),
):
    email = await service.set_default_notification_email(current_user, payload.email)
    return DefaultEmailResponse(email=email)
