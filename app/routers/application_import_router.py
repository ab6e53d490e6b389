"""
Application import endpoints.

This module provides endpoints for:
- Pairing the browser extension with a user account
- Importing applications observed by the extension or forwarded by email
- Platform information recorded for a job

Import routes accept extension tokens in addition to the normal
credentials. ``/pair/complete`` is the only unauthenticated route.
"""
from fastapi import APIRouter, Body, Depends

from app.core.auth import get_current_user, get_import_user
from app.models.imports import (
    BulkImportRequest,
    BulkImportResponse,
    ImportEventPayload,
    ImportResult,
    ImportSourceType,
    PlatformInfoResponse,
)
from app.models.pairing import (
    PairingCompleteRequest,
    PairingCompleteResponse,
    PairingStartRequest,
    PairingStartResponse,
    PairingStatusResponse,
)
from app.services.application_import_service import ApplicationImportService
from app.services.dependencies import get_import_service, get_pairing_service
from app.services.pairing_service import PairingService

router = APIRouter(prefix="/api/application-import", tags=["application-import"])


# -----------------------------------------------------------------------------
# Extension pairing
# -----------------------------------------------------------------------------

@router.post(
    "/pair/start",
    summary="Start extension pairing",
    description="Returns a short-lived 6-digit code the user enters in the extension.",
    response_model=PairingStartResponse,
)
async def start_pairing(
    payload: PairingStartRequest | None = Body(None),
    current_user: str = Depends(get_current_user),
    service: PairingService = Depends(get_pairing_service),
):
    device_name = payload.device_name if payload else None
    return await service.start_extension_pairing(current_user, device_name)


@router.get(
    "/pair/status/{pairing_id}",
    summary="Pairing status",
    description="Lets the web app notice when the extension completed pairing.",
    response_model=PairingStatusResponse,
)
async def pairing_status(
    pairing_id: str,
    current_user: str = Depends(get_current_user),
    service: PairingService = Depends(get_pairing_service),
):
    return await service.get_extension_pairing_status(current_user, pairing_id)


@router.post(
    "/pair/complete",
    summary="Complete extension pairing",
    description="Exchanges a pairing code for an extension token. Public.",
    response_model=PairingCompleteResponse,
)
async def complete_pairing(
    payload: PairingCompleteRequest,
    service: PairingService = Depends(get_pairing_service),
):
    return await service.complete_extension_pairing(payload.pairing_id, payload.code)


# -----------------------------------------------------------------------------
# Import
# -----------------------------------------------------------------------------

@router.post("/import", summary="Import an application", response_model=ImportResult)
async def import_event(
    payload: ImportEventPayload,
    current_user: str = Depends(get_import_user),
    service: ApplicationImportService = Depends(get_import_service),
):
    return await service.import_application_event(current_user, payload)


@router.post("/email", summary="Import from a forwarded email", response_model=ImportResult)
async def import_email(
    payload: ImportEventPayload,
    current_user: str = Depends(get_import_user),
    service: ApplicationImportService = Depends(get_import_service),
):
    return await service.import_application_event(
        current_user, payload, default_source_type=ImportSourceType.EMAIL_FORWARD.value
    )


@router.post("/extension", summary="Import from the browser extension", response_model=ImportResult)
async def import_extension(
    payload: ImportEventPayload,
    current_user: str = Depends(get_import_user),
    service: ApplicationImportService = Depends(get_import_service),
):
    return await service.import_application_event(
        current_user, payload, default_source_type=ImportSourceType.BROWSER_EXTENSION.value
    )


@router.post(
    "/bulk",
    summary="Import several applications",
    description="Each event is imported on its own; failures are reported per event.",
    response_model=BulkImportResponse,
)
async def import_bulk(
    payload: BulkImportRequest,
    current_user: str = Depends(get_import_user),
    service: ApplicationImportService = Depends(get_import_service),
):
    return await service.import_application_events_bulk(current_user, payload.events)


@router.get(
    "/platforms/{job_id}",
    summary="Platforms a job was applied through",
    response_model=PlatformInfoResponse,
)
async def platform_info(
    job_id: str,
    current_user: str = Depends(get_import_user),
    service: ApplicationImportService = Depends(get_import_service),
):
    return await service.get_platform_info_for_job(current_user, job_id)
