from fastapi import APIRouter, Depends, status

from fireflies_proxy.core.config import get_settings
from fireflies_proxy.schemas.meeting import (
    MeetingLaunchRequest,
    MeetingResponse,
    MeetingScheduleRequest,
)
from fireflies_proxy.schemas.transcript import TranscriptPendingResponse, TranscriptResponse
from fireflies_proxy.services.auth_service import require_current_user
from fireflies_proxy.services.meeting_models import User
from fireflies_proxy.services.meeting_service import MeetingService
from fireflies_proxy.services.transcript_service import TranscriptService

router = APIRouter(prefix="/meetings", tags=["meetings"])

_TRANSCRIPT_RESPONSES = {
    status.HTTP_202_ACCEPTED: {"model": TranscriptPendingResponse},
}


@router.post(
    "/schedule",
    response_model=MeetingResponse,
    status_code=status.HTTP_201_CREATED,
)
def schedule_meeting(
    payload: MeetingScheduleRequest,
    current_user: User = Depends(require_current_user),
) -> MeetingResponse:
    service = MeetingService(get_settings())
    return service.schedule_meeting(current_user, payload)


@router.post("/launch", response_model=MeetingResponse)
def launch_meeting(
    payload: MeetingLaunchRequest,
    current_user: User = Depends(require_current_user),
) -> MeetingResponse:
    service = MeetingService(get_settings())
    return service.launch_meeting(current_user, payload)


@router.get("", response_model=list[MeetingResponse])
def list_meetings(current_user: User = Depends(require_current_user)) -> list[MeetingResponse]:
    service = MeetingService(get_settings())
    return service.list_meetings(current_user)


@router.get("/{meeting_id}", response_model=MeetingResponse)
def get_meeting(
    meeting_id: str,
    current_user: User = Depends(require_current_user),
) -> MeetingResponse:
    service = MeetingService(get_settings())
    return service.get_meeting(current_user, meeting_id)


@router.get(
    "/{meeting_id}/transcript",
    response_model=TranscriptResponse,
    responses=_TRANSCRIPT_RESPONSES,
)
def get_meeting_transcript(
    meeting_id: str,
    current_user: User = Depends(require_current_user),
) -> TranscriptResponse:
    service = TranscriptService(get_settings())
    return service.get_transcript(current_user, meeting_id)


@router.post(
    "/{meeting_id}/transcript/refresh",
    response_model=TranscriptResponse,
    responses=_TRANSCRIPT_RESPONSES,
)
def refresh_meeting_transcript(
    meeting_id: str,
    current_user: User = Depends(require_current_user),
) -> TranscriptResponse:
    service = TranscriptService(get_settings())
    return service.refresh_transcript(current_user, meeting_id)
