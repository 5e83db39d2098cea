from __future__ import annotations

import logging

from fastapi import HTTPException, status

from fireflies_proxy.core.config import Settings
from fireflies_proxy.schemas.meeting import (
    MeetingLaunchRequest,
    MeetingResponse,
    MeetingScheduleRequest,
)
from fireflies_proxy.services.fireflies_api_client import (
    FirefliesApiClient,
    FirefliesApiError,
    FirefliesConfigurationError,
    create_fireflies_client,
)
from fireflies_proxy.services.meeting_models import Meeting, MeetingStatus, User
from fireflies_proxy.services.meeting_store import MeetingStore, create_meeting_store

logger = logging.getLogger(__name__)


class MeetingService:
    def __init__(
        self,
        settings: Settings,
        meeting_store: MeetingStore | None = None,
        fireflies_client: FirefliesApiClient | None = None,
    ) -> None:
        self.settings = settings
        self.meeting_store = meeting_store or create_meeting_store(settings)
        self.fireflies_client = fireflies_client or create_fireflies_client(settings)

    def schedule_meeting(self, user: User, payload: MeetingScheduleRequest) -> MeetingResponse:
        meeting = Meeting(
            user_email=user.email,
            title=payload.title.strip(),
            scheduled_date=payload.scheduled_date,
            participants=[
                participant.strip()
                for participant in payload.participants or []
                if participant.strip()
            ],
            meeting_url=_clean_url(payload.meeting_url),
            status=MeetingStatus.scheduled,
        )
        meeting = self.meeting_store.save(meeting)
        logger.info("Meeting scheduled meeting_id=%s user=%s", meeting.id, user.email)

        if payload.invite_bot and meeting.meeting_url:
            meeting = self.invite_bot_safely(meeting)

        return to_meeting_response(meeting)

    def launch_meeting(self, user: User, payload: MeetingLaunchRequest) -> MeetingResponse:
        meeting = self.get_owned_meeting(user, payload.meeting_id)

        if meeting.status == MeetingStatus.in_progress:
            logger.info("Meeting already launched meeting_id=%s", meeting.id)
            return to_meeting_response(meeting)

        meeting_url = _clean_url(payload.meeting_url)
        if meeting_url:
            meeting.meeting_url = meeting_url

        if not meeting.meeting_url:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No meeting URL available. Provide meeting_url.",
            )

        meeting.status = MeetingStatus.in_progress
        meeting = self.meeting_store.save(meeting)
        logger.info("Meeting launched meeting_id=%s user=%s", meeting.id, user.email)

        meeting = self.invite_bot_safely(meeting)
        return to_meeting_response(meeting)

    def list_meetings(self, user: User) -> list[MeetingResponse]:
        return [to_meeting_response(meeting) for meeting in self.meeting_store.list_for_user(user.email)]

    def get_meeting(self, user: User, meeting_id: str) -> MeetingResponse:
        return to_meeting_response(self.get_owned_meeting(user, meeting_id))

    def get_owned_meeting(self, user: User, meeting_id: str) -> Meeting:
        meeting = self.meeting_store.find_by_id(meeting_id)
        if not meeting:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Meeting not found: {meeting_id}",
            )
        if meeting.user_email != user.email:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Unauthorized: meeting belongs to another user",
            )
        return meeting

    def invite_bot_safely(self, meeting: Meeting) -> Meeting:
        """Invites the Fireflies bot and remembers the join URL as the lookup key.

        ``addToLiveMeeting`` only answers ``{success, message}``; the provider's
        meeting id arrives later with the webhook, which replaces ``pending_url``.
        """
        if meeting.is_bot_invited():
            logger.info("Bot already invited meeting_id=%s", meeting.id)
            return meeting
        if not meeting.meeting_url:
            return meeting

        try:
            result = self.fireflies_client.invite_bot(meeting.meeting_url, meeting.title)
        except (FirefliesApiError, FirefliesConfigurationError) as exc:
            logger.error("Bot invite failed meeting_id=%s error=%s", meeting.id, exc)
            return meeting

        if not result.success:
            logger.warning(
                "Bot invite returned success=false meeting_id=%s message=%s",
                meeting.id,
                result.message,
            )
            return meeting

        meeting.pending_url = meeting.meeting_url
        meeting = self.meeting_store.save(meeting)
        logger.info("Fireflies bot invited meeting_id=%s message=%s", meeting.id, result.message)
        return meeting


def to_meeting_response(meeting: Meeting) -> MeetingResponse:
    return MeetingResponse(
        id=meeting.id or "",
        title=meeting.title,
        participants=list(meeting.participants),
        scheduled_date=meeting.scheduled_date,
        meeting_url=meeting.meeting_url,
        pending_url=meeting.pending_url,
        external_id=meeting.external_id,
        status=meeting.status,
        created_at=meeting.created_at,
        updated_at=meeting.updated_at,
    )


def _clean_url(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None
