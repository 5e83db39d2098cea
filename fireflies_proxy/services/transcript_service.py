from __future__ import annotations

import logging

from fireflies_proxy.core.config import Settings
from fireflies_proxy.schemas.transcript import (
    TranscriptResponse,
    UpstreamTranscriptSummary,
    UpstreamTranscriptsResponse,
)
from fireflies_proxy.services.fireflies_api_client import (
    FirefliesApiClient,
    create_fireflies_client,
)
from fireflies_proxy.services.meeting_models import Meeting, Transcript, User
from fireflies_proxy.services.meeting_service import MeetingService
from fireflies_proxy.services.meeting_store import MeetingStore, create_meeting_store
from fireflies_proxy.services.transcript_builder import TranscriptBuilder
from fireflies_proxy.services.transcript_store import TranscriptStore, create_transcript_store

logger = logging.getLogger(__name__)

_URL_SCAN_LIMIT = 50


class TranscriptNotReadyError(Exception):
    """Fireflies has not produced the transcript yet; callers may poll again."""

    def __init__(self, meeting_id: str, detail: str) -> None:
        super().__init__(detail)
        self.meeting_id = meeting_id
        self.detail = detail


class TranscriptService:
    def __init__(
        self,
        settings: Settings,
        meeting_store: MeetingStore | None = None,
        transcript_store: TranscriptStore | None = None,
        fireflies_client: FirefliesApiClient | None = None,
    ) -> None:
        self.settings = settings
        self.meeting_store = meeting_store or create_meeting_store(settings)
        self.transcript_store = transcript_store or create_transcript_store(settings)
        self.fireflies_client = fireflies_client or create_fireflies_client(settings)
        self.meeting_service = MeetingService(
            settings,
            meeting_store=self.meeting_store,
            fireflies_client=self.fireflies_client,
        )
        self.builder = TranscriptBuilder(self.meeting_store, self.transcript_store)

    def get_transcript(self, user: User, meeting_id: str) -> TranscriptResponse:
        meeting = self.meeting_service.get_owned_meeting(user, meeting_id)
        transcript = self.transcript_store.find_by_meeting_id(meeting.id or "")
        if not transcript:
            logger.info("Transcript not stored yet meeting_id=%s, waiting for webhook", meeting.id)
            raise TranscriptNotReadyError(
                meeting_id=meeting_id,
                detail="Transcript not ready yet. Fireflies is still processing the meeting.",
            )
        return to_transcript_response(transcript)

    def refresh_transcript(self, user: User, meeting_id: str) -> TranscriptResponse:
        meeting = self.meeting_service.get_owned_meeting(user, meeting_id)
        existing = self.transcript_store.find_by_meeting_id(meeting.id or "")
        if existing:
            return to_transcript_response(existing)

        if not meeting.has_provider_id():
            meeting = self._bind_from_recent_transcripts(meeting)
        if not meeting.has_provider_id():
            raise TranscriptNotReadyError(
                meeting_id=meeting_id,
                detail=(
                    f"No Fireflies transcript ID on meeting {meeting_id}. "
                    "The bot may not have joined yet."
                ),
            )

        provider_transcript = self.fireflies_client.fetch_transcript(meeting.external_id or "")
        if provider_transcript is None:
            raise TranscriptNotReadyError(
                meeting_id=meeting_id,
                detail="Transcript not ready yet. Fireflies is still processing the meeting.",
            )

        transcript = self.builder.build(meeting, provider_transcript)
        return to_transcript_response(transcript)

    def list_upstream(self, limit: int = 20, offset: int = 0) -> UpstreamTranscriptsResponse:
        items = self.fireflies_client.list_transcripts(limit=limit, offset=offset)
        return UpstreamTranscriptsResponse(
            items=[UpstreamTranscriptSummary(**item.to_dict()) for item in items],
            limit=limit,
            offset=offset,
        )

    def _bind_from_recent_transcripts(self, meeting: Meeting) -> Meeting:
        meeting_url = meeting.pending_url or meeting.meeting_url or meeting.external_id
        if not meeting_url:
            return meeting

        for item in self.fireflies_client.list_transcripts(limit=_URL_SCAN_LIMIT):
            if item.meeting_link != meeting_url:
                continue
            logger.info(
                "Bound meeting from recent transcripts meeting_id=%s external_id=%s",
                meeting.id,
                item.id,
            )
            meeting.external_id = item.id
            meeting.pending_url = None
            return self.meeting_store.save(meeting)
        return meeting


def to_transcript_response(transcript: Transcript) -> TranscriptResponse:
    return TranscriptResponse(
        id=transcript.id or "",
        meeting_id=transcript.meeting_id,
        external_transcript_id=transcript.external_transcript_id,
        content=transcript.content,
        summary=transcript.summary,
        action_items=transcript.action_items,
        speaker_labels=transcript.speaker_labels,
        processed_at=transcript.processed_at,
        created_at=transcript.created_at,
    )
