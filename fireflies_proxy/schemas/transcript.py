from datetime import datetime

from pydantic import BaseModel, Field


class TranscriptResponse(BaseModel):
    id: str
    meeting_id: str
    external_transcript_id: str | None = None
    content: str
    summary: str | None = None
    action_items: str | None = None
    speaker_labels: str
    processed_at: datetime | None = None
    created_at: datetime | None = None


class TranscriptPendingResponse(BaseModel):
    status: str = "processing"
    meeting_id: str
    detail: str


class UpstreamTranscriptSummary(BaseModel):
    id: str
    title: str | None = None
    date: float | None = None
    duration: float | None = None
    meeting_link: str | None = None
    organizer_email: str | None = None
    participants: list[str] = Field(default_factory=list)


class UpstreamTranscriptsResponse(BaseModel):
    items: list[UpstreamTranscriptSummary]
    limit: int
    offset: int
