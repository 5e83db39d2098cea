from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class WebhookOutcome(StrEnum):
    persisted = "persisted"
    already_processed = "already_processed"
    rejected = "rejected"
    ignored = "ignored"
    deferred = "deferred"


class WebhookResponse(BaseModel):
    status: WebhookOutcome
    event_type: str | None = None
    meeting_id: str | None = None
    local_meeting_id: str | None = None
    transcript_id: str | None = None
    detail: str | None = None
    received_at: datetime
