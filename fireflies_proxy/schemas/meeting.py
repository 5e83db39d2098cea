from datetime import datetime

from pydantic import BaseModel, Field

from fireflies_proxy.services.meeting_models import MeetingStatus


class MeetingScheduleRequest(BaseModel):
    title: str = Field(min_length=1)
    scheduled_date: datetime
    participants: list[str] | None = None
    # Zoom / Google Meet / Teams join URL. Can also be supplied later on launch.
    meeting_url: str | None = None
    invite_bot: bool = True


class MeetingLaunchRequest(BaseModel):
    meeting_id: str = Field(min_length=1)
    meeting_url: str | None = None


class MeetingResponse(BaseModel):
    id: str
    title: str
    participants: list[str] = Field(default_factory=list)
    scheduled_date: datetime
    meeting_url: str | None = None
    pending_url: str | None = None
    external_id: str | None = None
    status: MeetingStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None
