from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class MeetingStatus(StrEnum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


@dataclass
class Meeting:
    user_email: str
    title: str
    scheduled_date: datetime
    id: str | None = None
    participants: list[str] = field(default_factory=list)
    meeting_url: str | None = None
    # Join URL the bot was invited to, kept until Fireflies reports its own id.
    pending_url: str | None = None
    external_id: str | None = None
    status: MeetingStatus = MeetingStatus.scheduled
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_email": self.user_email,
            "title": self.title,
            "scheduled_date": self.scheduled_date,
            "participants": list(self.participants),
            "meeting_url": self.meeting_url,
            "pending_url": self.pending_url,
            "external_id": self.external_id,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Meeting:
        raw_status = record.get("status")
        try:
            status = MeetingStatus(str(raw_status))
        except ValueError:
            status = MeetingStatus.scheduled
        raw_participants = record.get("participants")
        return cls(
            id=str(record["_id"]) if record.get("_id") is not None else None,
            user_email=str(record.get("user_email", "")),
            title=str(record.get("title", "")),
            scheduled_date=_to_datetime(record.get("scheduled_date")),
            participants=[str(item) for item in raw_participants]
            if isinstance(raw_participants, list)
            else [],
            meeting_url=record.get("meeting_url"),
            pending_url=record.get("pending_url"),
            external_id=record.get("external_id"),
            status=status,
            created_at=_to_optional_datetime(record.get("created_at")),
            updated_at=_to_optional_datetime(record.get("updated_at")),
        )

    def is_bot_invited(self) -> bool:
        return bool(self.pending_url or self.external_id)

    def has_provider_id(self) -> bool:
        """True once ``external_id`` holds a real Fireflies id rather than a join URL."""
        if not self.external_id:
            return False
        return not is_placeholder_id(self, self.external_id)


@dataclass
class Transcript:
    meeting_id: str
    id: str | None = None
    external_transcript_id: str | None = None
    content: str = ""
    summary: str | None = None
    action_items: str | None = None
    speaker_labels: str = "[]"
    processed_at: datetime | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "meeting_id": self.meeting_id,
            "external_transcript_id": self.external_transcript_id,
            "content": self.content,
            "summary": self.summary,
            "action_items": self.action_items,
            "speaker_labels": self.speaker_labels,
            "processed_at": self.processed_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Transcript:
        return cls(
            id=str(record["_id"]) if record.get("_id") is not None else None,
            meeting_id=str(record.get("meeting_id", "")),
            external_transcript_id=record.get("external_transcript_id"),
            content=str(record.get("content") or ""),
            summary=record.get("summary"),
            action_items=record.get("action_items"),
            speaker_labels=str(record.get("speaker_labels") or "[]"),
            processed_at=_to_optional_datetime(record.get("processed_at")),
            created_at=_to_optional_datetime(record.get("created_at")),
        )


@dataclass
class User:
    email: str
    id: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"email": self.email, "created_at": self.created_at}

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> User:
        return cls(
            id=str(record["_id"]) if record.get("_id") is not None else None,
            email=str(record.get("email", "")),
            created_at=_to_optional_datetime(record.get("created_at")),
        )


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_placeholder_id(meeting: Meeting, value: str) -> bool:
    # Legacy records stored the join URL in external_id until the webhook arrived.
    return value in (meeting.pending_url, meeting.meeting_url) or value.startswith(
        ("http://", "https://"),
    )


def _to_datetime(value: Any) -> datetime:
    return _to_optional_datetime(value) or datetime.now(UTC)


def _to_optional_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None
