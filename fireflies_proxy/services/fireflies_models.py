from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_MEETING_LINK_KEYS = ("meeting_link", "meeting_url", "meetingUrl", "url", "video_url")


@dataclass(frozen=True)
class ProviderUser:
    user_id: str | None = None
    email: str | None = None
    name: str | None = None
    minutes_consumed: float | None = None
    is_admin: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "name": self.name,
            "minutes_consumed": self.minutes_consumed,
            "is_admin": self.is_admin,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> ProviderUser | None:
        if not isinstance(payload, Mapping):
            return None
        raw_is_admin = payload.get("is_admin")
        return cls(
            user_id=_to_text(payload.get("user_id")),
            email=_to_text(payload.get("email")),
            name=_to_text(payload.get("name")),
            minutes_consumed=_to_float(payload.get("minutes_consumed")),
            is_admin=raw_is_admin if isinstance(raw_is_admin, bool) else None,
        )


@dataclass(frozen=True)
class ProviderSentence:
    index: int | None = None
    text: str | None = None
    speaker_name: str | None = None
    speaker_id: str | None = None
    start_time: float | None = None
    end_time: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "text": self.text,
            "speaker_name": self.speaker_name,
            "speaker_id": self.speaker_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> ProviderSentence | None:
        if not isinstance(payload, Mapping):
            return None
        return cls(
            index=_to_int(payload.get("index")),
            text=_to_text(payload.get("text")),
            speaker_name=_to_text(payload.get("speaker_name")),
            speaker_id=_to_text(payload.get("speaker_id")),
            start_time=_to_float(payload.get("start_time")),
            end_time=_to_float(payload.get("end_time")),
        )


@dataclass(frozen=True)
class ProviderSummary:
    # Fireflies returns these either as a single string or as a list of strings.
    overview: str | None = None
    action_items: str | list[str] | None = None
    keywords: str | list[str] | None = None
    shorthand_bullet: str | list[str] | None = None

    def has_content(self) -> bool:
        return any(
            value
            for value in (self.overview, self.action_items, self.keywords, self.shorthand_bullet)
        )

    @classmethod
    def from_payload(cls, payload: Any) -> ProviderSummary | None:
        if not isinstance(payload, Mapping):
            return None
        return cls(
            overview=_to_text(payload.get("overview")),
            action_items=_to_text_or_list(payload.get("action_items")),
            keywords=_to_text_or_list(payload.get("keywords")),
            shorthand_bullet=_to_text_or_list(payload.get("shorthand_bullet")),
        )


@dataclass(frozen=True)
class ProviderTranscript:
    id: str | None = None
    title: str | None = None
    date: float | None = None
    duration: float | None = None
    meeting_link: str | None = None
    summary: ProviderSummary | None = None
    sentences: list[ProviderSentence] = field(default_factory=list)

    @property
    def has_body(self) -> bool:
        """False while Fireflies is still processing the recording."""
        if self.sentences:
            return True
        return bool(self.summary and self.summary.has_content())

    @classmethod
    def from_payload(cls, payload: Any) -> ProviderTranscript | None:
        if not isinstance(payload, Mapping):
            return None

        sentences: list[ProviderSentence] = []
        raw_sentences = payload.get("sentences")
        if isinstance(raw_sentences, list):
            for raw_sentence in raw_sentences:
                sentence = ProviderSentence.from_payload(raw_sentence)
                if sentence:
                    sentences.append(sentence)

        meeting_link = None
        for key in _MEETING_LINK_KEYS:
            meeting_link = _to_text(payload.get(key))
            if meeting_link:
                break

        return cls(
            id=_to_text(payload.get("id")),
            title=_to_text(payload.get("title")),
            date=_to_float(payload.get("date")),
            duration=_to_float(payload.get("duration")),
            meeting_link=meeting_link,
            summary=ProviderSummary.from_payload(payload.get("summary")),
            sentences=sentences,
        )


@dataclass(frozen=True)
class ProviderTranscriptSummary:
    id: str
    title: str | None = None
    date: float | None = None
    duration: float | None = None
    meeting_link: str | None = None
    organizer_email: str | None = None
    participants: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date,
            "duration": self.duration,
            "meeting_link": self.meeting_link,
            "organizer_email": self.organizer_email,
            "participants": list(self.participants),
        }

    @classmethod
    def from_payload(cls, payload: Any) -> ProviderTranscriptSummary | None:
        if not isinstance(payload, Mapping):
            return None
        transcript_id = _to_text(payload.get("id"))
        if not transcript_id:
            return None
        participants: list[str] = []
        raw_participants = payload.get("participants")
        if isinstance(raw_participants, list):
            for raw_participant in raw_participants:
                participant = _to_text(raw_participant)
                if participant:
                    participants.append(participant)
        return cls(
            id=transcript_id,
            title=_to_text(payload.get("title")),
            date=_to_float(payload.get("date")),
            duration=_to_float(payload.get("duration")),
            meeting_link=_to_text(payload.get("meeting_link")),
            organizer_email=_to_text(payload.get("organizer_email")),
            participants=participants,
        )


@dataclass(frozen=True)
class BotInviteResult:
    success: bool
    message: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> BotInviteResult:
        if not isinstance(payload, Mapping):
            return cls(success=False, message="Fireflies returned no invite result.")
        return cls(
            success=payload.get("success") is True,
            message=_to_text(payload.get("message")),
        )


def _to_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _to_text_or_list(value: Any) -> str | list[str] | None:
    if isinstance(value, str):
        return _to_text(value)
    if isinstance(value, list):
        items = [str(item) for item in value if item is not None]
        return items or None
    return None


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return None
        try:
            return int(cleaned)
        except ValueError:
            return None
    return None
