import json
import logging
import math
from datetime import UTC, datetime

from fireflies_proxy.services.fireflies_models import (
    ProviderSentence,
    ProviderSummary,
    ProviderTranscript,
)
from fireflies_proxy.services.meeting_models import Meeting, MeetingStatus, Transcript
from fireflies_proxy.services.meeting_store import MeetingStore
from fireflies_proxy.services.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)


class TranscriptBuilder:
    def __init__(self, meeting_store: MeetingStore, transcript_store: TranscriptStore) -> None:
        self.meeting_store = meeting_store
        self.transcript_store = transcript_store

    def build(self, meeting: Meeting, provider_transcript: ProviderTranscript) -> Transcript:
        if meeting.id is None:
            raise ValueError("Meeting must be persisted before building its transcript.")

        existing = self.transcript_store.find_by_meeting_id(meeting.id)
        if existing:
            logger.info("Transcript already exists meeting_id=%s, skipping build", meeting.id)
            return existing

        summary = provider_transcript.summary
        transcript = Transcript(
            meeting_id=meeting.id,
            external_transcript_id=provider_transcript.id,
            content=build_content(provider_transcript.sentences),
            summary=compose_summary(summary),
            action_items=_join_lines(summary.action_items) if summary else None,
            speaker_labels=serialize_speaker_labels(provider_transcript.sentences),
            processed_at=datetime.now(UTC),
        )
        saved = self.transcript_store.save(transcript)

        if meeting.status != MeetingStatus.completed:
            meeting.status = MeetingStatus.completed
            self.meeting_store.save(meeting)

        logger.info(
            "Transcript saved meeting_id=%s transcript_id=%s external_transcript_id=%s",
            meeting.id,
            saved.id,
            provider_transcript.id,
        )
        return saved


def build_content(sentences: list[ProviderSentence]) -> str:
    lines: list[str] = []
    for sentence in sentences:
        if not sentence.speaker_name or not sentence.text:
            continue
        prefix = ""
        if sentence.start_time is not None and math.isfinite(sentence.start_time):
            prefix = f"[{format_timestamp(sentence.start_time)}] "
        lines.append(f"{prefix}{sentence.speaker_name}: {sentence.text}\n")
    return "".join(lines)


def format_timestamp(seconds: float) -> str:
    minutes = int(seconds / 60)
    remainder = int(seconds % 60)
    return f"{minutes:02d}:{remainder:02d}"


def compose_summary(summary: ProviderSummary | None) -> str | None:
    if not summary:
        return None

    sections: list[str] = []
    if summary.overview:
        sections.append(f"## Overview\n{summary.overview}\n\n")
    keywords = _join(summary.keywords, ", ")
    if keywords:
        sections.append(f"## Keywords\n{keywords}\n\n")
    key_points = _join_lines(summary.shorthand_bullet)
    if key_points:
        sections.append(f"## Key Points\n{key_points}\n")

    if not sections:
        return summary.overview
    return "".join(sections)


def serialize_speaker_labels(sentences: list[ProviderSentence]) -> str:
    try:
        return json.dumps([sentence.to_dict() for sentence in sentences], allow_nan=False)
    except (TypeError, ValueError) as exc:
        logger.warning("Could not serialize speaker labels: %s", exc)
        return "[]"


def _join(value: str | list[str] | None, separator: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        return separator.join(value)
    return value


def _join_lines(value: str | list[str] | None) -> str | None:
    return _join(value, "\n")
