import json
from datetime import UTC, datetime

import pytest

from fireflies_proxy.services.fireflies_models import (
    ProviderSentence,
    ProviderSummary,
    ProviderTranscript,
)
from fireflies_proxy.services.meeting_models import Meeting, MeetingStatus
from fireflies_proxy.services.meeting_store import InMemoryMeetingStore
from fireflies_proxy.services.transcript_builder import (
    TranscriptBuilder,
    build_content,
    compose_summary,
    format_timestamp,
    serialize_speaker_labels,
)
from fireflies_proxy.services.transcript_store import InMemoryTranscriptStore


def _provider_transcript() -> ProviderTranscript:
    return ProviderTranscript(
        id="ext-42",
        title="Weekly sync",
        meeting_link="https://zoom.example/1",
        summary=ProviderSummary(
            overview="Roadmap review.",
            action_items=["Ada: send notes", "Bob: book room"],
            keywords=["roadmap", "hiring"],
            shorthand_bullet=["Q3 scope agreed", "Hiring paused"],
        ),
        sentences=[
            ProviderSentence(index=0, text="Morning all", speaker_name="Ada", start_time=65.4),
            ProviderSentence(index=1, text="Hi", speaker_name="Bob"),
            ProviderSentence(index=2, text="", speaker_name="Bob", start_time=70.0),
        ],
    )


def _saved_meeting(store: InMemoryMeetingStore) -> Meeting:
    return store.save(
        Meeting(
            user_email="ada@example.com",
            title="Weekly sync",
            scheduled_date=datetime(2026, 1, 5, 10, 0, tzinfo=UTC),
            external_id="ext-42",
            status=MeetingStatus.in_progress,
        ),
    )


def test_format_timestamp_uses_minutes_and_seconds() -> None:
    assert format_timestamp(0) == "00:00"
    assert format_timestamp(65.9) == "01:05"
    assert format_timestamp(3725) == "62:05"


def test_build_content_prefixes_known_start_times_only() -> None:
    content = build_content(_provider_transcript().sentences)

    assert content == "[01:05] Ada: Morning all\nBob: Hi\n"


def test_compose_summary_joins_sections_in_order() -> None:
    summary = compose_summary(_provider_transcript().summary)

    assert summary == (
        "## Overview\nRoadmap review.\n\n"
        "## Keywords\nroadmap, hiring\n\n"
        "## Key Points\nQ3 scope agreed\nHiring paused\n"
    )


def test_compose_summary_accepts_plain_strings_and_missing_sections() -> None:
    assert compose_summary(ProviderSummary(keywords="roadmap")) == "## Keywords\nroadmap\n\n"
    assert compose_summary(ProviderSummary()) is None
    assert compose_summary(None) is None


def test_serialize_speaker_labels_falls_back_on_non_finite_numbers() -> None:
    sentences = [ProviderSentence(text="Hi", speaker_name="Ada", start_time=float("nan"))]

    assert serialize_speaker_labels(sentences) == "[]"
    assert build_content(sentences) == "Ada: Hi\n"


def test_build_persists_transcript_and_completes_meeting() -> None:
    meeting_store = InMemoryMeetingStore()
    transcript_store = InMemoryTranscriptStore()
    meeting = _saved_meeting(meeting_store)

    transcript = TranscriptBuilder(meeting_store, transcript_store).build(
        meeting,
        _provider_transcript(),
    )

    assert transcript.id
    assert transcript.meeting_id == meeting.id
    assert transcript.external_transcript_id == "ext-42"
    assert transcript.action_items == "Ada: send notes\nBob: book room"
    assert transcript.processed_at is not None
    labels = json.loads(transcript.speaker_labels)
    assert [label["speaker_name"] for label in labels] == ["Ada", "Bob", "Bob"]

    stored_meeting = meeting_store.find_by_id(meeting.id or "")
    assert stored_meeting is not None
    assert stored_meeting.status == MeetingStatus.completed


def test_build_is_idempotent_per_meeting() -> None:
    meeting_store = InMemoryMeetingStore()
    transcript_store = InMemoryTranscriptStore()
    meeting = _saved_meeting(meeting_store)
    builder = TranscriptBuilder(meeting_store, transcript_store)

    first = builder.build(meeting, _provider_transcript())
    second = builder.build(meeting, ProviderTranscript(id="ext-other", sentences=[]))

    assert second.id == first.id
    assert second.content == first.content
    assert transcript_store.count() == 1


def test_build_requires_a_persisted_meeting() -> None:
    builder = TranscriptBuilder(InMemoryMeetingStore(), InMemoryTranscriptStore())
    meeting = Meeting(
        user_email="ada@example.com",
        title="Draft",
        scheduled_date=datetime(2026, 1, 5, tzinfo=UTC),
    )

    with pytest.raises(ValueError):
        builder.build(meeting, _provider_transcript())
