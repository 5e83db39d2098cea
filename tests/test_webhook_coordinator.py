import json
import logging
from datetime import UTC, datetime

import pytest

from fireflies_proxy.core.config import Settings
from fireflies_proxy.schemas.meeting import MeetingScheduleRequest
from fireflies_proxy.schemas.webhook import WebhookOutcome
from fireflies_proxy.services.fireflies_api_client import FirefliesApiError
from fireflies_proxy.services.fireflies_models import (
    BotInviteResult,
    ProviderSentence,
    ProviderSummary,
    ProviderTranscript,
)
from fireflies_proxy.services.meeting_models import Meeting, MeetingStatus, Transcript, User
from fireflies_proxy.services.meeting_service import MeetingService
from fireflies_proxy.services.meeting_store import InMemoryMeetingStore
from fireflies_proxy.services.transcript_store import InMemoryTranscriptStore
from fireflies_proxy.services.webhook_coordinator import WebhookCoordinator, compute_signature

ZOOM_URL = "https://zoom.example/1"
SECRET = "s"


class _FakeFirefliesClient:
    def __init__(
        self,
        transcripts: dict[str, ProviderTranscript] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.transcripts = transcripts or {}
        self.error = error
        self.fetch_calls: list[str] = []
        self.invite_calls: list[str] = []

    def fetch_transcript(self, external_id: str) -> ProviderTranscript | None:
        self.fetch_calls.append(external_id)
        if self.error:
            raise self.error
        return self.transcripts.get(external_id)

    def invite_bot(self, meeting_url: str, title: str | None = None) -> BotInviteResult:
        self.invite_calls.append(meeting_url)
        return BotInviteResult(success=True, message="Bot is joining")


class _ExplodingBuilder:
    def build(self, meeting: Meeting, provider_transcript: ProviderTranscript) -> None:
        raise RuntimeError("disk full")


def _provider_transcript(
    external_id: str = "ext-42",
    title: str = "Weekly sync",
    meeting_link: str | None = ZOOM_URL,
) -> ProviderTranscript:
    return ProviderTranscript(
        id=external_id,
        title=title,
        meeting_link=meeting_link,
        summary=ProviderSummary(overview="Roadmap review."),
        sentences=[
            ProviderSentence(index=0, text="Morning all", speaker_name="Ada", start_time=1.0),
        ],
    )


def _body(event_type: str = "Transcription completed", meeting_id: str = "ext-42") -> bytes:
    return json.dumps({"meetingId": meeting_id, "eventType": event_type}).encode("utf-8")


def _save_meeting(store: InMemoryMeetingStore, title: str = "Weekly sync", **fields: object) -> Meeting:
    return store.save(
        Meeting(
            user_email="ada@example.com",
            title=title,
            scheduled_date=datetime(2026, 1, 5, 10, 0, tzinfo=UTC),
            **fields,
        ),
    )


def _build_coordinator(
    fireflies_client: _FakeFirefliesClient,
    meeting_store: InMemoryMeetingStore | None = None,
    transcript_store: InMemoryTranscriptStore | None = None,
    webhook_secret: str = "",
    **kwargs: object,
) -> WebhookCoordinator:
    return WebhookCoordinator(
        webhook_secret=webhook_secret,
        meeting_store=meeting_store or InMemoryMeetingStore(),
        transcript_store=transcript_store or InMemoryTranscriptStore(),
        fireflies_client=fireflies_client,  # type: ignore[arg-type]
        **kwargs,  # type: ignore[arg-type]
    )


def test_signature_is_verified_and_any_byte_mutation_is_rejected() -> None:
    coordinator = _build_coordinator(_FakeFirefliesClient(), webhook_secret=SECRET)
    body = b'{"event_type":"transcript.completed","meetingId":"abc"}'
    signature = compute_signature(body, SECRET)

    assert coordinator.verify_signature(body, signature)
    assert coordinator.verify_signature(body, f"sha256={signature}")
    assert coordinator.handle(body, signature).status != WebhookOutcome.rejected

    for position in range(len(body)):
        mutated = bytearray(body)
        mutated[position] ^= 0x01
        assert not coordinator.verify_signature(bytes(mutated), signature)

    assert coordinator.handle(body + b" ", signature).status == WebhookOutcome.rejected


def test_missing_signature_is_accepted_when_signatures_are_optional(
    caplog: pytest.LogCaptureFixture,
) -> None:
    coordinator = _build_coordinator(_FakeFirefliesClient(), webhook_secret=SECRET)

    with caplog.at_level(logging.WARNING, logger="fireflies_proxy.services.webhook_coordinator"):
        result = coordinator.handle(_body(), None)

    assert result.status == WebhookOutcome.deferred
    assert "accepting unsigned event" in caplog.text
    assert coordinator.handle(_body(), "bogus").status == WebhookOutcome.rejected


def test_missing_signature_is_rejected_when_signatures_are_required() -> None:
    coordinator = _build_coordinator(
        _FakeFirefliesClient(),
        webhook_secret=SECRET,
        require_signature=True,
    )

    result = coordinator.handle(_body(), None)

    assert result.status == WebhookOutcome.rejected


def test_signature_is_skipped_without_secret(caplog: pytest.LogCaptureFixture) -> None:
    coordinator = _build_coordinator(_FakeFirefliesClient())

    with caplog.at_level(logging.WARNING):
        result = coordinator.handle(_body(event_type="Something else"), "garbage")

    assert result.status == WebhookOutcome.ignored
    assert "skipping signature verification" in caplog.text


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[1, 2]",
        json.dumps({"meetingId": "ext-42"}).encode("utf-8"),
        _body(event_type="Meeting.Started"),
        _body(event_type="meeting ended"),
        _body(event_type="Recording uploaded"),
        json.dumps({"event_type": "transcript.completed"}).encode("utf-8"),
    ],
)
def test_irrelevant_or_malformed_events_are_ignored(body: bytes) -> None:
    fireflies_client = _FakeFirefliesClient()
    coordinator = _build_coordinator(fireflies_client)

    result = coordinator.handle(body, None)

    assert result.status == WebhookOutcome.ignored
    assert fireflies_client.fetch_calls == []


def test_invited_meeting_is_bound_and_transcript_persisted() -> None:
    meeting_store = InMemoryMeetingStore()
    transcript_store = InMemoryTranscriptStore()
    fireflies_client = _FakeFirefliesClient({"ext-42": _provider_transcript()})
    meeting_service = MeetingService(
        Settings(data_store="memory"),
        meeting_store=meeting_store,
        fireflies_client=fireflies_client,  # type: ignore[arg-type]
    )
    scheduled = meeting_service.schedule_meeting(
        User(email="ada@example.com"),
        MeetingScheduleRequest(
            title="Weekly sync",
            scheduled_date=datetime(2026, 1, 5, 10, 0, tzinfo=UTC),
            meeting_url=ZOOM_URL,
        ),
    )
    assert scheduled.pending_url == ZOOM_URL
    assert scheduled.external_id is None

    coordinator = _build_coordinator(fireflies_client, meeting_store, transcript_store)
    result = coordinator.handle(_body(), None)

    assert result.status == WebhookOutcome.persisted
    assert result.local_meeting_id == scheduled.id
    assert result.transcript_id
    assert fireflies_client.fetch_calls == ["ext-42"]

    meeting = meeting_store.find_by_id(scheduled.id)
    assert meeting is not None
    assert meeting.external_id == "ext-42"
    assert meeting.pending_url is None
    assert meeting.status == MeetingStatus.completed

    transcript = transcript_store.find_by_meeting_id(scheduled.id)
    assert transcript is not None
    assert transcript.content == "[00:01] Ada: Morning all\n"


def test_duplicate_delivery_is_already_processed() -> None:
    meeting_store = InMemoryMeetingStore()
    transcript_store = InMemoryTranscriptStore()
    _save_meeting(meeting_store, pending_url=ZOOM_URL, meeting_url=ZOOM_URL)
    fireflies_client = _FakeFirefliesClient({"ext-42": _provider_transcript()})
    coordinator = _build_coordinator(fireflies_client, meeting_store, transcript_store)

    first = coordinator.handle(_body(), None)
    second = coordinator.handle(_body(event_type="transcript.completed"), None)

    assert first.status == WebhookOutcome.persisted
    assert second.status == WebhookOutcome.already_processed
    assert second.transcript_id == first.transcript_id
    assert transcript_store.count() == 1
    assert fireflies_client.fetch_calls == ["ext-42"]


def test_not_ready_transcript_is_deferred_without_side_effects() -> None:
    meeting_store = InMemoryMeetingStore()
    transcript_store = InMemoryTranscriptStore()
    meeting = _save_meeting(meeting_store, external_id="ext-7", status=MeetingStatus.in_progress)
    coordinator = _build_coordinator(_FakeFirefliesClient(), meeting_store, transcript_store)

    result = coordinator.handle(_body(meeting_id="ext-7"), None)

    assert result.status == WebhookOutcome.deferred
    assert result.local_meeting_id == meeting.id
    assert transcript_store.count() == 0
    stored = meeting_store.find_by_id(meeting.id or "")
    assert stored is not None
    assert stored.status == MeetingStatus.in_progress


def test_url_match_wins_over_title_match() -> None:
    meeting_store = InMemoryMeetingStore()
    _save_meeting(meeting_store)
    legacy = _save_meeting(meeting_store, external_id=ZOOM_URL)
    fireflies_client = _FakeFirefliesClient({"ext-99": _provider_transcript("ext-99")})
    coordinator = _build_coordinator(fireflies_client, meeting_store)

    result = coordinator.handle(_body(meeting_id="ext-99"), None)

    assert result.status == WebhookOutcome.persisted
    assert result.local_meeting_id == legacy.id
    rebound = meeting_store.find_by_id(legacy.id or "")
    assert rebound is not None
    assert rebound.external_id == "ext-99"


def test_title_match_is_used_when_no_url_matches() -> None:
    meeting_store = InMemoryMeetingStore()
    meeting = _save_meeting(meeting_store, title="Weekly Sync")
    fireflies_client = _FakeFirefliesClient(
        {"ext-42": _provider_transcript(meeting_link="https://meet.example/abc")},
    )
    coordinator = _build_coordinator(fireflies_client, meeting_store)

    result = coordinator.handle(_body(), None)

    assert result.status == WebhookOutcome.persisted
    assert result.local_meeting_id == meeting.id
    assert fireflies_client.fetch_calls == ["ext-42"]


def test_unmatched_event_is_deferred() -> None:
    meeting_store = InMemoryMeetingStore()
    meeting = _save_meeting(meeting_store, title="Retro", meeting_url="https://zoom.example/2")
    fireflies_client = _FakeFirefliesClient({"ext-42": _provider_transcript()})
    coordinator = _build_coordinator(fireflies_client, meeting_store)

    result = coordinator.handle(_body(), None)

    assert result.status == WebhookOutcome.deferred
    assert result.detail == "No local meeting matches this event."
    stored = meeting_store.find_by_id(meeting.id or "")
    assert stored is not None
    assert stored.external_id is None


def test_title_match_skips_meeting_bound_to_another_recording() -> None:
    meeting_store = InMemoryMeetingStore()
    transcript_store = InMemoryTranscriptStore()
    bound = _save_meeting(meeting_store, external_id="ext-1", status=MeetingStatus.completed)
    transcript_store.save(Transcript(meeting_id=bound.id or "", external_transcript_id="ext-1"))
    fireflies_client = _FakeFirefliesClient(
        {"ext-2": _provider_transcript("ext-2", meeting_link="https://meet.example/abc")},
    )
    coordinator = _build_coordinator(fireflies_client, meeting_store, transcript_store)

    result = coordinator.handle(_body(meeting_id="ext-2"), None)

    assert result.status == WebhookOutcome.deferred
    assert result.detail == "No local meeting matches this event."
    stored = meeting_store.find_by_id(bound.id or "")
    assert stored is not None
    assert stored.external_id == "ext-1"
    assert transcript_store.count() == 1


def test_title_match_prefers_unclaimed_meeting() -> None:
    meeting_store = InMemoryMeetingStore()
    transcript_store = InMemoryTranscriptStore()
    _save_meeting(meeting_store, external_id="ext-1")
    with_transcript = _save_meeting(meeting_store)
    transcript_store.save(Transcript(meeting_id=with_transcript.id or ""))
    unclaimed = _save_meeting(meeting_store, external_id="https://zoom.example/old")
    fireflies_client = _FakeFirefliesClient(
        {"ext-2": _provider_transcript("ext-2", meeting_link="https://meet.example/abc")},
    )
    coordinator = _build_coordinator(fireflies_client, meeting_store, transcript_store)

    result = coordinator.handle(_body(meeting_id="ext-2"), None)

    assert result.status == WebhookOutcome.persisted
    assert result.local_meeting_id == unclaimed.id
    assert transcript_store.count() == 2


def test_rebinding_a_real_provider_id_logs_warning(caplog: pytest.LogCaptureFixture) -> None:
    meeting_store = InMemoryMeetingStore()
    meeting = _save_meeting(meeting_store, external_id="ext-old", meeting_url=ZOOM_URL)
    fireflies_client = _FakeFirefliesClient({"ext-42": _provider_transcript()})
    coordinator = _build_coordinator(fireflies_client, meeting_store)

    with caplog.at_level(logging.WARNING, logger="fireflies_proxy.services.webhook_coordinator"):
        result = coordinator.handle(_body(), None)

    assert result.status == WebhookOutcome.persisted
    assert "Rebinding meeting" in caplog.text
    stored = meeting_store.find_by_id(meeting.id or "")
    assert stored is not None
    assert stored.external_id == "ext-42"


def test_upstream_errors_are_deferred() -> None:
    fireflies_client = _FakeFirefliesClient(error=FirefliesApiError("boom", status_code=500))
    coordinator = _build_coordinator(fireflies_client)

    result = coordinator.handle(_body(), None)

    assert result.status == WebhookOutcome.deferred
    assert result.detail == "Fireflies API error: boom"


def test_unexpected_errors_are_deferred() -> None:
    meeting_store = InMemoryMeetingStore()
    transcript_store = InMemoryTranscriptStore()
    _save_meeting(meeting_store, external_id="ext-42")
    coordinator = _build_coordinator(
        _FakeFirefliesClient({"ext-42": _provider_transcript()}),
        meeting_store,
        transcript_store,
        builder=_ExplodingBuilder(),
    )

    result = coordinator.handle(_body(), None)

    assert result.status == WebhookOutcome.deferred
    assert transcript_store.count() == 0
