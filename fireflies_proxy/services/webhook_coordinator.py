import base64
import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from fireflies_proxy.schemas.webhook import WebhookOutcome, WebhookResponse
from fireflies_proxy.services.correlation_resolver import CorrelationResolver
from fireflies_proxy.services.fireflies_api_client import (
    FirefliesApiClient,
    FirefliesApiError,
    FirefliesConfigurationError,
)
from fireflies_proxy.services.fireflies_models import ProviderTranscript
from fireflies_proxy.services.meeting_models import Meeting, is_placeholder_id
from fireflies_proxy.services.meeting_store import MeetingStore
from fireflies_proxy.services.transcript_builder import TranscriptBuilder
from fireflies_proxy.services.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)

EVENT_TYPE_PATHS = ("event_type", "eventType", "event")
MEETING_ID_PATHS = ("meetingId", "meeting_id", "MeetingId")
TRANSCRIPT_COMPLETED_EVENTS = frozenset({"transcription completed", "transcript.completed"})
LIFECYCLE_EVENTS = frozenset(
    {"meeting.started", "meeting started", "meeting.ended", "meeting ended"},
)


class WebhookCoordinator:
    """Drives one inbound Fireflies event to a terminal outcome.

    Never raises: every failure is logged and reported as ``rejected``,
    ``ignored`` or ``deferred`` so Fireflies gets an acknowledgment and does
    not keep retrying.
    """

    def __init__(
        self,
        *,
        webhook_secret: str,
        require_signature: bool = False,
        meeting_store: MeetingStore,
        transcript_store: TranscriptStore,
        fireflies_client: FirefliesApiClient,
        resolver: CorrelationResolver | None = None,
        builder: TranscriptBuilder | None = None,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.require_signature = require_signature
        self.meeting_store = meeting_store
        self.transcript_store = transcript_store
        self.fireflies_client = fireflies_client
        self.resolver = resolver or CorrelationResolver(meeting_store)
        self.builder = builder or TranscriptBuilder(meeting_store, transcript_store)

    def handle(self, raw_body: bytes, signature: str | None) -> WebhookResponse:
        received_at = datetime.now(UTC)

        if not self.verify_signature(raw_body, signature):
            return WebhookResponse(
                status=WebhookOutcome.rejected,
                detail="Invalid webhook signature.",
                received_at=received_at,
            )

        payload = _load_payload(raw_body)
        if payload is None:
            logger.warning("Webhook body is not a JSON object, ignoring bytes=%d", len(raw_body))
            return WebhookResponse(
                status=WebhookOutcome.ignored,
                detail="Request body must be a JSON object.",
                received_at=received_at,
            )

        event_type = _extract_first_string(payload, EVENT_TYPE_PATHS)
        logger.info("Fireflies webhook event_type=%s", event_type)
        if not event_type:
            logger.warning("Webhook received without event type payload=%s", payload)
            return WebhookResponse(
                status=WebhookOutcome.ignored,
                detail="Missing event type.",
                received_at=received_at,
            )

        normalized_event_type = event_type.lower()
        if normalized_event_type in LIFECYCLE_EVENTS:
            logger.info("Lifecycle event event_type=%s, no action needed", event_type)
            return WebhookResponse(
                status=WebhookOutcome.ignored,
                event_type=event_type,
                detail="Lifecycle event has no side effect.",
                received_at=received_at,
            )
        if normalized_event_type not in TRANSCRIPT_COMPLETED_EVENTS:
            logger.info("Unhandled Fireflies event event_type=%s", event_type)
            return WebhookResponse(
                status=WebhookOutcome.ignored,
                event_type=event_type,
                detail="Unhandled event type.",
                received_at=received_at,
            )

        external_id = _extract_first_string(payload, MEETING_ID_PATHS)
        if not external_id:
            logger.warning("Transcript webhook has no meetingId, cannot process")
            return WebhookResponse(
                status=WebhookOutcome.ignored,
                event_type=event_type,
                detail="Missing meetingId.",
                received_at=received_at,
            )

        try:
            return self._process_transcript_completed(
                event_type=event_type,
                external_id=external_id,
                received_at=received_at,
            )
        except (FirefliesApiError, FirefliesConfigurationError) as exc:
            logger.warning(
                "Fireflies API call failed, deferring meeting_id=%s error=%s",
                external_id,
                exc,
            )
            return WebhookResponse(
                status=WebhookOutcome.deferred,
                event_type=event_type,
                meeting_id=external_id,
                detail=f"Fireflies API error: {exc}",
                received_at=received_at,
            )
        except Exception:
            logger.exception("Error processing transcript webhook meeting_id=%s", external_id)
            return WebhookResponse(
                status=WebhookOutcome.deferred,
                event_type=event_type,
                meeting_id=external_id,
                detail="Unexpected error while processing transcript.",
                received_at=received_at,
            )

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not self.webhook_secret:
            logger.warning("Webhook secret not configured, skipping signature verification")
            return True

        provided_signature = (signature or "").strip()
        if provided_signature.startswith("sha256="):
            provided_signature = provided_signature.split("=", maxsplit=1)[1].strip()
        if not provided_signature:
            if self.require_signature:
                logger.warning("Webhook signature missing while signatures are required")
                return False
            logger.warning("Webhook signature missing, accepting unsigned event")
            return True

        expected_signature = compute_signature(raw_body, self.webhook_secret)
        if not hmac.compare_digest(
            expected_signature.encode("utf-8"),
            provided_signature.encode("utf-8"),
        ):
            logger.warning("Webhook signature mismatch")
            return False
        return True

    def _process_transcript_completed(
        self,
        *,
        event_type: str,
        external_id: str,
        received_at: datetime,
    ) -> WebhookResponse:
        logger.info("Processing transcript meeting_id=%s", external_id)

        meeting = self.resolver.resolve(external_id=external_id)
        provider_transcript: ProviderTranscript | None = None

        if meeting is None:
            logger.info(
                "No local meeting for meeting_id=%s, fetching transcript to find meeting URL",
                external_id,
            )
            provider_transcript = self.fireflies_client.fetch_transcript(external_id)
            if provider_transcript is None:
                return self._deferred_not_ready(event_type, external_id, received_at)

            if provider_transcript.meeting_link:
                meeting = self.resolver.resolve(meeting_url=provider_transcript.meeting_link)

            if meeting is None:
                logger.info(
                    "URL match failed meeting_link=%s, trying title match title=%r",
                    provider_transcript.meeting_link,
                    provider_transcript.title,
                )
                meeting = self.resolver.match_by_title(
                    provider_transcript.title,
                    is_candidate=self._is_unclaimed,
                )

            if meeting is None:
                logger.warning(
                    "Could not associate meeting_id=%s to any local meeting "
                    "transcript_id=%s title=%r meeting_link=%s. "
                    "Ensure the bot was invited through this proxy.",
                    external_id,
                    provider_transcript.id,
                    provider_transcript.title,
                    provider_transcript.meeting_link,
                )
                return WebhookResponse(
                    status=WebhookOutcome.deferred,
                    event_type=event_type,
                    meeting_id=external_id,
                    detail="No local meeting matches this event.",
                    received_at=received_at,
                )

        meeting = self._bind_external_id(meeting, external_id)

        existing = self.transcript_store.find_by_meeting_id(meeting.id or "")
        if existing:
            logger.info(
                "Transcript already processed meeting_id=%s local_meeting_id=%s",
                external_id,
                meeting.id,
            )
            return WebhookResponse(
                status=WebhookOutcome.already_processed,
                event_type=event_type,
                meeting_id=external_id,
                local_meeting_id=meeting.id,
                transcript_id=existing.id,
                received_at=received_at,
            )

        if provider_transcript is None:
            provider_transcript = self.fireflies_client.fetch_transcript(external_id)
            if provider_transcript is None:
                return self._deferred_not_ready(
                    event_type,
                    external_id,
                    received_at,
                    local_meeting_id=meeting.id,
                )

        transcript = self.builder.build(meeting, provider_transcript)
        logger.info(
            "Transcript persisted local_meeting_id=%s meeting_id=%s transcript_id=%s",
            meeting.id,
            external_id,
            transcript.id,
        )
        return WebhookResponse(
            status=WebhookOutcome.persisted,
            event_type=event_type,
            meeting_id=external_id,
            local_meeting_id=meeting.id,
            transcript_id=transcript.id,
            received_at=received_at,
        )

    def _bind_external_id(self, meeting: Meeting, external_id: str) -> Meeting:
        if meeting.external_id == external_id and meeting.pending_url is None:
            return meeting

        previous_id = meeting.external_id
        if previous_id and previous_id != external_id and not is_placeholder_id(meeting, previous_id):
            logger.warning(
                "Rebinding meeting with a different provider id local_meeting_id=%s "
                "previous=%s new=%s",
                meeting.id,
                previous_id,
                external_id,
            )
        else:
            logger.info(
                "Binding meeting local_meeting_id=%s external_id=%s -> %s",
                meeting.id,
                previous_id or meeting.pending_url,
                external_id,
            )

        meeting.external_id = external_id
        meeting.pending_url = None
        return self.meeting_store.save(meeting)

    def _is_unclaimed(self, meeting: Meeting) -> bool:
        if meeting.has_provider_id():
            return False
        return self.transcript_store.find_by_meeting_id(meeting.id or "") is None

    def _deferred_not_ready(
        self,
        event_type: str,
        external_id: str,
        received_at: datetime,
        local_meeting_id: str | None = None,
    ) -> WebhookResponse:
        logger.warning(
            "Fireflies transcript not ready yet meeting_id=%s local_meeting_id=%s",
            external_id,
            local_meeting_id,
        )
        return WebhookResponse(
            status=WebhookOutcome.deferred,
            event_type=event_type,
            meeting_id=external_id,
            local_meeting_id=local_meeting_id,
            detail="Transcript not ready yet.",
            received_at=received_at,
        )


def compute_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=raw_body,
        digestmod=hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def _load_payload(raw_body: bytes) -> dict[str, Any] | None:
    try:
        parsed_payload = json.loads(raw_body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(parsed_payload, dict):
        return None
    return parsed_payload


def _extract_first_string(payload: Mapping[str, Any], paths: tuple[str, ...]) -> str | None:
    for path in paths:
        text = _to_text(_extract_path(payload, path))
        if text:
            return text
    return None


def _extract_path(payload: Mapping[str, Any], path: str) -> Any:
    value: Any = payload
    for segment in path.split("."):
        if not isinstance(value, Mapping):
            return None
        if segment not in value:
            return None
        value = value[segment]
    return value


def _to_text(value: Any) -> str | None:
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None
