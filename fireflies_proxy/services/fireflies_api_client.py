import json
import logging
import time
from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Any
from urllib import error, request

from fireflies_proxy.core.config import Settings
from fireflies_proxy.services.fireflies_models import (
    BotInviteResult,
    ProviderTranscript,
    ProviderTranscriptSummary,
    ProviderUser,
)
from fireflies_proxy.services.ttl_cache import BackoffWindow, TtlCache

logger = logging.getLogger(__name__)

_PLACEHOLDER_API_KEYS = frozenset({"your-api-key-here"})
_RATE_LIMIT_CODE = "too_many_requests"
_IDENTITY_CACHE_KEY = "me"
_MAX_LIST_LIMIT = 50

_USER_QUERY = """
query {
  user {
    user_id
    email
    name
    minutes_consumed
    is_admin
  }
}
"""

_TRANSCRIPT_QUERIES = (
    """
    query Transcript($id: String!) {
      transcript(id: $id) {
        id
        title
        date
        duration
        meeting_link
        summary {
          overview
          action_items
          keywords
          shorthand_bullet
        }
        sentences {
          index
          text
          speaker_name
          speaker_id
          start_time
          end_time
        }
      }
    }
    """,
    """
    query Transcript($id: String!) {
      transcript(id: $id) {
        id
        title
        date
        meeting_link
        sentences {
          text
          speaker_name
          start_time
          end_time
        }
      }
    }
    """,
)

_LIST_TRANSCRIPTS_QUERY = """
query Transcripts($limit: Int, $skip: Int) {
  transcripts(limit: $limit, skip: $skip) {
    id
    title
    date
    duration
    meeting_link
    organizer_email
    participants
  }
}
"""

_ADD_TO_LIVE_MEETING_MUTATION = """
mutation AddToLiveMeeting($meeting_link: String!, $title: String) {
  addToLiveMeeting(meeting_link: $meeting_link, title: $title) {
    success
    message
  }
}
"""


class FirefliesConfigurationError(Exception):
    pass


class FirefliesApiError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors


class FirefliesRateLimitedError(FirefliesApiError):
    def __init__(self, message: str, resume_at: float, retry_after_seconds: float) -> None:
        super().__init__(message, status_code=429)
        self.resume_at = resume_at
        self.retry_after_seconds = retry_after_seconds


class FirefliesApiClient:
    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        user_agent: str = "FirefliesProxy/1.0",
        user_cache_ttl_seconds: float = 300.0,
        transcript_cache_ttl_seconds: float = 300.0,
        rate_limit_backoff_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent
        self.rate_limit_backoff_seconds = rate_limit_backoff_seconds
        self._clock = clock
        self._user_cache: TtlCache[ProviderUser] = TtlCache(user_cache_ttl_seconds, clock=clock)
        self._transcript_cache: TtlCache[ProviderTranscript] = TtlCache(
            transcript_cache_ttl_seconds,
            clock=clock,
        )
        self._user_backoff = BackoffWindow(clock=clock)

    def fetch_identity(self) -> ProviderUser:
        if self._user_backoff.is_active():
            wait_seconds = self._user_backoff.remaining_seconds()
            logger.warning("Fireflies identity lookup blocked backoff_remaining_s=%d", wait_seconds)
            stale_user = self._user_cache.get_stale(_IDENTITY_CACHE_KEY)
            if stale_user:
                logger.debug("Returning stale cached Fireflies user during backoff")
                return stale_user
            raise FirefliesRateLimitedError(
                f"Fireflies API rate limit active. Please wait {int(wait_seconds)} seconds.",
                resume_at=self._user_backoff.resume_at,
                retry_after_seconds=wait_seconds,
            )

        cached_user = self._user_cache.get(_IDENTITY_CACHE_KEY)
        if cached_user:
            logger.debug("Cache hit key=fireflies_user")
            return cached_user

        logger.debug("Cache miss key=fireflies_user")
        try:
            data = self._execute(_USER_QUERY)
        except FirefliesRateLimitedError as exc:
            self._user_backoff.enter_until(exc.resume_at)
            logger.warning(
                "Fireflies identity lookup rate limited backoff_until=%s retry_after_s=%d",
                exc.resume_at,
                exc.retry_after_seconds,
            )
            stale_user = self._user_cache.get_stale(_IDENTITY_CACHE_KEY)
            if stale_user:
                return stale_user
            raise

        user = ProviderUser.from_payload(data.get("user"))
        if not user:
            raise FirefliesApiError("Fireflies API response missing user.")

        self._user_cache.put(_IDENTITY_CACHE_KEY, user)
        self._user_backoff.clear()
        return user

    def fetch_transcript(self, external_id: str) -> ProviderTranscript | None:
        cached_transcript = self._transcript_cache.get(external_id)
        if cached_transcript:
            logger.debug("Cache hit key=fireflies_transcript id=%s", external_id)
            return cached_transcript

        logger.debug("Cache miss key=fireflies_transcript id=%s", external_id)
        data = self._execute_with_fallback_queries(
            queries=_TRANSCRIPT_QUERIES,
            variables={"id": external_id},
        )
        transcript = ProviderTranscript.from_payload(data.get("transcript"))
        if not transcript or not transcript.has_body:
            logger.info("Fireflies transcript not ready id=%s", external_id)
            return None

        self._transcript_cache.put(external_id, transcript)
        return transcript

    def list_transcripts(self, limit: int = 20, offset: int = 0) -> list[ProviderTranscriptSummary]:
        normalized_limit = min(max(limit, 1), _MAX_LIST_LIMIT)
        normalized_offset = max(offset, 0)
        data = self._execute(
            _LIST_TRANSCRIPTS_QUERY,
            variables={"limit": normalized_limit, "skip": normalized_offset},
        )
        raw_items = data.get("transcripts")
        if not isinstance(raw_items, list):
            return []

        items: list[ProviderTranscriptSummary] = []
        for raw_item in raw_items:
            item = ProviderTranscriptSummary.from_payload(raw_item)
            if item:
                items.append(item)
        return items

    def invite_bot(self, meeting_url: str, title: str | None = None) -> BotInviteResult:
        variables: dict[str, Any] = {"meeting_link": meeting_url}
        if title:
            variables["title"] = title
        data = self._execute(_ADD_TO_LIVE_MEETING_MUTATION, variables=variables)
        return BotInviteResult.from_payload(data.get("addToLiveMeeting"))

    def _execute_with_fallback_queries(
        self,
        queries: tuple[str, ...],
        variables: Mapping[str, Any],
    ) -> dict[str, Any]:
        # Older Fireflies plans reject some fields; retry with a narrower selection.
        graphql_error: FirefliesApiError | None = None
        for graphql_query in queries:
            try:
                return self._execute(graphql_query, variables=variables)
            except FirefliesRateLimitedError:
                raise
            except FirefliesApiError as exc:
                if exc.errors is None:
                    raise
                graphql_error = exc

        if graphql_error:
            raise graphql_error
        raise FirefliesApiError("Fireflies query failed.")

    def _execute(
        self,
        graphql_query: str,
        variables: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        self._ensure_configured()

        payload: dict[str, Any] = {"query": graphql_query}
        if variables:
            payload["variables"] = dict(variables)
        raw_payload = json.dumps(payload).encode("utf-8")
        req = request.Request(
            self.api_url,
            data=raw_payload,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": self.user_agent,
            },
            method="POST",
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            logger.error("Fireflies HTTP error status_code=%s body=%s", exc.code, body)
            if exc.code == 429:
                raise self._build_rate_limited_error(
                    errors_payload=_parse_errors_from_body(body),
                    retry_after_header=exc.headers.get("Retry-After") if exc.headers else None,
                ) from exc
            raise FirefliesApiError(
                f"Fireflies API HTTP {exc.code}: {body or 'empty response body'}",
                status_code=exc.code,
            ) from exc
        except error.URLError as exc:
            raise FirefliesApiError(f"Fireflies API connection error: {exc.reason}") from exc
        except TimeoutError as exc:
            raise FirefliesApiError("Fireflies API request timed out.") from exc

        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise FirefliesApiError("Fireflies API returned invalid JSON.") from exc

        if not isinstance(parsed_body, Mapping):
            raise FirefliesApiError("Fireflies API returned an unexpected payload.")

        errors_payload = parsed_body.get("errors")
        if errors_payload:
            logger.error("Fireflies GraphQL errors: %s", errors_payload)
            if _is_rate_limited(errors_payload):
                raise self._build_rate_limited_error(errors_payload=errors_payload)
            raise FirefliesApiError(
                f"Fireflies API GraphQL error: {errors_payload}",
                status_code=_extract_error_status(errors_payload),
                errors=errors_payload,
            )

        data = parsed_body.get("data")
        if not isinstance(data, Mapping):
            raise FirefliesApiError("Fireflies API response missing data.")
        return dict(data)

    def _ensure_configured(self) -> None:
        api_key = (self.api_key or "").strip()
        if not api_key or api_key in _PLACEHOLDER_API_KEYS:
            raise FirefliesConfigurationError(
                "Fireflies API key not configured. Set FIREFLIES_API_KEY.",
            )

    def _build_rate_limited_error(
        self,
        errors_payload: Any,
        retry_after_header: str | None = None,
    ) -> FirefliesRateLimitedError:
        now = self._clock()
        resume_at = _extract_retry_after(errors_payload)
        if resume_at is None and retry_after_header:
            try:
                resume_at = now + float(retry_after_header)
            except ValueError:
                resume_at = None
        if resume_at is None:
            resume_at = now + self.rate_limit_backoff_seconds
            logger.warning(
                "Fireflies rate limit without retryAfter fallback_backoff_s=%d",
                self.rate_limit_backoff_seconds,
            )
        retry_after_seconds = max(resume_at - now, 0.0)
        return FirefliesRateLimitedError(
            f"Fireflies API rate limit active. Please wait {int(retry_after_seconds)} seconds.",
            resume_at=resume_at,
            retry_after_seconds=retry_after_seconds,
        )


def _first_error(errors_payload: Any) -> Mapping[str, Any] | None:
    if isinstance(errors_payload, list) and errors_payload:
        first = errors_payload[0]
        if isinstance(first, Mapping):
            return first
    return None


def _is_rate_limited(errors_payload: Any) -> bool:
    first = _first_error(errors_payload)
    if not first:
        return False
    extensions = first.get("extensions")
    extension_code = extensions.get("code") if isinstance(extensions, Mapping) else None
    return _RATE_LIMIT_CODE in (first.get("code"), extension_code)


def _extract_retry_after(errors_payload: Any) -> float | None:
    """Returns the provider's resume instant in epoch seconds."""
    first = _first_error(errors_payload)
    if not first:
        return None
    extensions = first.get("extensions")
    if not isinstance(extensions, Mapping):
        return None
    metadata = extensions.get("metadata")
    if not isinstance(metadata, Mapping):
        return None
    retry_after = metadata.get("retryAfter")
    if isinstance(retry_after, bool) or not isinstance(retry_after, int | float):
        return None
    # Fireflies reports retryAfter as epoch milliseconds.
    return float(retry_after) / 1000.0


def _extract_error_status(errors_payload: Any) -> int | None:
    first = _first_error(errors_payload)
    if not first:
        return None
    extensions = first.get("extensions")
    if not isinstance(extensions, Mapping):
        return None
    status = extensions.get("status")
    if isinstance(status, int) and not isinstance(status, bool):
        return status
    return None


def _parse_errors_from_body(body: str) -> Any:
    try:
        parsed_body = json.loads(body)
    except json.JSONDecodeError:
        return None
    if isinstance(parsed_body, Mapping):
        return parsed_body.get("errors")
    return None


def create_fireflies_client(settings: Settings) -> FirefliesApiClient:
    return _create_fireflies_client_cached(
        api_url=settings.fireflies_api_url,
        api_key=settings.fireflies_api_key,
        timeout_seconds=settings.fireflies_api_timeout_seconds,
        user_agent=settings.fireflies_api_user_agent,
        user_cache_ttl_seconds=settings.fireflies_user_cache_ttl_seconds,
        transcript_cache_ttl_seconds=settings.fireflies_transcript_cache_ttl_seconds,
        rate_limit_backoff_seconds=settings.fireflies_rate_limit_backoff_seconds,
    )


@lru_cache
def _create_fireflies_client_cached(
    api_url: str,
    api_key: str,
    timeout_seconds: float,
    user_agent: str,
    user_cache_ttl_seconds: float,
    transcript_cache_ttl_seconds: float,
    rate_limit_backoff_seconds: float,
) -> FirefliesApiClient:
    return FirefliesApiClient(
        api_url=api_url,
        api_key=api_key,
        timeout_seconds=timeout_seconds,
        user_agent=user_agent,
        user_cache_ttl_seconds=user_cache_ttl_seconds,
        transcript_cache_ttl_seconds=transcript_cache_ttl_seconds,
        rate_limit_backoff_seconds=rate_limit_backoff_seconds,
    )


def clear_fireflies_client_cache() -> None:
    _create_fireflies_client_cached.cache_clear()
