import logging
from collections.abc import Callable

from fireflies_proxy.services.meeting_models import Meeting
from fireflies_proxy.services.meeting_store import MeetingStore

logger = logging.getLogger(__name__)


class CorrelationResolver:
    """Matches a Fireflies identifier to a locally created meeting.

    Strategies run in order and the first hit wins:

    1. ``external_id`` field equals the Fireflies meeting id.
    2. The meeting is still waiting on its provider id and its ``pending_url``
       equals the URL. Records written before ``pending_url`` existed kept the
       URL in ``external_id``, so that field is checked with the URL as well.
    3. ``meeting_url`` field equals the URL.
    """

    def __init__(self, meeting_store: MeetingStore) -> None:
        self.meeting_store = meeting_store

    def resolve(
        self,
        external_id: str | None = None,
        meeting_url: str | None = None,
    ) -> Meeting | None:
        if external_id:
            meeting = self.meeting_store.find_by_external_id(external_id)
            if meeting:
                logger.debug("Resolved meeting via external_id=%s", external_id)
                return meeting

        normalized_url = (meeting_url or "").strip()
        if not normalized_url:
            return None

        meeting = self.meeting_store.find_by_pending_url(normalized_url)
        if meeting:
            logger.debug("Resolved meeting via pending_url=%s", normalized_url)
            return meeting

        meeting = self.meeting_store.find_by_external_id(normalized_url)
        if meeting:
            logger.debug("Resolved meeting via legacy external_id url=%s", normalized_url)
            return meeting

        meeting = self.meeting_store.find_by_url(normalized_url)
        if meeting:
            logger.debug("Resolved meeting via meeting_url=%s", normalized_url)
            return meeting

        return None

    def match_by_title(
        self,
        title: str | None,
        is_candidate: Callable[[Meeting], bool] | None = None,
    ) -> Meeting | None:
        """Best-effort fallback. When titles collide the first meeting in scan order wins.

        ``is_candidate`` drops meetings that must not be claimed by a title match,
        such as ones already bound to another Fireflies recording.
        """
        normalized_title = (title or "").strip().casefold()
        if not normalized_title:
            return None

        matches = [
            meeting
            for meeting in self.meeting_store.find_all_for_scan()
            if meeting.title.strip().casefold() == normalized_title
            and (is_candidate is None or is_candidate(meeting))
        ]
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Ambiguous title match title=%r candidates=%s picked=%s",
                title,
                [meeting.id for meeting in matches],
                matches[0].id,
            )
        logger.info("Resolved meeting via best-effort title match meeting_id=%s", matches[0].id)
        return matches[0]
