from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import UTC, datetime
from functools import lru_cache
from threading import Lock

from fireflies_proxy.core.config import Settings
from fireflies_proxy.services.meeting_models import Meeting


class ExternalIdConflictError(ValueError):
    pass


class MeetingStore(ABC):
    @abstractmethod
    def find_by_id(self, meeting_id: str) -> Meeting | None:
        raise NotImplementedError

    @abstractmethod
    def find_by_external_id(self, external_id: str) -> Meeting | None:
        raise NotImplementedError

    @abstractmethod
    def find_by_pending_url(self, meeting_url: str) -> Meeting | None:
        raise NotImplementedError

    @abstractmethod
    def find_by_url(self, meeting_url: str) -> Meeting | None:
        raise NotImplementedError

    @abstractmethod
    def find_all_for_scan(self) -> list[Meeting]:
        raise NotImplementedError

    @abstractmethod
    def list_for_user(self, user_email: str) -> list[Meeting]:
        raise NotImplementedError

    @abstractmethod
    def save(self, meeting: Meeting) -> Meeting:
        raise NotImplementedError


class InMemoryMeetingStore(MeetingStore):
    def __init__(self) -> None:
        self._next_id = 1
        self._meetings: dict[str, Meeting] = {}
        self._lock = Lock()

    def find_by_id(self, meeting_id: str) -> Meeting | None:
        meeting = self._meetings.get(meeting_id)
        return replace(meeting) if meeting else None

    def find_by_external_id(self, external_id: str) -> Meeting | None:
        return self._find_first(lambda meeting: meeting.external_id == external_id)

    def find_by_pending_url(self, meeting_url: str) -> Meeting | None:
        return self._find_first(lambda meeting: meeting.pending_url == meeting_url)

    def find_by_url(self, meeting_url: str) -> Meeting | None:
        return self._find_first(lambda meeting: meeting.meeting_url == meeting_url)

    def find_all_for_scan(self) -> list[Meeting]:
        return [replace(meeting) for meeting in list(self._meetings.values())]

    def list_for_user(self, user_email: str) -> list[Meeting]:
        meetings = [
            replace(meeting)
            for meeting in list(self._meetings.values())
            if meeting.user_email == user_email
        ]
        return sorted(meetings, key=lambda meeting: meeting.scheduled_date, reverse=True)

    def save(self, meeting: Meeting) -> Meeting:
        with self._lock:
            if meeting.external_id:
                for stored in self._meetings.values():
                    if stored.id != meeting.id and stored.external_id == meeting.external_id:
                        raise ExternalIdConflictError("external_id_already_bound")

            now = datetime.now(UTC)
            stored_meeting = replace(meeting)
            if stored_meeting.id is None:
                stored_meeting.id = f"memory-meeting-{self._next_id}"
                self._next_id += 1
                stored_meeting.created_at = now
            stored_meeting.updated_at = now
            self._meetings[stored_meeting.id] = stored_meeting
            return replace(stored_meeting)

    def _find_first(self, predicate) -> Meeting | None:
        for meeting in list(self._meetings.values()):
            if predicate(meeting):
                return replace(meeting)
        return None


class MongoMeetingStore(MeetingStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import ASCENDING, DESCENDING, MongoClient

        self._asc = ASCENDING
        self._desc = DESCENDING
        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index(
            [("external_id", ASCENDING)],
            unique=True,
            partialFilterExpression={"external_id": {"$exists": True, "$type": "string"}},
        )
        self._collection.create_index([("pending_url", ASCENDING)])
        self._collection.create_index([("meeting_url", ASCENDING)])
        self._collection.create_index([("user_email", ASCENDING), ("scheduled_date", DESCENDING)])

    def find_by_id(self, meeting_id: str) -> Meeting | None:
        from bson import ObjectId
        from bson.errors import InvalidId

        try:
            object_id = ObjectId(meeting_id)
        except InvalidId:
            return None
        return self._to_meeting(self._collection.find_one({"_id": object_id}))

    def find_by_external_id(self, external_id: str) -> Meeting | None:
        return self._to_meeting(self._collection.find_one({"external_id": external_id}))

    def find_by_pending_url(self, meeting_url: str) -> Meeting | None:
        return self._to_meeting(self._collection.find_one({"pending_url": meeting_url}))

    def find_by_url(self, meeting_url: str) -> Meeting | None:
        return self._to_meeting(self._collection.find_one({"meeting_url": meeting_url}))

    def find_all_for_scan(self) -> list[Meeting]:
        cursor = self._collection.find().sort("created_at", self._asc)
        return [Meeting.from_record(record) for record in cursor]

    def list_for_user(self, user_email: str) -> list[Meeting]:
        cursor = self._collection.find({"user_email": user_email}).sort(
            "scheduled_date",
            self._desc,
        )
        return [Meeting.from_record(record) for record in cursor]

    def save(self, meeting: Meeting) -> Meeting:
        from bson import ObjectId
        from pymongo.errors import DuplicateKeyError

        now = datetime.now(UTC)
        stored_meeting = replace(meeting, updated_at=now)
        if stored_meeting.created_at is None:
            stored_meeting.created_at = now
        document = stored_meeting.to_dict()
        if document["external_id"] is None:
            # Keep the partial unique index sparse.
            document.pop("external_id")

        try:
            if stored_meeting.id is None:
                insert_result = self._collection.insert_one(document)
                stored_meeting.id = str(insert_result.inserted_id)
            else:
                update: dict[str, dict] = {"$set": document}
                if "external_id" not in document:
                    update["$unset"] = {"external_id": ""}
                self._collection.update_one({"_id": ObjectId(stored_meeting.id)}, update)
        except DuplicateKeyError as exc:
            raise ExternalIdConflictError("external_id_already_bound") from exc
        return stored_meeting

    def _to_meeting(self, record) -> Meeting | None:
        if not record:
            return None
        return Meeting.from_record(record)


def create_meeting_store(settings: Settings) -> MeetingStore:
    return _create_meeting_store_cached(
        store_name=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_meetings_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_meeting_store_cached(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> MeetingStore:
    if store_name == "mongodb":
        return MongoMeetingStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryMeetingStore()


def clear_meeting_store_cache() -> None:
    _create_meeting_store_cached.cache_clear()
