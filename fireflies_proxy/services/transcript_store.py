from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import UTC, datetime
from functools import lru_cache
from threading import Lock

from fireflies_proxy.core.config import Settings
from fireflies_proxy.services.meeting_models import Transcript


class TranscriptStore(ABC):
    @abstractmethod
    def find_by_meeting_id(self, meeting_id: str) -> Transcript | None:
        raise NotImplementedError

    @abstractmethod
    def save(self, transcript: Transcript) -> Transcript:
        """Persists a new transcript.

        A transcript that already exists for the same meeting wins: the stored
        record is returned and the argument is discarded.
        """
        raise NotImplementedError


class InMemoryTranscriptStore(TranscriptStore):
    def __init__(self) -> None:
        self._transcripts_by_meeting_id: dict[str, Transcript] = {}
        self._lock = Lock()

    def find_by_meeting_id(self, meeting_id: str) -> Transcript | None:
        transcript = self._transcripts_by_meeting_id.get(meeting_id)
        return replace(transcript) if transcript else None

    def save(self, transcript: Transcript) -> Transcript:
        with self._lock:
            existing = self._transcripts_by_meeting_id.get(transcript.meeting_id)
            if existing:
                return replace(existing)

            stored_transcript = replace(
                transcript,
                id=f"memory-transcript-{len(self._transcripts_by_meeting_id) + 1}",
                created_at=transcript.created_at or datetime.now(UTC),
            )
            self._transcripts_by_meeting_id[transcript.meeting_id] = stored_transcript
            return replace(stored_transcript)

    def count(self) -> int:
        return len(self._transcripts_by_meeting_id)


class MongoTranscriptStore(TranscriptStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import ASCENDING, MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index([("meeting_id", ASCENDING)], unique=True)
        self._collection.create_index(
            [("external_transcript_id", ASCENDING)],
            unique=True,
            partialFilterExpression={
                "external_transcript_id": {"$exists": True, "$type": "string"},
            },
        )

    def find_by_meeting_id(self, meeting_id: str) -> Transcript | None:
        record = self._collection.find_one({"meeting_id": meeting_id})
        if not record:
            return None
        return Transcript.from_record(record)

    def save(self, transcript: Transcript) -> Transcript:
        from pymongo.errors import DuplicateKeyError

        stored_transcript = replace(
            transcript,
            created_at=transcript.created_at or datetime.now(UTC),
        )
        document = stored_transcript.to_dict()
        if document["external_transcript_id"] is None:
            document.pop("external_transcript_id")
        try:
            insert_result = self._collection.insert_one(document)
        except DuplicateKeyError:
            existing = self.find_by_meeting_id(transcript.meeting_id)
            if not existing:
                raise
            return existing
        stored_transcript.id = str(insert_result.inserted_id)
        return stored_transcript


def create_transcript_store(settings: Settings) -> TranscriptStore:
    return _create_transcript_store_cached(
        store_name=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_transcripts_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_transcript_store_cached(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> TranscriptStore:
    if store_name == "mongodb":
        return MongoTranscriptStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryTranscriptStore()


def clear_transcript_store_cache() -> None:
    _create_transcript_store_cached.cache_clear()
