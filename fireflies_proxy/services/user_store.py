from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import UTC, datetime
from functools import lru_cache

from fireflies_proxy.core.config import Settings
from fireflies_proxy.services.meeting_models import User, normalize_email


class UserStore(ABC):
    @abstractmethod
    def get_by_email(self, email: str) -> User | None:
        raise NotImplementedError

    @abstractmethod
    def create(self, email: str) -> User:
        raise NotImplementedError


class InMemoryUserStore(UserStore):
    def __init__(self) -> None:
        self._next_id = 1
        self._users_by_email: dict[str, User] = {}

    def get_by_email(self, email: str) -> User | None:
        user = self._users_by_email.get(normalize_email(email))
        return replace(user) if user else None

    def create(self, email: str) -> User:
        normalized_email = normalize_email(email)
        if normalized_email in self._users_by_email:
            raise ValueError("email_already_exists")

        user = User(
            id=f"memory-user-{self._next_id}",
            email=normalized_email,
            created_at=datetime.now(UTC),
        )
        self._next_id += 1
        self._users_by_email[normalized_email] = user
        return replace(user)


class MongoUserStore(UserStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._users = self._client[db_name][collection_name]
        self._users.create_index("email", unique=True)

    def get_by_email(self, email: str) -> User | None:
        record = self._users.find_one({"email": normalize_email(email)})
        if not record:
            return None
        return User.from_record(record)

    def create(self, email: str) -> User:
        from pymongo.errors import DuplicateKeyError

        user = User(email=normalize_email(email), created_at=datetime.now(UTC))
        try:
            insert_result = self._users.insert_one(user.to_dict())
        except DuplicateKeyError as exc:
            raise ValueError("email_already_exists") from exc
        user.id = str(insert_result.inserted_id)
        return user


def create_user_store(settings: Settings) -> UserStore:
    return _create_user_store_cached(
        store_name=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_users_collection=settings.mongodb_users_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_user_store_cached(
    *,
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_users_collection: str,
    mongodb_connect_timeout_ms: int,
) -> UserStore:
    if store_name == "mongodb":
        return MongoUserStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_users_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryUserStore()


def clear_user_store_cache() -> None:
    _create_user_store_cached.cache_clear()
