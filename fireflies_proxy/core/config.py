from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Fireflies Proxy API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    fireflies_webhook_secret: str = ""
    fireflies_webhook_require_signature: bool = False
    fireflies_api_url: str = "https://api.fireflies.ai/graphql"
    fireflies_api_key: str = ""
    fireflies_api_timeout_seconds: float = 10.0
    fireflies_api_user_agent: str = "FirefliesProxy/1.0"
    fireflies_user_cache_ttl_seconds: float = 300.0
    fireflies_transcript_cache_ttl_seconds: float = 300.0
    fireflies_rate_limit_backoff_seconds: float = 300.0
    data_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "fireflies_proxy"
    mongodb_meetings_collection: str = "meetings"
    mongodb_transcripts_collection: str = "transcripts"
    mongodb_users_collection: str = "users"
    mongodb_connect_timeout_ms: int = 2000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("data_store", mode="before")
    @classmethod
    def normalize_data_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("fireflies_api_key", "fireflies_webhook_secret", mode="before")
    @classmethod
    def strip_secret(cls, value: str | None) -> str:
        return (value or "").strip()

    @field_validator("fireflies_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_fireflies_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator(
        "fireflies_user_cache_ttl_seconds",
        "fireflies_transcript_cache_ttl_seconds",
        "fireflies_rate_limit_backoff_seconds",
        mode="before",
    )
    @classmethod
    def normalize_window_seconds(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value < 0:
            return 300.0
        return parsed_value

    @field_validator("mongodb_connect_timeout_ms", mode="before")
    @classmethod
    def normalize_mongodb_timeout(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 2000
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
