from __future__ import annotations

import logging

from fastapi import Header, HTTPException, status

from fireflies_proxy.core.config import Settings, get_settings
from fireflies_proxy.schemas.auth import AuthResponse, FirefliesAccountResponse, RegisterRequest
from fireflies_proxy.services.fireflies_api_client import (
    FirefliesApiClient,
    create_fireflies_client,
)
from fireflies_proxy.services.meeting_models import User, normalize_email
from fireflies_proxy.services.user_store import UserStore, create_user_store

logger = logging.getLogger(__name__)


class AuthService:
    """Email-header identity: every request carries ``X-User-Email``."""

    def __init__(
        self,
        settings: Settings | None = None,
        user_store: UserStore | None = None,
        fireflies_client: FirefliesApiClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.user_store = user_store or create_user_store(self.settings)
        self.fireflies_client = fireflies_client or create_fireflies_client(self.settings)

    def register(self, payload: RegisterRequest) -> AuthResponse:
        email = normalize_email(payload.email)
        if not email or "@" not in email:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A valid email is required.",
            )

        user = self.user_store.get_by_email(email)
        if not user:
            logger.info("Registering new user email=%s", email)
            try:
                user = self.user_store.create(email)
            except ValueError:
                # Concurrent registration of the same email.
                user = self.user_store.get_by_email(email)
                if not user:
                    raise
        return self._build_auth_response(user)

    def get_current_user(self, email: str | None) -> User:
        normalized_email = normalize_email(email or "")
        if not normalized_email:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Required header missing: X-User-Email",
            )

        user = self.user_store.get_by_email(normalized_email)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found. Register first via POST /auth/register",
            )
        return user

    def verify_fireflies(self) -> FirefliesAccountResponse:
        provider_user = self.fireflies_client.fetch_identity()
        return FirefliesAccountResponse(**provider_user.to_dict())

    def to_auth_response(self, user: User) -> AuthResponse:
        return self._build_auth_response(user)

    def _build_auth_response(self, user: User) -> AuthResponse:
        return AuthResponse(
            email=user.email,
            message=f"Send header X-User-Email: {user.email} on all requests",
        )


def require_current_user(
    x_user_email: str | None = Header(default=None, alias="X-User-Email"),
) -> User:
    service = AuthService()
    return service.get_current_user(x_user_email)
