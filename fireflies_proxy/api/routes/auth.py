from fastapi import APIRouter, Depends

from fireflies_proxy.schemas.auth import AuthResponse, FirefliesAccountResponse, RegisterRequest
from fireflies_proxy.services.auth_service import AuthService, require_current_user
from fireflies_proxy.services.meeting_models import User

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse)
def register(payload: RegisterRequest) -> AuthResponse:
    service = AuthService()
    return service.register(payload)


@router.get("/me", response_model=AuthResponse)
def get_me(current_user: User = Depends(require_current_user)) -> AuthResponse:
    service = AuthService()
    return service.to_auth_response(current_user)


@router.get("/fireflies", response_model=FirefliesAccountResponse)
def verify_fireflies(
    current_user: User = Depends(require_current_user),
) -> FirefliesAccountResponse:
    service = AuthService()
    return service.verify_fireflies()
