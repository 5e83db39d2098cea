from fastapi import APIRouter

from fireflies_proxy.core.config import get_settings
from fireflies_proxy.schemas.health import HealthResponse
from fireflies_proxy.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def healthcheck() -> HealthResponse:
    settings = get_settings()
    service = HealthService(settings)
    return service.get_status()
