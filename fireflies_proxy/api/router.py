from fastapi import APIRouter

from fireflies_proxy.api.routes.auth import router as auth_router
from fireflies_proxy.api.routes.health import router as health_router
from fireflies_proxy.api.routes.meetings import router as meetings_router
from fireflies_proxy.api.routes.transcripts import router as transcripts_router
from fireflies_proxy.api.routes.webhooks import router as webhooks_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(auth_router)
api_router.include_router(meetings_router)
api_router.include_router(transcripts_router)
api_router.include_router(webhooks_router)
