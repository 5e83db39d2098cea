import asyncio
import logging

from fastapi import APIRouter, Request, Response, status

from fireflies_proxy.core.config import get_settings
from fireflies_proxy.schemas.webhook import WebhookOutcome, WebhookResponse
from fireflies_proxy.services.fireflies_api_client import create_fireflies_client
from fireflies_proxy.services.meeting_store import create_meeting_store
from fireflies_proxy.services.transcript_store import create_transcript_store
from fireflies_proxy.services.webhook_coordinator import WebhookCoordinator

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

_SIGNATURE_HEADERS = ("x-fireflies-signature", "x-hub-signature")


@router.post("/fireflies", response_model=WebhookResponse)
async def receive_fireflies_webhook(request: Request, response: Response) -> WebhookResponse:
    raw_body = await request.body()
    signature = _extract_signature(request)
    logger.info(
        "Webhook received provider=fireflies path=%s bytes=%d has_signature=%s",
        str(request.url.path),
        len(raw_body),
        bool(signature),
    )

    coordinator = _build_coordinator()
    result = await asyncio.to_thread(coordinator.handle, raw_body, signature)
    if result.status == WebhookOutcome.rejected:
        response.status_code = status.HTTP_401_UNAUTHORIZED

    logger.info(
        "Webhook processed provider=fireflies status=%s meeting_id=%s local_meeting_id=%s",
        result.status.value,
        result.meeting_id,
        result.local_meeting_id,
    )
    return result


@router.get("/fireflies/health")
def webhook_health() -> dict[str, str]:
    return {"status": "healthy"}


def _build_coordinator() -> WebhookCoordinator:
    settings = get_settings()
    return WebhookCoordinator(
        webhook_secret=settings.fireflies_webhook_secret,
        require_signature=settings.fireflies_webhook_require_signature,
        meeting_store=create_meeting_store(settings),
        transcript_store=create_transcript_store(settings),
        fireflies_client=create_fireflies_client(settings),
    )


def _extract_signature(request: Request) -> str | None:
    for header_name in _SIGNATURE_HEADERS:
        value = request.headers.get(header_name)
        if value and value.strip():
            return value.strip()
    return None
