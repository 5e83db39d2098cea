from fastapi import APIRouter, Depends, Query

from fireflies_proxy.core.config import get_settings
from fireflies_proxy.schemas.transcript import UpstreamTranscriptsResponse
from fireflies_proxy.services.auth_service import require_current_user
from fireflies_proxy.services.meeting_models import User
from fireflies_proxy.services.transcript_service import TranscriptService

router = APIRouter(prefix="/transcripts", tags=["transcripts"])


@router.get("/upstream", response_model=UpstreamTranscriptsResponse)
def list_upstream_transcripts(
    limit: int = Query(default=20, ge=1, le=50),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(require_current_user),
) -> UpstreamTranscriptsResponse:
    service = TranscriptService(get_settings())
    return service.list_upstream(limit=limit, offset=offset)
