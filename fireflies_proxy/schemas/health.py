from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    version: str
    data_store: str
    fireflies_api_configured: bool
    webhook_signature_required: bool
    timestamp: datetime
