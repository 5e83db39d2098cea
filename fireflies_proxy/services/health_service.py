from datetime import UTC, datetime

from fireflies_proxy.core.config import Settings
from fireflies_proxy.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=self.settings.app_name,
            version=self.settings.app_version,
            data_store=self.settings.data_store,
            fireflies_api_configured=bool(self.settings.fireflies_api_key),
            webhook_signature_required=bool(
                self.settings.fireflies_webhook_secret
                and self.settings.fireflies_webhook_require_signature,
            ),
            timestamp=datetime.now(UTC),
        )
