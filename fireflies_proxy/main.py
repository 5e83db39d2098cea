import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fireflies_proxy.api.router import api_router
from fireflies_proxy.core.config import get_settings
from fireflies_proxy.schemas.transcript import TranscriptPendingResponse
from fireflies_proxy.services.fireflies_api_client import (
    FirefliesApiError,
    FirefliesConfigurationError,
    FirefliesRateLimitedError,
)
from fireflies_proxy.services.meeting_store import ExternalIdConflictError
from fireflies_proxy.services.transcript_service import TranscriptNotReadyError


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_application() -> FastAPI:
    _configure_logging()
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)
    app.add_exception_handler(TranscriptNotReadyError, _handle_transcript_not_ready)
    app.add_exception_handler(FirefliesConfigurationError, _handle_fireflies_configuration_error)
    app.add_exception_handler(FirefliesRateLimitedError, _handle_fireflies_rate_limited)
    app.add_exception_handler(FirefliesApiError, _handle_fireflies_api_error)
    app.add_exception_handler(ExternalIdConflictError, _handle_external_id_conflict)

    return app


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info(
        "Starting %s env=%s data_store=%s",
        settings.app_name,
        settings.app_env,
        settings.data_store,
    )
    if not settings.fireflies_webhook_secret:
        logger.warning("FIREFLIES_WEBHOOK_SECRET is not set; webhook signatures will not be verified")
    elif not settings.fireflies_webhook_require_signature:
        logger.warning(
            "Unsigned Fireflies webhooks are accepted; "
            "set FIREFLIES_WEBHOOK_REQUIRE_SIGNATURE=true to reject them",
        )
    yield


def _handle_transcript_not_ready(request: Request, exc: TranscriptNotReadyError) -> JSONResponse:
    logger.info("Transcript not ready meeting_id=%s path=%s", exc.meeting_id, request.url.path)
    body = TranscriptPendingResponse(meeting_id=exc.meeting_id, detail=exc.detail)
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump())


def _handle_fireflies_configuration_error(
    request: Request,
    exc: FirefliesConfigurationError,
) -> JSONResponse:
    logger.error("Fireflies not configured path=%s error=%s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


def _handle_fireflies_rate_limited(request: Request, exc: FirefliesRateLimitedError) -> JSONResponse:
    logger.warning(
        "Fireflies rate limited path=%s retry_after_s=%d",
        request.url.path,
        exc.retry_after_seconds,
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": exc.message, "retry_after_seconds": int(exc.retry_after_seconds)},
        headers={"Retry-After": str(max(int(exc.retry_after_seconds), 1))},
    )


def _handle_fireflies_api_error(request: Request, exc: FirefliesApiError) -> JSONResponse:
    logger.error(
        "Fireflies API error path=%s upstream_status=%s error=%s",
        request.url.path,
        exc.status_code,
        exc.message,
    )
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": exc.message, "upstream_status": exc.status_code},
    )


def _handle_external_id_conflict(request: Request, exc: ExternalIdConflictError) -> JSONResponse:
    logger.warning("External id conflict path=%s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "Fireflies meeting id is already bound to another meeting."},
    )


app = create_application()
