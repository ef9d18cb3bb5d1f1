"""
FastAPI application entry point.
"""

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from surveyreach.config import Settings, get_settings
from surveyreach.dependencies import ServiceContainer
from surveyreach.escalation.dispatcher import NotificationDispatcher
from surveyreach.escalation.router import router as escalation_router
from surveyreach.escalation.scheduler import EscalationScheduler
from surveyreach.notifications.email.factory import get_email_provider
from surveyreach.notifications.email.interface import EmailProvider
from surveyreach.participants.registry import BatchRegistry
from surveyreach.participants.router import router as participants_router
from surveyreach.participants.tokens import SurveyLinkTokens
from surveyreach.reminders.router import router as reminders_router
from surveyreach.reminders.service import ReminderService
from surveyreach.responses.router import router as responses_router
from surveyreach.responses.service import ResponseIngester
from surveyreach.shared.database import DatabaseManager, utcnow
from surveyreach.shared.exceptions import (
    AppException,
    InvalidTokenError,
    NotFoundError,
    ValidationError,
)
from surveyreach.shared.logging import get_logger, setup_logging
from surveyreach.shared.middleware import correlation_id_middleware
from surveyreach.surveys.router import router as surveys_router
from surveyreach.telephony.config import VoiceConfig, get_voice_config
from surveyreach.telephony.factory import create_voice_provider
from surveyreach.telephony.interface import VoiceProvider
from surveyreach.telephony.webhooks.handler import WebhookIngester
from surveyreach.telephony.webhooks.router import router as webhooks_router

logger = get_logger(__name__)


def build_services(
    settings: Settings,
    db_manager: DatabaseManager,
    voice_provider: VoiceProvider,
    email_provider: EmailProvider,
    voice_config: VoiceConfig,
    clock: Callable[[], datetime] = utcnow,
) -> ServiceContainer:
    """Wire every service against one database and one set of providers."""
    session_factory = db_manager.session_factory
    tokens = SurveyLinkTokens(
        secret=settings.link_token_secret,
        ttl=timedelta(days=settings.link_token_ttl_days),
        base_url=settings.public_base_url,
        clock=clock,
    )
    reminders = ReminderService(
        session_factory,
        email_provider,
        tokens,
        send_hour=settings.reminder_send_hour,
        clock=clock,
    )
    dispatcher = NotificationDispatcher(
        session_factory,
        voice_provider,
        call_timeout_seconds=voice_config.call_timeout_seconds,
        clock=clock,
    )
    scheduler = EscalationScheduler(
        session_factory,
        dispatcher,
        reminder_service=reminders if settings.reminders_enabled else None,
        interval_seconds=settings.scheduler_interval_seconds,
        max_concurrent_calls=settings.scheduler_max_concurrent_calls,
        stale_claim_minutes=settings.stale_claim_minutes,
        clock=clock,
    )
    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        registry=BatchRegistry(
            session_factory,
            tokens,
            default_delay_minutes=settings.escalation_default_delay_minutes,
            clock=clock,
        ),
        reminders=reminders,
        responses=ResponseIngester(session_factory, tokens, clock=clock),
        webhooks=WebhookIngester(session_factory, voice_config.webhook_secret, clock=clock),
        scheduler=scheduler,
    )


def _error_response(status_code: int, exc: AppException) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": exc.code, "message": exc.message, "details": exc.details}},
    )


def create_app(
    settings: Settings | None = None,
    db_manager: DatabaseManager | None = None,
    voice_provider: VoiceProvider | None = None,
    email_provider: EmailProvider | None = None,
    voice_config: VoiceConfig | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Every collaborator can be injected so isolated instances can run side by
    side under test; omitted ones are built from the environment.
    """
    settings = settings or get_settings()
    voice_config = voice_config or get_voice_config()
    db_manager = db_manager or DatabaseManager(settings.database_url)
    voice_provider = voice_provider or create_voice_provider(voice_config)
    email_provider = email_provider or get_email_provider()

    services = build_services(
        settings,
        db_manager,
        voice_provider,
        email_provider,
        voice_config,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(settings.log_level)
        logger.info("Application starting", extra={"env": settings.app_env})

        if settings.database_auto_create:
            await db_manager.create_all()
            logger.info("Database tables ensured")

        if settings.scheduler_enabled:
            await services.scheduler.start()

        yield

        logger.info("Shutting down application")
        await services.scheduler.stop()
        await voice_provider.aclose()
        await db_manager.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="surveyreach API",
        description="Survey delivery with email reminders and voice escalation",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.services = services

    # Map domain exceptions to HTTP responses
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(InvalidTokenError)
    async def _invalid_token(_: Request, exc: InvalidTokenError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, exc)

    @app.exception_handler(ValidationError)
    async def _validation(_: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, exc)

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.middleware("http")(correlation_id_middleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(surveys_router)
    app.include_router(participants_router)
    app.include_router(reminders_router)
    app.include_router(responses_router)
    app.include_router(escalation_router)
    app.include_router(webhooks_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app
