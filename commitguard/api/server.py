"""FastAPI application for CommitGuard webhook ingress.

Provides:
- GitHub and GitLab webhook endpoints
- Health, configuration and metrics endpoints
- Structured JSON errors for every failure
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from commitguard import __version__
from commitguard.api.webhooks import router as webhooks_router
from commitguard.api.webhooks.gateway import WebhookGateway
from commitguard.config import Settings, get_settings
from commitguard.events.bus import InMemoryEventBus
from commitguard.exceptions import CommitGuardError
from commitguard.security.signature import SignatureValidator
from commitguard.utils.logging import configure_logging
from commitguard.workers.stages import Pipeline, attach_analyzer, attach_tracker, build_pipeline

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None, pipeline: Pipeline | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use (read from the environment when omitted)
        pipeline: Pre-built pipeline (built from settings at startup when omitted)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(level=settings.log_level, json_format=settings.log_json)

        active = pipeline or build_pipeline(settings)
        app.state.pipeline = active
        app.state.gateway = WebhookGateway(
            validator=SignatureValidator.from_settings(settings),
            tracker=active.tracker,
            bus=active.bus,
            fanout=active.fanout,
        )

        await active.bus.start()
        if isinstance(active.bus, InMemoryEventBus):
            # Single-process mode: run both stages alongside the API
            await attach_analyzer(active)
            await attach_tracker(active)

        logger.info(
            "CommitGuard API started",
            bus=type(active.bus).__name__,
            allow_unsigned=settings.allow_unsigned_webhooks,
        )
        try:
            yield
        finally:
            await active.bus.stop()
            logger.info("CommitGuard API stopped")

    app = FastAPI(
        title="CommitGuard",
        description="Commit security analysis pipeline: webhook ingress",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(webhooks_router)

    @app.exception_handler(CommitGuardError)
    async def commitguard_exception_handler(request: Request, exc: CommitGuardError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log("Request failed", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "message": "Webhook processing failed",
                "code": "PROCESSING_ERROR",
            },
        )

    return app


app = create_app()
