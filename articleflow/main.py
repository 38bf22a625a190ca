import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from articleflow.api import article_styles, billing, health, onboarding
from articleflow.core.config import Settings, settings, validate_config
from articleflow.core.container import ServiceContainer, build_services
from articleflow.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from articleflow.core.logging import configure_logging
from articleflow.core.middleware.request_id import RequestIdMiddleware


def create_app(services: Optional[ServiceContainer] = None, settings_obj: Optional[Settings] = None) -> FastAPI:
    """Build the API app. Tests pass a prebuilt container with fakes."""
    cfg = settings_obj or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("articleflow")
        logger.info("Starting ArticleFlow backend...")
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(cfg)
        try:
            yield
        finally:
            dispatcher = app.state.services.sync_scheduler.dispatcher
            if hasattr(dispatcher, "shutdown"):
                dispatcher.shutdown(wait=False)
            logger.info("Stopping ArticleFlow backend...")

    app = FastAPI(title="ArticleFlow - Backend", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # CORS (adjust origins in production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.APP_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(article_styles.router, prefix="/api", tags=["article-styles"])
    app.include_router(onboarding.router, prefix="/api", tags=["onboarding"])
    app.include_router(billing.router, prefix="/api", tags=["billing"])
    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(health.router, tags=["health"])
    return app


def _startup_app() -> FastAPI:
    configure_logging(settings.ENV, settings.LOG_LEVEL)
    validate_config(strict=settings.CONFIG_STRICT)
    return create_app()


app = _startup_app()
