"""FastAPI application factory.

Creates the app with logging middleware, CORS, lifespan events for
database initialization and integration wiring, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.suitecrm_sync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.suitecrm_sync.api.v1.router import router as v1_router
from src.suitecrm_sync.config import get_settings
from src.suitecrm_sync.core.database import close_db, get_engine, get_session, init_db
from src.suitecrm_sync.settings_store import DatabaseSettingsStore
from src.suitecrm_sync.survey.engine import RemoteControlSurveyEngine
from src.suitecrm_sync.sync.service import IntegrationService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and wire the integration, dispose on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog(settings)

    report = await init_db()
    log.info("startup.schema", **report)

    store = DatabaseSettingsStore(get_session)
    survey_engine = RemoteControlSurveyEngine(
        rpc_url=settings.LIMESURVEY_RPC_URL,
        username=settings.LIMESURVEY_USER,
        password=settings.LIMESURVEY_PASSWORD,
    )
    app.state.integration = IntegrationService(
        store=store,
        session_factory=get_session,
        engine=get_engine(),
        survey_engine=survey_engine,
        settings=settings,
    )
    log.info("startup.integration_ready", modules=settings.get_supported_modules())

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="SuiteCRM Survey Sync",
        version="0.1.0",
        description="Creates SuiteCRM records from completed LimeSurvey responses",
        lifespan=lifespan,
    )

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Outermost: logs every request with timing
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    return app


# Module-level app for uvicorn
app = create_app()
