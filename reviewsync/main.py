"""
FastAPI application factory.
Run with: uvicorn reviewsync.main:app
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from reviewsync.config import settings
from reviewsync.api.router import api_router
from reviewsync.dependencies import close_progress_sink
from reviewsync.models.database import close_db, init_db
from reviewsync.observability.logging import setup_logging
from reviewsync.pipeline.errors import FailureEntry, PipelineError, http_status_for

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[FastApiIntegration()],
            traces_sample_rate=0.1,
        )

    # Local development runs without migrations
    if settings.DEBUG:
        await init_db()

    logger.info(
        "app_started",
        version=settings.APP_VERSION,
        jotform_configured=bool(settings.JOTFORM_API_KEY and settings.JOTFORM_FORM_ID),
        shopify_configured=bool(settings.SHOPIFY_STORE_DOMAIN and settings.SHOPIFY_ACCESS_TOKEN),
        title_rules_file=settings.TITLE_RULES_FILE,
    )

    yield

    await close_progress_sink()
    await close_db()
    logger.info("app_stopped")


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        entry = FailureEntry.from_exception(exc)
        return JSONResponse(
            status_code=http_status_for(exc.error_code),
            content={"detail": entry.model_dump(mode="json")},
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("database_error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Review Sync",
        description=(
            "Moves Jotform product reviews through title cleaning and Shopify "
            "matching into normalized specifications."
        ),
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.PROMETHEUS_ENABLED:
        from prometheus_client import make_asgi_app
        app.mount("/metrics", make_asgi_app())

    _register_error_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
