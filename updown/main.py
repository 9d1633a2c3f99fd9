from __future__ import annotations

import contextlib

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.exceptions import HTTPException

from updown.config import Settings, get_settings
from updown.context import AppContext
from updown.exceptions import AppError, app_error_handler, http_error_handler
from updown.log_config import configure_logging
from updown.middleware import RateLimitMiddleware, LoggingMiddleware, SecurityHeadersMiddleware
from updown.migrator import open_migrator
from updown.routers.admin import router as admin_router
from updown.routers.users import router as users_router
from updown.services.scheduler import start_scheduler, stop_scheduler

log = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """App factory; run with ``uvicorn updown.main:create_app --factory``."""
    settings = settings or get_settings()
    configure_logging(settings.DEBUG)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("app.starting", env=settings.ENVIRONMENT, version=settings.APP_VERSION)
        # A MigrationError here aborts startup: never serve on an unknown schema.
        async with open_migrator(settings) as migrator:
            await migrator.migrate()
        ctx = AppContext.create(settings)
        app.state.ctx = ctx
        app.state.scheduler = start_scheduler(ctx)
        log.info("app.ready")
        try:
            yield
        finally:
            log.info("app.shutting_down")
            stop_scheduler(app.state.scheduler)
            await ctx.close()
            log.info("app.stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
        redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
        lifespan=lifespan,
    )
    app.state.scheduler = None

    # ── Middleware ────────────────────────────────────────────────────────────
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware, settings=settings)
    app.add_middleware(LoggingMiddleware, settings=settings)
    app.add_middleware(RateLimitMiddleware, settings=settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["X-API-Key", "Content-Type"],
    )

    # ── Exception handlers ────────────────────────────────────────────────────
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(users_router)
    app.include_router(admin_router)
    return app
