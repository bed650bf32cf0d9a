# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
FastAPI Gateway Application

Main entry point for the Portfolio Guard API.

Startup builds the usage store and the service container, starts the
notifier batch loop and the periodic cleanup sweep. Shutdown reverses
all of it.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.async_base import BackgroundTasks, Clock, Lifecycle, utcnow
from ..core.exceptions import (
    BlacklistError,
    ContentSourceError,
    ContextBuildFailure,
    GuardError,
    RateLimitExceeded,
    ReflinkError,
    ReflinkInvalid,
    SecurityViolation,
    StoreConflict,
    StoreUnavailable,
)
from ..core.settings import Settings, get_settings
from ..data.redis import build_store
from ..data.store import UsageStore
from ..observability.logging import configure_logging
from ..services import build_services
from .admin_routes import router as admin_router
from .health import router as health_router
from .request_context import RequestContextMiddleware
from .routes import router as api_router

logger = logging.getLogger(__name__)

_REASON_STATUS = {
    "not_found": 404,
    "budget_exhausted": 402,
    "duplicate_code": 409,
    "code_generation_exhausted": 409,
    "already_reinstated": 409,
}


def status_for(exc: GuardError) -> int:
    """HTTP status for a known error."""
    reason = exc.details.get("reason")
    if isinstance(exc, RateLimitExceeded):
        return 429
    if isinstance(exc, SecurityViolation):
        return 403
    if isinstance(exc, ReflinkInvalid):
        return _REASON_STATUS.get(reason, 403)
    if isinstance(exc, ReflinkError | BlacklistError):
        return _REASON_STATUS.get(reason, 400)
    if isinstance(exc, ContentSourceError):
        return 404 if reason == "not_found" else 400
    if isinstance(exc, StoreConflict):
        return 409
    if isinstance(exc, StoreUnavailable | ContextBuildFailure):
        return 503
    return 400


# ============================================================
# LIFECYCLE
# ============================================================


def build_lifecycle(
    app: FastAPI,
    settings: Settings,
    store: UsageStore | None,
    clock: Clock,
    configure_log: bool,
) -> Lifecycle:
    lifecycle = Lifecycle()
    background = BackgroundTasks()

    @lifecycle.on_startup
    async def startup_logging():
        if configure_log:
            configure_logging(
                level=settings.observability.level,
                format=settings.observability.format,
                use_colors=settings.is_development,
            )

    @lifecycle.on_startup
    async def startup_services():
        usage_store = store or await build_store(settings, clock)
        app.state.services = await build_services(settings, usage_store, clock=clock)
        logger.info(f"Services initialized ({settings.store.backend} store)")

    @lifecycle.on_startup
    async def startup_background():
        services = app.state.services
        services.notifier.start()
        background.run_periodic(
            settings.rate_limit.cleanup_interval_seconds, services.run_cleanup, name="cleanup"
        )

    @lifecycle.on_shutdown
    async def shutdown_services():
        services = getattr(app.state, "services", None)
        if services is not None:
            await services.close()
            app.state.services = None
        logger.info("Services closed")

    @lifecycle.on_shutdown
    async def shutdown_background():
        await background.cancel_all()
        logger.info("Background tasks stopped")

    return lifecycle


# ============================================================
# APPLICATION
# ============================================================


def create_app(
    settings: Settings | None = None,
    store: UsageStore | None = None,
    clock: Clock = utcnow,
    configure_log: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with build_lifecycle(app, settings, store, clock, configure_log).run():
            yield

    app = FastAPI(
        title=settings.app_name,
        description="AI access control and context assembly for a portfolio assistant",
        version=settings.app_version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = None

    # --------------------------------------------------------
    # MIDDLEWARE
    # --------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )

    app.add_middleware(
        RequestContextMiddleware,
        header_name="X-Request-ID",
        log_requests=True,
        trusted_proxies=settings.security.trusted_proxies,
    )

    # --------------------------------------------------------
    # EXCEPTION HANDLERS
    # --------------------------------------------------------

    @app.exception_handler(GuardError)
    async def guard_error_handler(request: Request, exc: GuardError):
        status_code = status_for(exc)
        request_id = getattr(request.state, "request_id", None)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            f"{exc.__class__.__name__} on {request.url.path}: {exc.message} "
            f"(request_id={request_id})"
        )

        headers = {}
        if isinstance(exc, RateLimitExceeded):
            headers["X-RateLimit-Limit"] = str(exc.limit)
            headers["X-RateLimit-Remaining"] = "0"
            headers["X-RateLimit-Reset"] = exc.reset_time.isoformat()
            headers["Retry-After"] = str(exc.retry_after or 60)
        elif status_code == 503:
            headers["Retry-After"] = "30"

        return JSONResponse(
            status_code=status_code,
            content={**exc.to_dict(), "status_code": status_code, "request_id": request_id},
            headers=headers,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.detail,
                "status_code": exc.status_code,
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "status_code": 500,
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    # --------------------------------------------------------
    # ROUTES
    # --------------------------------------------------------

    app.include_router(health_router, tags=["Health"])
    app.include_router(api_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")

    return app


__all__ = ["create_app", "status_for"]
