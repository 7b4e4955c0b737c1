"""FastAPI application entry-point.

Assembles routers, middleware, exception handlers, and lifecycle hooks.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from lazywrite.adapters.inbound.rest.routers import (
    generation_router,
    health_router,
    providers_router,
)
from lazywrite.config import Settings, get_settings
from lazywrite.dependencies import Container, build_container
from lazywrite.shared.errors import register_exception_handlers
from lazywrite.shared.middleware import (
    LoggingMiddleware,
    MetricsMiddleware,
    RequestIdMiddleware,
)
from lazywrite.shared.observability import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: Settings = app.state.settings
    container: Container = app.state.container
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        port=settings.app_port,
        internal_http=settings.book_use_internal_http,
    )

    yield

    await container.aclose()
    logger.info("application_shutdown")


def create_app(settings: Settings | None = None, *, container: Container | None = None) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance."""
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.is_production,
    )

    app = FastAPI(
        title="LazyWrite",
        description=(
            "Generates illustrated educational children's books from a single prompt. "
            "Text and illustrations come from rate-limited AI providers called through "
            "a key-rotating, retrying, multi-provider fallback layer."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Store settings and the wired container in app state
    app.state.settings = settings
    app.state.container = container or build_container(settings)

    # ── Middleware (order matters: first added = outermost) ───
    cors_origins = settings.cors_origins
    # CORSMiddleware rejects ["*"] together with allow_credentials=True.
    allow_all_origins = "*" in cors_origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if allow_all_origins else cors_origins,
        allow_origin_regex=".*" if allow_all_origins else None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Exception handlers ───────────────────────────────────
    register_exception_handlers(app, settings)

    # ── REST routers ─────────────────────────────────────────
    app.include_router(health_router)
    app.include_router(generation_router)
    app.include_router(providers_router)

    return app


def run() -> None:
    """Console entry-point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "lazywrite.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        log_config=None,
    )
