"""
salesflow.api.app

FastAPI app factory for the SalesFlow service.

Responsibilities:
- Build the FastAPI application and register routers, middleware and error handlers.
- Initialize and dispose shared infrastructure (DB engine/session factory, HTTP clients).
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from salesflow.api.errors import install_error_handlers
from salesflow.api.routers.affiliates import router as affiliates_router
from salesflow.api.routers.automations import router as automations_router
from salesflow.api.routers.catalog import router as catalog_router
from salesflow.api.routers.contacts import router as contacts_router
from salesflow.api.routers.dev_auth import router as dev_auth_router
from salesflow.api.routers.funnels import router as funnels_router
from salesflow.api.routers.health import router as health_router
from salesflow.api.routers.internal.router import router as internal_router
from salesflow.api.routers.merge_tags import router as merge_tags_router
from salesflow.api.routers.pos import router as pos_router
from salesflow.api.routers.public import router as public_router
from salesflow.api.routers.workflows import router as workflows_router
from salesflow.db.init_db import init_db
from salesflow.db.session import create_engine, create_sessionmaker
from salesflow.observability.logging import configure_logging, get_logger
from salesflow.observability.middleware import RequestContextMiddleware
from salesflow.settings import Settings

log = get_logger(__name__)

INTERNAL_BASE_URL = "http://salesflow.internal"


def create_app(*, settings: Settings) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env)
        # Create the async DB engine and session factory once and stash them on app.state.
        # Routers obtain sessions via dependencies (see `salesflow.api.deps`).
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        if settings.env in ("dev", "test"):
            # Dev/test convenience: create tables automatically. Prod should use Alembic migrations.
            await init_db(engine)

        timeout = httpx.Timeout(settings.http_timeout_seconds)
        app.state.http = httpx.AsyncClient(timeout=timeout)
        if settings.payment_gateway_base_url:
            app.state.gateway_http = httpx.AsyncClient(
                base_url=settings.payment_gateway_base_url, timeout=timeout
            )
        else:
            # No hosted gateway: checkout calls the in-process one mounted under /internal/v1/payments.
            app.state.gateway_http = httpx.AsyncClient(
                transport=httpx.ASGITransport(app=app), base_url=INTERNAL_BASE_URL, timeout=timeout
            )
        try:
            yield
        finally:
            await app.state.gateway_http.aclose()
            await app.state.http.aclose()
            # Dispose the engine to close pools/FDs gracefully.
            await engine.dispose()
            log.info("shutdown")

    app = FastAPI(
        title="SalesFlow",
        version="0.1.0",
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(RequestContextMiddleware)
    install_error_handlers(app)

    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(internal_router)
    app.include_router(merge_tags_router)
    app.include_router(contacts_router)
    app.include_router(catalog_router)
    app.include_router(pos_router)
    app.include_router(funnels_router)
    app.include_router(public_router)
    app.include_router(affiliates_router)
    app.include_router(automations_router)
    app.include_router(workflows_router)

    # Receipt attachments and other public uploads.
    app.mount(
        "/storage",
        StaticFiles(directory=settings.receipt_storage_dir, check_dir=False),
        name="storage",
    )

    return app


# --- Module Notes -----------------------------------------------------------
# App composition stays here; business logic stays in routers/services. The job
# runner reuses this factory so its services see the same app.state wiring.
