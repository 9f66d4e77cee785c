"""API application factory."""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from tradeleague.core.config import settings
from tradeleague.core.exceptions import register_exception_handlers
from tradeleague.core.logging import fields, get_logger, request_id_var
from tradeleague.schemas.common import ErrorResponse
from tradeleague.services.container import ServiceContainer

from .routes import cron, health, rankings, stocks, trading


logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services on startup unless the caller supplied them."""
    from tradeleague.cache.cache import Cache
    from tradeleague.cache.client import close_valkey_client
    from tradeleague.database.connection import close_database, get_session_factory

    owns_services = app.state.services is None
    if owns_services:
        session_factory = await get_session_factory()
        app.state.services = ServiceContainer.build(
            session_factory,
            settings,
            chart_cache=Cache(prefix="chart", default_ttl=settings.chart_cache_ttl),
        )

    yield

    if owns_services:
        try:
            await app.state.services.aclose()
            await close_valkey_client()
            await close_database()
        except Exception as e:
            logger.warning(f"Resource cleanup failed: {e}")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag the request with an ID and log one line when it completes.

    An incoming ``X-Request-ID`` is reused so scheduler and client logs line
    up. Query strings are left out of the log line.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)",
                **fields(method=request.method, status_code=response.status_code, duration_ms=elapsed_ms),
            )
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response


def create_api_app(services: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the API application.

    ``services`` is built from settings during startup when not given.
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Simulated stock trading league: trading ledger, candles and rankings",
        root_path=settings.root_path,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse, "description": "Bad Request"},
            401: {"model": ErrorResponse, "description": "Unauthorized"},
            404: {"model": ErrorResponse, "description": "Not Found"},
            409: {"model": ErrorResponse, "description": "Conflict"},
            500: {"model": ErrorResponse, "description": "Internal Server Error"},
            503: {"model": ErrorResponse, "description": "Service Unavailable"},
        },
    )
    app.state.services = services

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(cron.router, prefix="/cron", tags=["Cron"])
    app.include_router(trading.router, tags=["Trading"])
    app.include_router(rankings.router, prefix="/rankings", tags=["Rankings"])
    app.include_router(stocks.router, prefix="/stocks", tags=["Stocks"])

    return app
