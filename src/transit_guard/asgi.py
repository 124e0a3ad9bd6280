"""
FastAPI application factory.

Wires the request pipeline in its fixed stage order:

    RequestLoggingMiddleware → FaultCapturingRoute endpoints → not_found → handle

and exposes the operational endpoints used by the container orchestrator:
  - GET /health — liveness
  - GET /ready  — readiness (503 once graceful shutdown has begun)
  - GET /info   — metadata

Domain routers are included by the caller with ``route_class=FaultCapturingRoute``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from transit_guard import __version__
from transit_guard.config import AppSettings
from transit_guard.domain.ports import TelemetrySink
from transit_guard.http.middleware import (
    FaultCapturingRoute,
    RequestErrorHandler,
    install_error_handling,
)
from transit_guard.http.request_logging import RequestLoggingMiddleware
from transit_guard.lifecycle.shutdown import ShutdownState

log = structlog.get_logger()

SINK_FLUSH_TIMEOUT_SECONDS = 2.0


def _operational_router() -> APIRouter:
    router = APIRouter(route_class=FaultCapturingRoute)

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check: the event loop is serving requests."""
        return {"status": "healthy"}

    @router.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        """
        Readiness check.

        Returns 503 once the shutdown controller has left RUNNING so the load
        balancer stops routing new traffic while in-flight requests drain.
        """
        controller = getattr(request.app.state, "shutdown", None)
        if controller is not None and controller.state is not ShutdownState.RUNNING:
            return JSONResponse(
                status_code=503,
                content={"status": "shutting_down", "state": controller.state.value},
            )
        return JSONResponse(status_code=200, content={"status": "ready"})

    @router.get("/info")
    async def info(request: Request) -> dict[str, Any]:
        """Application metadata for debugging and monitoring."""
        settings: AppSettings = request.app.state.settings
        return {
            "name": "transit-guard",
            "version": __version__,
            "environment": settings.environment.value,
        }

    return router


def create_app(settings: AppSettings, sink: TelemetrySink) -> FastAPI:
    """
    Build the FastAPI app with request logging and error handling installed.

    The telemetry sink is closed on lifespan shutdown, after flushing queued
    fault reports.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("asgi.startup", environment=settings.environment.value, version=__version__)
        yield
        log.info("asgi.shutdown")
        if not sink.close(SINK_FLUSH_TIMEOUT_SECONDS):
            log.warning("asgi.telemetry_flush_incomplete", timeout_seconds=SINK_FLUSH_TIMEOUT_SECONDS)

    app = FastAPI(
        title="transit-guard",
        version=__version__,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.router.route_class = FaultCapturingRoute
    app.state.settings = settings

    app.add_middleware(
        RequestLoggingMiddleware,
        sink=sink,
        slow_request_threshold_ms=settings.resilience.slow_request_threshold_ms,
    )
    install_error_handling(app, RequestErrorHandler(sink, settings.environment))
    app.include_router(_operational_router())

    return app
