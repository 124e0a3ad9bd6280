"""
Request logging middleware — first stage of the request pipeline.

Logs every request/response pair, leaves an ``http`` breadcrumb for the
telemetry trail, and flags requests slower than the configured threshold with
a warning and a ``performance`` breadcrumb.
"""

from __future__ import annotations

import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from transit_guard.domain.ports import TelemetrySink

log = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Structured request logging with slow-request detection."""

    def __init__(
        self,
        app: ASGIApp,
        sink: TelemetrySink,
        slow_request_threshold_ms: int = 3000,
    ) -> None:
        super().__init__(app)
        self._sink = sink
        self._slow_request_threshold_ms = slow_request_threshold_ms

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else None

        log.info("request.started", method=method, path=path)
        self._sink.breadcrumb(
            f"{method} {path}",
            "http",
            {
                "method": method,
                "url": path,
                "ip": client_ip,
                "user_agent": request.headers.get("user-agent"),
            },
        )

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
            log.info(
                "request.completed",
                method=method,
                path=path,
                status=status_code,
                duration_ms=duration_ms,
            )
            if duration_ms > self._slow_request_threshold_ms:
                log.warning("request.slow", method=method, path=path, duration_ms=duration_ms)
                self._sink.breadcrumb(
                    "Slow request",
                    "performance",
                    {"duration_ms": duration_ms, "method": method, "url": path},
                )
