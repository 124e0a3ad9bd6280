"""
Unit tests for RequestLoggingMiddleware — http breadcrumbs and slow-request flags.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter
from fastapi.testclient import TestClient

from transit_guard.asgi import create_app
from transit_guard.config import Environment
from transit_guard.http.middleware import FaultCapturingRoute


def _slow_router() -> APIRouter:
    router = APIRouter(route_class=FaultCapturingRoute)

    @router.get("/slow")
    async def slow() -> dict[str, str]:
        await asyncio.sleep(0.05)
        return {"status": "done"}

    @router.get("/explode")
    async def explode() -> None:
        raise RuntimeError("tracker offline")

    return router


class TestRequestLogging:
    def test_every_request_leaves_http_breadcrumb(self, make_settings, sink) -> None:
        """
        GIVEN the default app
        WHEN /health is requested
        THEN an http breadcrumb records method, path and client.
        """
        client = TestClient(create_app(make_settings(Environment.PRODUCTION), sink))

        client.get("/health", headers={"User-Agent": "kube-health/1.0"})

        http = [crumb for crumb in sink.breadcrumbs if crumb["category"] == "http"]
        assert len(http) == 1
        assert http[0]["message"] == "GET /health"
        assert http[0]["data"]["url"] == "/health"
        assert http[0]["data"]["user_agent"] == "kube-health/1.0"

    def test_fast_request_not_flagged(self, make_settings, sink) -> None:
        client = TestClient(create_app(make_settings(Environment.PRODUCTION), sink))

        client.get("/health")

        assert "performance" not in sink.categories()

    def test_slow_request_flagged(self, make_settings, sink) -> None:
        """
        GIVEN a 1 ms slow-request threshold
        WHEN a route takes longer
        THEN a performance breadcrumb is recorded with the duration.
        """
        settings = make_settings(
            Environment.PRODUCTION, resilience={"slow_request_threshold_ms": 1}
        )
        app = create_app(settings, sink)
        app.include_router(_slow_router())
        client = TestClient(app)

        response = client.get("/slow")

        assert response.status_code == 200
        slow = [crumb for crumb in sink.breadcrumbs if crumb["category"] == "performance"]
        assert len(slow) == 1
        assert slow[0]["message"] == "Slow request"
        assert slow[0]["data"]["duration_ms"] > 1
        assert slow[0]["data"]["url"] == "/slow"

    def test_failed_request_still_logged_before_error_breadcrumb(self, make_settings, sink) -> None:
        app = create_app(make_settings(Environment.PRODUCTION), sink)
        app.include_router(_slow_router())
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/explode")

        assert response.status_code == 500
        assert sink.categories().index("http") < sink.categories().index("error")
