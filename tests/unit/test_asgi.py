"""
Unit tests for the FastAPI application factory — health endpoints and lifespan.

Uses FastAPI's TestClient; the shutdown controller is a stand-in exposing
only ``state``.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from transit_guard import __version__
from transit_guard.asgi import SINK_FLUSH_TIMEOUT_SECONDS, create_app
from transit_guard.config import Environment
from transit_guard.lifecycle.shutdown import ShutdownState


@pytest.fixture()
def client(make_settings, sink) -> TestClient:
    return TestClient(create_app(make_settings(Environment.PRODUCTION), sink))


class TestHealthEndpoint:
    def test_health_returns_200(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestReadyEndpoint:
    def test_ready_without_controller(self, client: TestClient) -> None:
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    def test_ready_while_running(self, client: TestClient) -> None:
        client.app.state.shutdown = SimpleNamespace(state=ShutdownState.RUNNING)

        assert client.get("/ready").status_code == 200

    def test_ready_503_while_shutting_down(self, client: TestClient) -> None:
        """
        GIVEN the shutdown controller has left RUNNING
        WHEN GET /ready is called
        THEN it returns 503 so no new traffic is routed here.
        """
        client.app.state.shutdown = SimpleNamespace(state=ShutdownState.SHUTTING_DOWN)

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json() == {"status": "shutting_down", "state": "shutting_down"}


class TestInfoEndpoint:
    def test_info_returns_metadata(self, client: TestClient) -> None:
        body = client.get("/info").json()

        assert body == {"name": "transit-guard", "version": __version__, "environment": "production"}


class TestAppFactory:
    def test_docs_hidden_outside_development(self, client: TestClient) -> None:
        assert client.get("/docs").status_code == 404

    def test_docs_served_in_development(self, make_settings, sink) -> None:
        client = TestClient(create_app(make_settings(Environment.DEVELOPMENT), sink))
        assert client.get("/docs").status_code == 200

    def test_lifespan_shutdown_closes_sink(self, make_settings, sink) -> None:
        """
        GIVEN a running app
        WHEN the lifespan ends
        THEN the telemetry sink is closed once with the flush timeout.
        """
        with TestClient(create_app(make_settings(Environment.PRODUCTION), sink)):
            assert sink.close_calls == []

        assert sink.close_calls == [SINK_FLUSH_TIMEOUT_SECONDS]
