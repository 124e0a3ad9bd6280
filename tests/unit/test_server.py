"""
Unit tests for UvicornListener — close/serve handshake, uvicorn's serve mocked.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import uvicorn
from fastapi import FastAPI

from transit_guard.adapters.server import UvicornListener


def _listener() -> UvicornListener:
    return UvicornListener(uvicorn.Config(FastAPI(), host="127.0.0.1", port=0))


class TestUvicornListener:
    def test_close_requests_server_exit(self) -> None:
        listener = _listener()

        listener.close(MagicMock())

        assert listener.server.should_exit is True

    def test_serve_fires_callback_after_server_stops(self) -> None:
        """
        GIVEN a listener that has been asked to close
        WHEN uvicorn's serve returns
        THEN the drain callback runs exactly once.
        """
        listener = _listener()
        on_closed = MagicMock()
        listener.close(on_closed)

        with patch.object(uvicorn.Server, "serve", new=AsyncMock()) as serve:
            asyncio.run(listener.serve())

        serve.assert_awaited_once()
        on_closed.assert_called_once_with()

    def test_serve_without_close_fires_nothing(self) -> None:
        listener = _listener()

        with patch.object(uvicorn.Server, "serve", new=AsyncMock()):
            asyncio.run(listener.serve())

        assert listener.server.should_exit is False

    def test_uvicorn_signal_capture_disabled(self) -> None:
        listener = _listener()

        with listener.server.capture_signals():
            pass
