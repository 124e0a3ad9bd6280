"""
Uvicorn listener — the Listener port over a uvicorn.Server.

Uvicorn normally installs its own SIGINT/SIGTERM handlers. Here signal
handling belongs to the GracefulShutdownController, so the server subclass
disables uvicorn's capture and exposes ``close`` instead: setting
``should_exit`` makes uvicorn stop accepting connections and wait for the open
ones to finish before ``serve`` returns.
"""

from __future__ import annotations

import contextlib
import threading
from collections.abc import Callable, Generator

import structlog
import uvicorn

log = structlog.get_logger()


class _ManagedServer(uvicorn.Server):
    """uvicorn.Server without its own signal handlers."""

    @contextlib.contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        yield

    def install_signal_handlers(self) -> None:
        return None


class UvicornListener:
    """Runs the ASGI app and drains it on request."""

    def __init__(self, config: uvicorn.Config) -> None:
        self._server = _ManagedServer(config)
        self._on_closed: Callable[[], None] | None = None
        self._lock = threading.Lock()

    @property
    def server(self) -> uvicorn.Server:
        return self._server

    def close(self, on_closed: Callable[[], None]) -> None:
        with self._lock:
            self._on_closed = on_closed
        log.info("listener.closing")
        self._server.should_exit = True

    async def serve(self) -> None:
        """Serve until closed; fires the drain callback after uvicorn has stopped."""
        await self._server.serve()
        with self._lock:
            on_closed = self._on_closed
        if on_closed is not None:
            log.info("listener.closed")
            on_closed()
