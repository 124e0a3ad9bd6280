"""
Application entry point — composition root.

Responsibilities:
  1. Load and validate configuration from environment
  2. Configure structlog
  3. Create the telemetry sink and install the process fault handlers
  4. Build the FastAPI app and the uvicorn listener
  5. Install the graceful shutdown controller and serve

This is the ONLY place where concrete adapters are instantiated.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import structlog
import uvicorn

from transit_guard import __version__
from transit_guard.adapters.process import OsProcessControl
from transit_guard.adapters.server import UvicornListener
from transit_guard.adapters.telemetry import create_telemetry_sink
from transit_guard.asgi import create_app
from transit_guard.config import AppSettings
from transit_guard.lifecycle.process_faults import ProcessFaultHandlers
from transit_guard.lifecycle.shutdown import GracefulShutdownController


def configure_structlog(log_level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog for structured logging.

    In production: JSON lines to stdout (machine-readable).
    In development: colored, human-readable console output.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def _serve(listener: UvicornListener, process: OsProcessControl) -> None:
    process.bind_event_loop(asyncio.get_running_loop())
    await listener.serve()


def main() -> None:
    """Wire dependencies and serve until a shutdown signal drains the listener."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level, json_output=not settings.is_development)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        environment=settings.environment.value,
        log_level=settings.log_level,
    )

    process = OsProcessControl()
    sink = create_telemetry_sink(settings)
    ProcessFaultHandlers(
        sink,
        process,
        flush_grace_seconds=settings.resilience.fault_flush_grace_seconds,
        environment=settings.environment,
    ).install()

    app = create_app(settings, sink)
    listener = UvicornListener(
        uvicorn.Config(
            app,
            host=settings.server.host,
            port=settings.server.port,
            log_level=settings.log_level.lower(),
        )
    )
    controller = GracefulShutdownController(
        listener,
        process,
        force_timeout_seconds=settings.resilience.force_shutdown_timeout_seconds,
    )
    controller.install()
    app.state.shutdown = controller

    log.info("app.serving", host=settings.server.host, port=settings.server.port)
    asyncio.run(_serve(listener, process))


if __name__ == "__main__":
    main()
