"""
Process fault handlers — the last-resort safety net.

A fault that escapes every request-level handler leaves the process in an
unknown state. The handlers log it, report it as fatal, give the telemetry
sink a short grace period to transmit, then terminate with exit code 1 so the
orchestrator restarts a clean process.
"""

from __future__ import annotations

import threading
from typing import Any

import structlog

from transit_guard.config import Environment
from transit_guard.domain.faults import UnhandledRejectionError, format_stack
from transit_guard.domain.ports import Cancellable, ProcessControl, TelemetrySink

log = structlog.get_logger()

FATAL_EXIT_CODE = 1


class ProcessFaultHandlers:
    """Uncaught-fault and unhandled-rejection hooks, installed once per process."""

    def __init__(
        self,
        sink: TelemetrySink,
        process: ProcessControl,
        flush_grace_seconds: float = 1.0,
        environment: Environment = Environment.DEVELOPMENT,
    ) -> None:
        self._sink = sink
        self._process = process
        self._flush_grace_seconds = flush_grace_seconds
        self._environment = environment
        self._lock = threading.RLock()
        self._installed = False
        self._exit_timer: Cancellable | None = None

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> None:
        """Register both process hooks. Later calls are no-ops."""
        with self._lock:
            if self._installed:
                log.debug("fault_handlers.already_installed")
                return
            self._process.on_uncaught_fault(self.on_uncaught_fault)
            self._process.on_unhandled_rejection(self.on_unhandled_rejection)
            self._installed = True
        log.info("fault_handlers.installed", flush_grace_seconds=self._flush_grace_seconds)

    def on_uncaught_fault(self, fault: BaseException) -> None:
        log.critical(
            "fault.uncaught",
            error_type=type(fault).__name__,
            error=str(fault),
            stack=format_stack(fault),
        )
        self._sink.report(fault, {"context": "uncaught_fault", "fatal": True})
        self._terminate_after_grace()

    def on_unhandled_rejection(self, reason: object, source: object | None = None) -> None:
        fault = reason if isinstance(reason, BaseException) else UnhandledRejectionError(reason, source)
        log.critical(
            "fault.unhandled_rejection",
            error_type=type(fault).__name__,
            reason=str(reason),
            stack=format_stack(fault),
        )
        context: dict[str, Any] = {
            "context": "unhandled_rejection",
            "reason": str(reason),
            "fatal": True,
        }
        self._sink.report(fault, context)
        self._terminate_after_grace()

    def on_database_fault(self, error: BaseException) -> None:
        """
        Report a lost database connection.

        Production exits immediately so the container is restarted; other
        environments keep running for local debugging.
        """
        log.error("fault.database_connection", error_type=type(error).__name__, error=str(error))
        self._sink.report(error, {"context": "database_connection"})
        if self._environment is Environment.PRODUCTION:
            log.error("fault.database_shutdown")
            self._process.exit(FATAL_EXIT_CODE)

    def _terminate_after_grace(self) -> None:
        with self._lock:
            if self._exit_timer is not None:
                log.warning("fault.exit_already_scheduled")
                return
            self._exit_timer = self._process.call_later(
                self._flush_grace_seconds, self._exit_fatal
            )

    def _exit_fatal(self) -> None:
        self._sink.flush(0)
        self._process.exit(FATAL_EXIT_CODE)
