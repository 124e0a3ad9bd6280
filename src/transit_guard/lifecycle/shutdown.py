"""
Graceful shutdown — drain in-flight requests on SIGINT/SIGTERM.

    RUNNING ──signal──▶ SHUTTING_DOWN ──drained──▶ DRAINED        (exit 0)
                                      └─deadline─▶ FORCE_KILLED   (exit 1)

The force-kill timer is armed when SHUTTING_DOWN begins, so shutdown is always
bounded. Repeated signals while shutting down are ignored.
"""

from __future__ import annotations

import signal
import threading
from enum import Enum

import structlog

from transit_guard.domain.ports import Cancellable, Listener, ProcessControl

log = structlog.get_logger()

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownState(Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    DRAINED = "drained"
    FORCE_KILLED = "force_killed"


class GracefulShutdownController:
    """Owns the process-wide shutdown flag and the force-kill deadline."""

    def __init__(
        self,
        listener: Listener,
        process: ProcessControl,
        force_timeout_seconds: float = 10.0,
    ) -> None:
        self._listener = listener
        self._process = process
        self._force_timeout_seconds = force_timeout_seconds
        self._state = ShutdownState.RUNNING
        # Reentrant: a signal handler can interrupt the main thread while it holds the lock.
        self._lock = threading.RLock()
        self._force_timer: Cancellable | None = None

    @property
    def state(self) -> ShutdownState:
        return self._state

    def install(self) -> None:
        for signum in SHUTDOWN_SIGNALS:
            self._process.on_signal(signum, self.shutdown)
        log.info("shutdown.handlers_installed", timeout_seconds=self._force_timeout_seconds)

    def shutdown(self, signum: int) -> None:
        """Begin draining; later calls while not RUNNING are ignored."""
        sig_name = _signal_name(signum)
        with self._lock:
            if self._state is not ShutdownState.RUNNING:
                log.info("shutdown.duplicate_signal_ignored", signal=sig_name, state=self._state.value)
                return
            self._state = ShutdownState.SHUTTING_DOWN
            self._force_timer = self._process.call_later(
                self._force_timeout_seconds, self._force_exit
            )
        log.info("shutdown.signal_received", signal=sig_name)
        self._listener.close(self._on_drained)

    def _on_drained(self) -> None:
        with self._lock:
            if self._state is not ShutdownState.SHUTTING_DOWN:
                return
            self._state = ShutdownState.DRAINED
            if self._force_timer is not None:
                self._force_timer.cancel()
        log.info("shutdown.drained")
        self._process.exit(0)

    def _force_exit(self) -> None:
        with self._lock:
            if self._state is not ShutdownState.SHUTTING_DOWN:
                return
            self._state = ShutdownState.FORCE_KILLED
        log.error("shutdown.forced", timeout_seconds=self._force_timeout_seconds)
        self._process.exit(1)


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
