"""
Ports — Protocol-based interfaces for the collaborators of the resilience core.

  Core ← Ports (protocols) ← Adapters (implementations)

The core never touches global process state or a network client directly:
it talks to a ``TelemetrySink``, a ``ProcessControl`` and a ``Listener``.
Tests swap in fakes that satisfy the same protocols structurally.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class TelemetrySink(Protocol):
    """
    Port: error and breadcrumb reporting.

    ``report`` is fire-and-forget and must never raise into the caller.
    ``breadcrumb`` is synchronous and only buffers in memory until the next
    report. ``close`` flushes and releases the sink at process shutdown.
    """

    def report(self, error: BaseException, context: Mapping[str, Any]) -> None: ...

    def breadcrumb(
        self,
        message: str,
        category: str = "custom",
        data: Mapping[str, Any] | None = None,
    ) -> None: ...

    def flush(self, timeout: float) -> bool: ...

    def close(self, timeout: float = 2.0) -> bool: ...


@runtime_checkable
class Cancellable(Protocol):
    """Handle returned by ``ProcessControl.call_later``."""

    def cancel(self) -> None: ...


@runtime_checkable
class ProcessControl(Protocol):
    """
    Port: process-wide hooks (signals, fatal faults, timers, exit).

    Implemented by ``OsProcessControl`` over the running interpreter.
    """

    def on_signal(self, signum: int, handler: Callable[[int], None]) -> None: ...

    def on_uncaught_fault(self, handler: Callable[[BaseException], None]) -> None: ...

    def on_unhandled_rejection(
        self, handler: Callable[[object, object | None], None]
    ) -> None: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...

    def exit(self, code: int) -> None: ...


@runtime_checkable
class Listener(Protocol):
    """
    Port: the network listener being drained on shutdown.

    ``close`` stops accepting new connections and invokes ``on_closed`` once
    every open connection has finished.
    """

    def close(self, on_closed: Callable[[], None]) -> None: ...
