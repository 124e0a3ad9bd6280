"""
Shared test fixtures and fakes for the transit-guard test suite.

Provides:
  - FakeTelemetrySink: records reports and breadcrumbs in memory
  - FakeProcessControl: records hook registrations, timers and exit codes,
    so lifecycle code can be driven deterministically without real signals
  - settings_for(): AppSettings isolated from the developer's .env file
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import pytest

from transit_guard.config import AppSettings, Environment


class FakeTelemetrySink:
    """In-memory TelemetrySink."""

    def __init__(self) -> None:
        self.reports: list[tuple[BaseException, dict[str, Any]]] = []
        self.breadcrumbs: list[dict[str, Any]] = []
        self.flush_calls: list[float] = []
        self.close_calls: list[float] = []

    def report(self, error: BaseException, context: Mapping[str, Any]) -> None:
        self.reports.append((error, dict(context)))

    def breadcrumb(
        self,
        message: str,
        category: str = "custom",
        data: Mapping[str, Any] | None = None,
    ) -> None:
        self.breadcrumbs.append({"message": message, "category": category, "data": dict(data or {})})

    def flush(self, timeout: float) -> bool:
        self.flush_calls.append(timeout)
        return True

    def close(self, timeout: float = 2.0) -> bool:
        self.close_calls.append(timeout)
        return True

    def categories(self) -> list[str]:
        return [crumb["category"] for crumb in self.breadcrumbs]


@dataclass
class FakeTimer:
    delay: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


@dataclass
class FakeProcessControl:
    """ProcessControl that records instead of touching the interpreter."""

    signal_handlers: dict[int, list[Callable[[int], None]]] = field(default_factory=dict)
    uncaught_handlers: list[Callable[[BaseException], None]] = field(default_factory=list)
    rejection_handlers: list[Callable[[object, object | None], None]] = field(default_factory=list)
    timers: list[FakeTimer] = field(default_factory=list)
    exit_codes: list[int] = field(default_factory=list)

    def on_signal(self, signum: int, handler: Callable[[int], None]) -> None:
        self.signal_handlers.setdefault(signum, []).append(handler)

    def on_uncaught_fault(self, handler: Callable[[BaseException], None]) -> None:
        self.uncaught_handlers.append(handler)

    def on_unhandled_rejection(self, handler: Callable[[object, object | None], None]) -> None:
        self.rejection_handlers.append(handler)

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def exit(self, code: int) -> None:
        self.exit_codes.append(code)

    def send_signal(self, signum: int) -> None:
        for handler in self.signal_handlers.get(signum, []):
            handler(signum)


def settings_for(environment: Environment, **overrides: Any) -> AppSettings:
    """Build AppSettings for ``environment`` without reading any .env file."""
    return AppSettings(_env_file=None, environment=environment, **overrides)


@pytest.fixture()
def sink() -> FakeTelemetrySink:
    return FakeTelemetrySink()


@pytest.fixture()
def process() -> FakeProcessControl:
    return FakeProcessControl()


@pytest.fixture()
def make_settings() -> Callable[..., AppSettings]:
    return settings_for
