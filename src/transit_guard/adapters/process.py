"""
OS process control — the real implementation of the ProcessControl port.

Maps the port onto interpreter-level hooks:
  - signals            → signal.signal
  - uncaught faults    → sys.excepthook and threading.excepthook
  - unhandled async    → the asyncio loop exception handler (bind_event_loop)
  - timers             → daemon threading.Timer
  - exit               → stdout/stderr flush, then os._exit

os._exit is used because exit may be requested from a timer thread, where
sys.exit would only end that thread.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any

import structlog

log = structlog.get_logger()


class OsProcessControl:
    """Binds lifecycle handlers to the running interpreter."""

    def __init__(self) -> None:
        self._rejection_handler: Callable[[object, object | None], None] | None = None

    def on_signal(self, signum: int, handler: Callable[[int], None]) -> None:
        def _dispatch(received: int, frame: FrameType | None) -> None:
            handler(received)

        signal.signal(signum, _dispatch)

    def on_uncaught_fault(self, handler: Callable[[BaseException], None]) -> None:
        def _excepthook(exc_type: type[BaseException], exc: BaseException, tb: Any) -> None:
            if issubclass(exc_type, KeyboardInterrupt):
                sys.__excepthook__(exc_type, exc, tb)
                return
            handler(exc)

        def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
            if args.exc_value is None or issubclass(args.exc_type, SystemExit):
                return
            handler(args.exc_value)

        sys.excepthook = _excepthook
        threading.excepthook = _thread_excepthook

    def on_unhandled_rejection(self, handler: Callable[[object, object | None], None]) -> None:
        self._rejection_handler = handler

    def bind_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Route unobserved task/future failures of ``loop`` to the rejection handler."""

        def _loop_exception_handler(
            event_loop: asyncio.AbstractEventLoop, context: dict[str, Any]
        ) -> None:
            reason = context.get("exception")
            if reason is None or self._rejection_handler is None:
                event_loop.default_exception_handler(context)
                return
            source = context.get("future") or context.get("task")
            self._rejection_handler(reason, source)

        loop.set_exception_handler(_loop_exception_handler)

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer

    def exit(self, code: int) -> None:
        log.info("process.exit", code=code)
        for stream in (sys.stdout, sys.stderr):
            try:
                stream.flush()
            except (OSError, ValueError):
                pass
        os._exit(code)
