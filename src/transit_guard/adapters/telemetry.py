"""
Telemetry adapters — implementations of the TelemetrySink port.

  - LoggingTelemetrySink: writes fault reports to the structured log.
  - HttpTelemetrySink: posts fault events to an error collector via httpx.

Both keep a bounded in-memory breadcrumb trail and an optional process-scoped
user, attached to every report. Reporting is fire-and-forget: the HTTP sink
submits on a single background worker, retries transient network errors with
tenacity, and turns every submission error into a logged Result failure.
Nothing raises back into the caller.

``monitored`` wraps an async operation in a timed transaction and reports its
failures through any TelemetrySink before re-raising.
"""

from __future__ import annotations

import functools
import json
import threading
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from transit_guard.config import DEFAULT_IGNORED_ERRORS, AppSettings, Environment
from transit_guard.domain.classification import resolve_defaults
from transit_guard.domain.faults import AppError, DocumentValidationFault, FaultKind, format_stack
from transit_guard.domain.ports import TelemetrySink
from transit_guard.result import Result

log = structlog.get_logger()

_VALIDATION_ERROR_NAMES = frozenset({"ValidationError", "RequestValidationError"})
MAX_ARG_PREVIEW = 100

AsyncOperation = TypeVar("AsyncOperation", bound=Callable[..., Awaitable[Any]])


def severity_for(error: BaseException) -> str:
    """Severity from the fault's HTTP status: ≥500 error, ≥400 warning, else info."""
    status, _ = resolve_defaults(error)
    if status >= 500:
        return "error"
    if status >= 400:
        return "warning"
    return "info"


class EventFilter:
    """
    Decides whether a fault is worth sending to the collector.

    Fatal reports are always sent. Otherwise drops faults matching
    ``ignore_errors`` (by type name or message), and in production also drops
    not-found and validation faults, which are expected client noise.
    """

    def __init__(
        self,
        environment: Environment,
        ignore_errors: Iterable[str] = DEFAULT_IGNORED_ERRORS,
    ) -> None:
        self._environment = environment
        self._ignore_errors = tuple(ignore_errors)

    def allows(self, error: BaseException, context: Mapping[str, Any] | None = None) -> bool:
        if context is not None and context.get("fatal") is True:
            return True
        name = type(error).__name__
        text = str(error)
        if any(pattern in name or pattern in text for pattern in self._ignore_errors):
            return False
        if self._environment is Environment.PRODUCTION:
            return not (_is_not_found(error) or _is_validation(error))
        return True


def _is_not_found(error: BaseException) -> bool:
    return isinstance(error, AppError) and (
        error.kind is FaultKind.NOT_FOUND or error.status_code == 404
    )


def _is_validation(error: BaseException) -> bool:
    return isinstance(error, DocumentValidationFault) or type(error).__name__ in _VALIDATION_ERROR_NAMES


def user_identity(user: Mapping[str, Any] | Any) -> dict[str, Any]:
    """``id``/``email``/``username`` from a user mapping or object."""
    if isinstance(user, Mapping):
        subject = user.get("_id") or user.get("id") or user.get("sub")
        return {
            "id": str(subject) if subject is not None else None,
            "email": user.get("email"),
            "username": user.get("name") or user.get("username"),
        }
    subject = getattr(user, "id", None) or getattr(user, "sub", None)
    return {
        "id": str(subject) if subject is not None else None,
        "email": getattr(user, "email", None),
        "username": getattr(user, "name", None) or getattr(user, "username", None),
    }


class _TelemetryScope:
    """Bounded breadcrumb buffer and current user, shared by both sinks."""

    def __init__(self, max_breadcrumbs: int) -> None:
        self._crumbs: deque[dict[str, Any]] = deque(maxlen=max_breadcrumbs)
        self._user: dict[str, Any] | None = None
        self._lock = threading.Lock()

    def breadcrumb(
        self,
        message: str,
        category: str = "custom",
        data: Mapping[str, Any] | None = None,
    ) -> None:
        crumb = {
            "message": message,
            "category": category,
            "level": "info",
            "data": dict(data or {}),
            "timestamp": datetime.now(UTC).isoformat(),
        }
        with self._lock:
            self._crumbs.append(crumb)

    def breadcrumbs(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._crumbs)

    def set_user(self, user: Mapping[str, Any] | Any | None) -> None:
        """Attach ``user`` to subsequent reports; ``None`` clears it."""
        identity = user_identity(user) if user is not None else None
        with self._lock:
            self._user = identity

    def user(self) -> dict[str, Any] | None:
        with self._lock:
            return dict(self._user) if self._user is not None else None


class LoggingTelemetrySink(_TelemetryScope):
    """Reports faults as structured log events. Used when no collector is configured."""

    def __init__(self, max_breadcrumbs: int = 100) -> None:
        super().__init__(max_breadcrumbs)

    def report(self, error: BaseException, context: Mapping[str, Any]) -> None:
        Result.from_computation(
            lambda: self._log_report(error, context),
            "Telemetry log report failed",
        ).peek_failure(lambda fault: log.warning("telemetry.report_failed", error=fault.message))

    def capture_message(
        self, message: str, level: str = "info", context: Mapping[str, Any] | None = None
    ) -> None:
        log.log(_log_level(level), "telemetry.message", message=message, contexts=dict(context or {}))

    def flush(self, timeout: float) -> bool:
        return True

    def close(self, timeout: float = 2.0) -> bool:
        return True

    def _log_report(self, error: BaseException, context: Mapping[str, Any]) -> None:
        log.log(
            _log_level(severity_for(error)),
            "telemetry.fault_reported",
            error_type=type(error).__name__,
            error=str(error),
            contexts=dict(context),
            user=self.user(),
            breadcrumbs=self.breadcrumbs(),
        )


class HttpTelemetrySink(_TelemetryScope):
    """
    Posts JSON fault events to an error collector.

    Submission happens on a single background worker so ``report`` returns
    immediately. ``flush`` waits for pending submissions up to a timeout;
    ``close`` flushes and stops the worker.
    """

    def __init__(
        self,
        endpoint: str,
        environment: Environment,
        api_key: str | None = None,
        timeout: float = 5.0,
        max_breadcrumbs: int = 100,
        ignore_errors: Iterable[str] = DEFAULT_IGNORED_ERRORS,
    ) -> None:
        super().__init__(max_breadcrumbs)
        self._endpoint = endpoint
        self._environment = environment
        self._api_key = api_key
        self._timeout = timeout
        self._filter = EventFilter(environment, ignore_errors)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telemetry")
        self._pending: set[Future[Result[None]]] = set()
        self._pending_lock = threading.Lock()

    def report(self, error: BaseException, context: Mapping[str, Any]) -> None:
        if not self._filter.allows(error, context):
            log.debug("telemetry.event_dropped", error_type=type(error).__name__)
            return
        Result.from_computation(
            lambda: self._enqueue(self.build_event(error, context)),
            "Telemetry enqueue failed",
        ).peek_failure(lambda fault: log.warning("telemetry.report_failed", error=fault.message))

    def capture_message(
        self, message: str, level: str = "info", context: Mapping[str, Any] | None = None
    ) -> None:
        event = self._base_event(level, dict(context or {}))
        event["message"] = message
        Result.from_computation(
            lambda: self._enqueue(event),
            "Telemetry enqueue failed",
        ).peek_failure(lambda fault: log.warning("telemetry.report_failed", error=fault.message))

    def flush(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for queued events; True if all were sent."""
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            log.warning("telemetry.flush_incomplete", pending=len(not_done))
        return not not_done

    def close(self, timeout: float = 2.0) -> bool:
        """Flush, then stop the worker. Reports after close are logged and dropped."""
        flushed = self.flush(timeout)
        self._executor.shutdown(wait=False, cancel_futures=True)
        log.info("telemetry.closed", flushed=flushed)
        return flushed

    def build_event(self, error: BaseException, context: Mapping[str, Any]) -> dict[str, Any]:
        event = self._base_event(severity_for(error), dict(context))
        event["exception"] = {
            "type": type(error).__name__,
            "message": str(error),
            "stack": format_stack(error),
        }
        event["tags"] = {"error_type": type(error).__name__}
        return event

    def _base_event(self, level: str, contexts: dict[str, Any]) -> dict[str, Any]:
        return {
            "event_id": uuid.uuid4().hex,
            "timestamp": datetime.now(UTC).isoformat(),
            "environment": self._environment.value,
            "level": level,
            "user": self.user(),
            "contexts": contexts,
            "breadcrumbs": self.breadcrumbs(),
        }

    def _enqueue(self, event: dict[str, Any]) -> None:
        future = self._executor.submit(self._submit, event)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: Future[Result[None]]) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _submit(self, event: dict[str, Any]) -> Result[None]:
        result = Result.from_computation(
            lambda: self._post(event),
            "Telemetry submission failed",
        )
        return result.peek_failure(
            lambda fault: log.warning(
                "telemetry.submit_failed", event_id=event["event_id"], error=fault.message
            )
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=0.1, max=5),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    def _post(self, event: dict[str, Any]) -> None:
        """HTTP POST with retry; exceptions are caught by from_computation."""
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        with httpx.Client(timeout=self._timeout) as client:
            response = client.post(
                self._endpoint,
                content=json.dumps(event, default=str),
                headers=headers,
            )
            response.raise_for_status()
        log.debug("telemetry.event_sent", event_id=event["event_id"])


def _log_level(level: str) -> int:
    return {"debug": 10, "info": 20, "warning": 30, "error": 40, "fatal": 50}.get(level, 20)


# ──────────────────────── Transactions ────────────────────────


@dataclass
class Transaction:
    """Timed unit of work; ``finish`` logs its status and duration."""

    name: str
    op: str = "custom"
    status: str = "unknown"
    duration_ms: float | None = None
    _started: float = field(default_factory=time.perf_counter, repr=False)

    def set_status(self, status: str) -> None:
        self.status = status

    def finish(self) -> None:
        self.duration_ms = round((time.perf_counter() - self._started) * 1000.0, 2)
        log.info(
            "telemetry.transaction_finished",
            name=self.name,
            op=self.op,
            status=self.status,
            duration_ms=self.duration_ms,
        )


def start_transaction(name: str, op: str = "custom") -> Transaction:
    return Transaction(name=name, op=op)


def _preview(value: Any) -> str:
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return text[:MAX_ARG_PREVIEW]


def monitored(
    sink: TelemetrySink, operation_name: str
) -> Callable[[AsyncOperation], AsyncOperation]:
    """
    Decorate an async operation with a transaction and failure reporting.

    A failure is reported with the operation name and truncated argument
    previews, then re-raised unchanged.

        @monitored(sink, "payments.refund")
        async def refund(payment_id: str) -> None: ...
    """

    def decorator(operation: AsyncOperation) -> AsyncOperation:
        @functools.wraps(operation)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            transaction = start_transaction(operation_name, "function")
            try:
                result = await operation(*args, **kwargs)
            except Exception as exc:
                transaction.set_status("internal_error")
                sink.report(
                    exc,
                    {
                        "operation": operation_name,
                        "args": [_preview(arg) for arg in args],
                        "kwargs": {key: _preview(value) for key, value in kwargs.items()},
                    },
                )
                raise
            else:
                transaction.set_status("ok")
                return result
            finally:
                transaction.finish()

        return wrapper  # type: ignore[return-value]

    return decorator


def create_telemetry_sink(settings: AppSettings) -> TelemetrySink:
    """HTTP sink when a collector endpoint is configured, otherwise the log sink."""
    telemetry = settings.telemetry
    if not telemetry.endpoint:
        log.warning(
            "telemetry.disabled",
            reason="TELEMETRY__ENDPOINT not configured; faults are logged only",
        )
        return LoggingTelemetrySink(max_breadcrumbs=telemetry.max_breadcrumbs)

    log.info("telemetry.initialized", environment=settings.environment.value)
    return HttpTelemetrySink(
        endpoint=telemetry.endpoint,
        environment=settings.environment,
        api_key=telemetry.api_key.get_secret_value() if telemetry.api_key else None,
        timeout=telemetry.timeout_seconds,
        max_breadcrumbs=telemetry.max_breadcrumbs,
        ignore_errors=telemetry.ignore_errors,
    )
