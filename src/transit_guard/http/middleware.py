"""
Request error middleware — the single catch point for request failures.

Stage order inside the FastAPI app:

    request logging → routes (wrapped by wrap_handler) → not_found → handle

``wrap_handler`` attaches the request context to any fault raised by a route
and forwards it to ``RequestErrorHandler.handle``, which writes exactly one
JSON response:

  - development: full detail (message, stack, context, request context)
  - otherwise:   classified, sanitized body; non-operational faults are
                 flattened to a generic 500 and the ORIGINAL fault is reported
                 to the telemetry sink
"""

from __future__ import annotations

import functools
import json
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from itertools import islice
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from transit_guard.config import Environment
from transit_guard.domain.classification import classify, resolve_defaults
from transit_guard.domain.faults import (
    AppError,
    DocumentValidationFault,
    Fault,
    FaultKind,
    RequestContext,
    format_stack,
)
from transit_guard.domain.ports import TelemetrySink
from transit_guard.result import Result

log = structlog.get_logger()

GENERIC_MESSAGE = "Something went wrong. Please try again later."
MAX_SAMPLED_ROUTES = 5
_REDACTED_HEADERS = frozenset({"authorization", "cookie", "x-api-key"})

RequestHandler = Callable[[Request], Awaitable[Response]]


# ──────────────────────── Response DTO ────────────────────────


@dataclass(frozen=True, slots=True)
class ErrorResponse:
    """
    Sanitized error body for non-development environments.

        {
            "success": false,
            "status": "error",
            "message": "Invalid input data. required",
            "timestamp": "2026-10-18T10:30:00+00:00"
        }
    """

    message: str
    timestamp: str
    success: bool = False
    status: str = "error"

    @staticmethod
    def from_fault(fault: Fault) -> ErrorResponse:
        if fault.is_operational:
            return ErrorResponse(message=fault.message, timestamp=fault.timestamp_iso)
        return ErrorResponse(message=GENERIC_MESSAGE, timestamp=datetime.now(UTC).isoformat())

    @staticmethod
    def status_for(fault: Fault) -> int:
        return fault.http_status if fault.is_operational else 500

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "message": self.message,
            "timestamp": self.timestamp,
        }


# ──────────────────────── Request context ────────────────────────


def current_user(request: Request) -> dict[str, Any] | None:
    """Identity placed on ``request.state.user`` by the auth layer, if any."""
    user = getattr(request.state, "user", None)
    if user is None:
        return None
    if isinstance(user, Mapping):
        subject = user.get("sub") or user.get("id") or user.get("_id")
        email = user.get("email")
    else:
        subject = getattr(user, "sub", None) or getattr(user, "id", None)
        email = getattr(user, "email", None)
    return {"id": str(subject) if subject is not None else None, "email": email}


def build_request_context(request: Request) -> RequestContext:
    user = current_user(request)
    return RequestContext(
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        subject_id=user["id"] if user else None,
    )


def attach_request_context(exc: BaseException, request: Request) -> RequestContext:
    request_context = build_request_context(request)
    try:
        exc.request_context = request_context  # type: ignore[attr-defined]
    except AttributeError:
        log.debug("request.context_not_attachable", error_type=type(exc).__name__)
    return request_context


async def _read_body(request: Request) -> Any:
    try:
        raw = await request.body()
    except RuntimeError:
        return None
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


# ──────────────────────── Route wrapping ────────────────────────


def wrap_handler(handler: RequestHandler) -> RequestHandler:
    """
    Wrap a request handler so no fault escapes it.

    The fault gets its request context attached and is forwarded to the
    application's terminal error handler, which writes the response.
    """

    @functools.wraps(handler)
    async def adapter(request: Request) -> Response:
        try:
            return await handler(request)
        except Exception as exc:
            attach_request_context(exc, request)
            request.state.fault_body = await _read_body(request)
            error_handler: RequestErrorHandler = request.app.state.error_handler
            return await error_handler.handle(request, exc)

    return adapter


class FaultCapturingRoute(APIRoute):
    """APIRoute whose endpoint handler is wrapped by ``wrap_handler``."""

    def get_route_handler(self) -> RequestHandler:
        return wrap_handler(super().get_route_handler())


# ──────────────────────── Boundary adaptation ────────────────────────


def adapt_framework_exception(exc: BaseException) -> BaseException:
    """
    Turn framework exceptions into the fault family the classifier knows.

    Validation errors become DocumentValidationFault; HTTP exceptions become
    AppError with their status. Anything else is returned unchanged.
    Response headers of HTTP exceptions are read from the original by
    ``RequestErrorHandler.handle``.
    """
    match exc:
        case RequestValidationError() | ValidationError():
            adapted: BaseException = DocumentValidationFault.from_pydantic(exc)
        case StarletteHTTPException(status_code=status_code, detail=detail):
            kind = {401: FaultKind.AUTH_TOKEN_INVALID, 404: FaultKind.NOT_FOUND}.get(
                status_code, FaultKind.UNCLASSIFIED
            )
            adapted = AppError(
                str(detail),
                status_code=status_code,
                is_operational=status_code < 500,
                kind=kind,
            )
        case _:
            return exc
    adapted.__cause__ = exc
    adapted.__traceback__ = exc.__traceback__
    request_context = getattr(exc, "request_context", None)
    if request_context is not None:
        adapted.request_context = request_context  # type: ignore[attr-defined]
    return adapted


def _message_of(exc: BaseException) -> str:
    if isinstance(exc, AppError):
        return exc.message
    return str(exc) or type(exc).__name__


def _jsonable(value: Any) -> Any:
    try:
        return jsonable_encoder(value)
    except (TypeError, ValueError):
        return str(value)


def _route_paths(app: FastAPI) -> list[str]:
    """Documented route paths, in declaration order; empty if the schema cannot be built."""
    return (
        Result.from_computation(lambda: list(app.openapi().get("paths", {})), "Route listing failed")
        .peek_failure(lambda fault: log.warning("request.route_listing_failed", error=fault.message))
        .either(lambda paths: paths, lambda fault: [])
    )


def _response_headers(exc: BaseException) -> dict[str, str] | None:
    """Headers an HTTP exception asks for, e.g. Allow on 405 or WWW-Authenticate on 401."""
    if isinstance(exc, StarletteHTTPException) and exc.headers:
        return dict(exc.headers)
    return None


# ──────────────────────── Terminal handler ────────────────────────


class RequestErrorHandler:
    """Formats every request fault into one JSON response and reports the unexpected ones."""

    def __init__(self, sink: TelemetrySink, environment: Environment) -> None:
        self._sink = sink
        self._environment = environment

    @property
    def environment(self) -> Environment:
        return self._environment

    def not_found(self, request: Request) -> AppError:
        """Build the 404 fault for a request no route matched."""
        method = request.method
        path = request.url.path
        error = AppError(
            f"Route not found: {method} {path}",
            status_code=404,
            is_operational=True,
            kind=FaultKind.NOT_FOUND,
            context={
                "method": method,
                "url": path,
                "available_routes": list(islice(_route_paths(request.app), MAX_SAMPLED_ROUTES)),
            },
        )
        self._sink.breadcrumb("404 Not Found", "navigation", {"url": path, "method": method})
        return error

    async def handle_http_exception(
        self, request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Framework adapter for router-level HTTP errors (no match, wrong method)."""
        if exc.status_code == 404:
            return await self.handle(request, self.not_found(request))
        return await self.handle(request, exc)

    async def handle(self, request: Request, exc: BaseException) -> JSONResponse:
        """Write exactly one response for ``exc``; never re-raises."""
        raw = adapt_framework_exception(exc)
        headers = _response_headers(exc)
        status, operational = resolve_defaults(raw)
        request_context = getattr(raw, "request_context", None) or build_request_context(request)

        self._sink.breadcrumb(
            "Error occurred",
            "error",
            {
                "message": _message_of(raw),
                "status_code": status,
                "url": request.url.path,
                "method": request.method,
            },
        )

        if self._environment is Environment.DEVELOPMENT:
            log.error(
                "request.fault",
                error_type=type(raw).__name__,
                error=_message_of(raw),
                status_code=status,
                path=request_context.path,
            )
            body = self._development_body(raw, status, operational, request_context)
            return JSONResponse(status_code=status, content=body, headers=headers)

        fault = classify(raw).with_request_context(request_context)
        if not fault.is_operational or fault.http_status >= 500:
            log.error(
                "request.fault_unexpected",
                kind=fault.kind.value,
                error_type=type(exc).__name__,
                error=str(exc),
                status_code=fault.http_status,
                path=request_context.path,
            )
            self._sink.report(exc, self._report_context(request, fault))
        else:
            log.info(
                "request.fault_operational",
                kind=fault.kind.value,
                status_code=fault.http_status,
                path=request_context.path,
            )

        response = ErrorResponse.from_fault(fault)
        return JSONResponse(
            status_code=ErrorResponse.status_for(fault),
            content=response.to_dict(),
            headers=headers,
        )

    def _development_body(
        self,
        raw: BaseException,
        status: int,
        operational: bool,
        request_context: RequestContext,
    ) -> dict[str, Any]:
        kind = raw.kind.value if isinstance(raw, AppError) else None
        context = getattr(raw, "context", None)
        timestamp = raw.timestamp if isinstance(raw, AppError) else datetime.now(UTC)
        return {
            "success": False,
            "status": "error",
            "error": {
                "name": type(raw).__name__,
                "kind": kind,
                "status_code": status,
                "is_operational": operational,
            },
            "message": _message_of(raw),
            "stack": format_stack(raw),
            "context": _jsonable(context) if isinstance(context, Mapping) else {},
            "request_context": request_context.to_dict(),
            "timestamp": timestamp.isoformat(),
        }

    def _report_context(self, request: Request, fault: Fault) -> dict[str, Any]:
        headers = {
            name: ("[redacted]" if name.lower() in _REDACTED_HEADERS else value)
            for name, value in request.headers.items()
        }
        return {
            "request": {
                "method": request.method,
                "url": str(request.url),
                "headers": headers,
                "body": _jsonable(getattr(request.state, "fault_body", None)),
                "query": dict(request.query_params),
                "params": _jsonable(dict(request.path_params)),
            },
            "user": current_user(request),
            "context": _jsonable(dict(fault.context)),
        }


def install_error_handling(app: FastAPI, handler: RequestErrorHandler) -> None:
    """
    Register the terminal handlers on ``app``.

    The catch-all ``Exception`` handler is registered last; it only sees faults
    raised outside FaultCapturingRoute endpoints.
    """
    app.state.error_handler = handler
    app.add_exception_handler(StarletteHTTPException, handler.handle_http_exception)
    app.add_exception_handler(RequestValidationError, handler.handle)
    app.add_exception_handler(Exception, handler.handle)
