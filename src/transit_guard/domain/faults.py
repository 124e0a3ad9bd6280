"""
Fault model — the normalized unit of failure flowing through the API.

Two layers live here:

  1. Raw faults — exceptions raised at integration boundaries. They form a
     closed family: ``AppError`` for explicit application faults, and the
     ``BoundaryFault`` subclasses built by adapters (database layer, token
     verification, upload limits, request validation).
  2. ``Fault`` — the immutable, classified view of a raw fault, produced by
     ``transit_guard.domain.classification.classify``.

All value objects are frozen dataclasses; enrichment returns a new instance.
"""

from __future__ import annotations

import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any


@unique
class FaultKind(Enum):
    """
    Closed taxonomy of request faults.

    Client-side kinds map to 4xx, ``UNCLASSIFIED`` to 5xx.
    """

    VALIDATION = "VALIDATION"
    """Per-field input validation failed (→ 400)."""

    DUPLICATE = "DUPLICATE"
    """Unique key already taken (→ 400)."""

    CAST_MISMATCH = "CAST_MISMATCH"
    """Value could not be cast to the field type (→ 400)."""

    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    """Bearer token malformed or signature invalid (→ 401)."""

    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    """Bearer token past its expiry (→ 401)."""

    UPLOAD_LIMIT = "UPLOAD_LIMIT"
    """Multipart upload exceeded a configured limit (→ 400)."""

    NOT_FOUND = "NOT_FOUND"
    """No route or resource matched (→ 404)."""

    UNCLASSIFIED = "UNCLASSIFIED"
    """Unexpected programming or infrastructure fault (→ 500)."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Request diagnostics attached to a fault by the request middleware."""

    method: str
    path: str
    client_ip: str | None = None
    user_agent: str | None = None
    subject_id: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "method": self.method,
            "path": self.path,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "subject_id": self.subject_id,
        }


@dataclass(frozen=True, slots=True)
class Fault:
    """
    Immutable classified fault.

    >>> fault = Fault(FaultKind.NOT_FOUND, 404, True, "Route not found: GET /x")
    >>> fault.http_status
    404
    """

    kind: FaultKind
    http_status: int = 500
    is_operational: bool = False
    message: str = "Internal server error"
    context: Mapping[str, Any] = field(default_factory=dict)
    request_context: RequestContext | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    exception: BaseException | None = field(default=None, repr=False, compare=False)

    @property
    def timestamp_iso(self) -> str:
        return self.timestamp.isoformat()

    def with_request_context(self, request_context: RequestContext) -> Fault:
        """Return a copy carrying ``request_context``; the original is untouched."""
        return replace(self, request_context=request_context)

    def stack_trace(self) -> str | None:
        """Render the originating exception chain, if any."""
        if self.exception is None:
            return None
        return format_stack(self.exception)


def format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


# ──────────────────────── Explicit application faults ────────────────────────


class AppError(Exception):
    """
    Fault raised deliberately by route code.

    Carries an explicit status and operational flag, so classification passes
    it through unchanged.

        raise AppError("Bus not found", status_code=404, kind=FaultKind.NOT_FOUND)
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        is_operational: bool = True,
        context: Mapping[str, Any] | None = None,
        kind: FaultKind = FaultKind.UNCLASSIFIED,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = is_operational
        self.context: dict[str, Any] = dict(context or {})
        self.kind = kind
        self.timestamp = _utcnow()
        self.request_context: RequestContext | None = None


# ──────────────────────── Boundary faults ────────────────────────


class BoundaryFault(Exception):
    """Base for faults adapted from a lower-level library at an integration boundary."""


class CastFault(BoundaryFault):
    """A path/value pair that could not be cast to the declared type."""

    def __init__(self, path: str, value: Any) -> None:
        super().__init__(f"Cast to {path} failed for value {value!r}")
        self.path = path
        self.value = value


class DuplicateKeyFault(BoundaryFault):
    """Unique index violation; ``key_value`` maps the offending field to its value."""

    def __init__(self, key_value: Mapping[str, Any]) -> None:
        if not key_value:
            raise ValueError("key_value must name at least one field")
        super().__init__(f"Duplicate key: {dict(key_value)}")
        self.key_value = dict(key_value)


class DocumentValidationFault(BoundaryFault):
    """Per-field validation messages, keyed by field path."""

    def __init__(self, errors: Mapping[str, str]) -> None:
        super().__init__(f"Validation failed for {len(errors)} field(s)")
        self.errors = dict(errors)

    @property
    def messages(self) -> list[str]:
        return list(self.errors.values())

    @classmethod
    def from_pydantic(cls, exc: Any) -> DocumentValidationFault:
        """
        Adapt a pydantic ``ValidationError`` or FastAPI ``RequestValidationError``.

        Both expose ``errors()`` as a list of dicts with ``loc`` and ``msg``.
        Entries sharing a location keep every message.
        """
        errors: dict[str, str] = {}
        for index, item in enumerate(exc.errors()):
            loc = ".".join(str(part) for part in item.get("loc", ())) or str(index)
            key = loc if loc not in errors else f"{loc}[{index}]"
            errors[key] = str(item.get("msg", "invalid value"))
        return cls(errors)


class InvalidTokenFault(BoundaryFault):
    """Token could not be decoded or failed signature verification."""


class ExpiredTokenFault(BoundaryFault):
    """Token decoded but is past its ``exp`` claim."""


@unique
class UploadLimitCode(Enum):
    FILE_SIZE = "LIMIT_FILE_SIZE"
    FILE_COUNT = "LIMIT_FILE_COUNT"
    UNEXPECTED_FILE = "LIMIT_UNEXPECTED_FILE"
    OTHER = "LIMIT_OTHER"


class UploadLimitFault(BoundaryFault):
    """Multipart upload rejected by a size, count or field limit."""

    def __init__(self, code: UploadLimitCode, field_name: str | None = None) -> None:
        super().__init__(f"Upload limit exceeded: {code.value}")
        self.code = code
        self.field_name = field_name


class UnhandledRejectionError(Exception):
    """Wraps a non-exception reason from an unobserved asynchronous failure."""

    def __init__(self, reason: object, source: object | None = None) -> None:
        super().__init__(f"Unhandled Rejection: {reason}")
        self.reason = reason
        self.source = source
