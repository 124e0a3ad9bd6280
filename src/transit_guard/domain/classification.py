"""
Error classification — pure mapping from a raw fault to a ``Fault``.

No I/O, no logging: the request middleware decides what to report and what to
render. Priority order is fixed:

    AppError → Cast → Duplicate → Validation → InvalidToken → ExpiredToken
    → UploadLimit → Unclassified
"""

from __future__ import annotations

from transit_guard.domain.faults import (
    AppError,
    CastFault,
    DocumentValidationFault,
    DuplicateKeyFault,
    ExpiredTokenFault,
    Fault,
    FaultKind,
    InvalidTokenFault,
    UploadLimitCode,
    UploadLimitFault,
)

INVALID_TOKEN_MESSAGE = "Invalid token. Please log in again."
EXPIRED_TOKEN_MESSAGE = "Your token has expired. Please log in again."

_UPLOAD_MESSAGES: dict[UploadLimitCode, str] = {
    UploadLimitCode.FILE_SIZE: "File size is too large. Maximum size is 5MB.",
    UploadLimitCode.FILE_COUNT: "Too many files. Maximum 5 files allowed.",
    UploadLimitCode.UNEXPECTED_FILE: "Unexpected file field.",
    UploadLimitCode.OTHER: "File upload error",
}


class HttpStatusMapper:
    """Maps FaultKind values to HTTP status codes."""

    _KIND_TO_STATUS: dict[FaultKind, int] = {
        FaultKind.VALIDATION: 400,
        FaultKind.DUPLICATE: 400,
        FaultKind.CAST_MISMATCH: 400,
        FaultKind.UPLOAD_LIMIT: 400,
        FaultKind.AUTH_TOKEN_INVALID: 401,
        FaultKind.AUTH_TOKEN_EXPIRED: 401,
        FaultKind.NOT_FOUND: 404,
        FaultKind.UNCLASSIFIED: 500,
    }

    @classmethod
    def map_kind(cls, kind: FaultKind) -> int:
        return cls._KIND_TO_STATUS.get(kind, 500)


def resolve_defaults(raw: BaseException) -> tuple[int, bool]:
    """
    Resolve ``(http_status, is_operational)`` without classifying.

    Raw faults that carry neither attribute resolve to ``(500, False)``.
    """
    status = getattr(raw, "status_code", None)
    operational = getattr(raw, "is_operational", None)
    if not isinstance(status, int):
        status = 500
    if not isinstance(operational, bool):
        operational = False
    return status, operational


def classify(raw: BaseException) -> Fault:
    """
    Convert a raw fault into a classified, immutable ``Fault``.

    The originating exception is kept on ``Fault.exception`` so reporting can
    still see the unredacted original.
    """
    match raw:
        case AppError():
            return Fault(
                kind=raw.kind,
                http_status=raw.status_code,
                is_operational=raw.is_operational,
                message=raw.message,
                context=dict(raw.context),
                request_context=raw.request_context,
                timestamp=raw.timestamp,
                exception=raw,
            )
        case CastFault(path=path, value=value):
            return _operational(FaultKind.CAST_MISMATCH, f"Invalid {path}: {value}", raw)
        case DuplicateKeyFault(key_value=key_value):
            field_name, value = next(iter(key_value.items()))
            message = f"Duplicate field value: {field_name}='{value}'. Please use another value."
            return _operational(FaultKind.DUPLICATE, message, raw)
        case DocumentValidationFault():
            message = f"Invalid input data. {'. '.join(raw.messages)}"
            return _operational(FaultKind.VALIDATION, message, raw)
        case InvalidTokenFault():
            return _operational(FaultKind.AUTH_TOKEN_INVALID, INVALID_TOKEN_MESSAGE, raw)
        case ExpiredTokenFault():
            return _operational(FaultKind.AUTH_TOKEN_EXPIRED, EXPIRED_TOKEN_MESSAGE, raw)
        case UploadLimitFault(code=code):
            return _operational(FaultKind.UPLOAD_LIMIT, _UPLOAD_MESSAGES[code], raw)
        case _:
            status, _ = resolve_defaults(raw)
            return Fault(
                kind=FaultKind.UNCLASSIFIED,
                http_status=status if status >= 500 else 500,
                is_operational=False,
                message=str(raw) or type(raw).__name__,
                request_context=getattr(raw, "request_context", None),
                exception=raw,
            )


def _operational(kind: FaultKind, message: str, raw: BaseException) -> Fault:
    return Fault(
        kind=kind,
        http_status=HttpStatusMapper.map_kind(kind),
        is_operational=True,
        message=message,
        request_context=getattr(raw, "request_context", None),
        exception=raw,
    )
