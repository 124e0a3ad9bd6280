"""
Result — Success(value) or Failure(fault), for adapters that must not raise.

Telemetry submission and similar side effects run through
``Result.from_computation`` so that a broken collaborator turns into a value
the caller can log, never an exception propagating into request handling.

    result = Result.from_computation(lambda: client.post(url), "Telemetry submit failed")
    result.peek_failure(lambda fault: log.warning("telemetry.failed", error=fault.message))
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Generic, TypeVar

from transit_guard.domain.faults import Fault, FaultKind

T = TypeVar("T")
R = TypeVar("R")


class Result(Generic[T]):
    """Base of ``Success`` and ``Failure``; use the static factories."""

    def either(self, on_success: Callable[[T], R], on_failure: Callable[[Fault], R]) -> R:
        match self:
            case Success(v):
                return on_success(v)
            case Failure(fault):
                return on_failure(fault)
        raise TypeError("unreachable")  # pragma: no cover

    def peek_failure(self, action: Callable[[Fault], Any]) -> Result[T]:
        """Run ``action`` on the failure (for logging); returns self."""
        if isinstance(self, Failure):
            action(self.fault)
        return self

    @staticmethod
    def failure(
        message: str,
        exception: BaseException | None = None,
        kind: FaultKind = FaultKind.UNCLASSIFIED,
    ) -> Result[Any]:
        return Failure(Fault(kind=kind, message=message, exception=exception))

    @staticmethod
    def from_computation(computation: Callable[[], T], message: str) -> Result[T]:
        """Run ``computation``; any ``Exception`` becomes a Failure carrying it."""
        try:
            return Success(computation())
        except Exception as e:
            return Result.failure(f"{message}: {e}", e)


class Success(Result[T]):
    __match_args__ = ("payload",)

    def __init__(self, value: T) -> None:
        self.payload = value

    def __repr__(self) -> str:
        return f"Success({self.payload!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Success) and other.payload == self.payload

    def __hash__(self) -> int:
        return hash(("Success", self.payload))


class Failure(Result[Any]):
    __match_args__ = ("fault",)

    def __init__(self, fault: Fault) -> None:
        self.fault = fault

    def __repr__(self) -> str:
        return f"Failure({self.fault.kind.value}: {self.fault.message!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Failure) and other.fault == self.fault

    def __hash__(self) -> int:
        return hash(("Failure", self.fault.kind, self.fault.message))
