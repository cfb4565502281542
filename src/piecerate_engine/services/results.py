"""Discriminated success/error results for the public engine operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from piecerate_engine.errors import PieceRateError

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Kinds of failure a caller can act on."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    STORE_UNAVAILABLE = "store_unavailable"
    INTERNAL = "internal"


@dataclass(frozen=True)
class OperationError:
    """Error payload of a failed operation.

    retryable=True means "try again"; False means the same request will
    never succeed as is.
    """

    kind: ErrorKind
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: PieceRateError) -> OperationError:
        return cls(
            kind=ErrorKind(exc.kind),
            message=exc.message,
            retryable=exc.retryable,
            details=dict(exc.details),
        )


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Result of a public engine operation.

    IMPORTANT: check `success` before reading `data`. For bulk operations
    `affected_count` reports how many records were changed, including on
    failure, so partial application is never hidden.
    """

    success: bool
    data: T | None = None
    error: OperationError | None = None
    affected_count: int | None = None

    @classmethod
    def ok(cls, data: T, affected_count: int | None = None) -> OperationResult[T]:
        return cls(success=True, data=data, affected_count=affected_count)

    @classmethod
    def fail(cls, error: OperationError, affected_count: int | None = None) -> OperationResult[T]:
        return cls(success=False, error=error, affected_count=affected_count)

    def unwrap(self) -> T:
        """Return data or raise RuntimeError describing the failure."""
        if not self.success:
            if self.error is None:
                raise RuntimeError("Operation failed without an error")
            raise RuntimeError(f"{self.error.kind.value}: {self.error.message}")
        return self.data  # type: ignore[return-value]
