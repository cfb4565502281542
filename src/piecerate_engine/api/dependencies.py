"""FastAPI dependencies for dependency injection."""

from typing import Annotated, TypeVar

from fastapi import Depends, HTTPException, Request, status

from piecerate_engine.services import ErrorKind, OperationResult, PaymentHoldEngine

T = TypeVar("T")

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_hold_engine(request: Request) -> PaymentHoldEngine:
    """Engine created by the application lifespan."""
    engine = getattr(request.app.state, "hold_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Engine not initialized", "code": "store_unavailable"},
        )
    return engine


def unwrap_result(result: OperationResult[T]) -> T:
    """Return result data or raise the HTTP error for its kind."""
    if result.success:
        return result.data  # type: ignore[return-value]
    error = result.error
    if error is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Operation failed without an error", "code": "internal"},
        )
    headers = {"Retry-After": "1"} if error.retryable else None
    raise HTTPException(
        status_code=STATUS_BY_KIND[error.kind],
        detail={
            "message": error.message,
            "code": error.kind.value,
            "retryable": error.retryable,
            "context": error.details or None,
        },
        headers=headers,
    )


# Type aliases for cleaner dependency injection
HoldEngine = Annotated[PaymentHoldEngine, Depends(get_hold_engine)]
