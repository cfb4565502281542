"""Error taxonomy for the hold and earnings engine.

Every failure the engine can report is one of these kinds. Services raise
them; the PaymentHoldEngine facade converts them into OperationError values
so nothing is thrown across the public boundary.
"""

from __future__ import annotations

from typing import Any


class PieceRateError(Exception):
    """Base exception for all engine errors."""

    kind = "internal"
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(PieceRateError):
    """Bad input. Rejected before any write."""

    kind = "validation"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message, {"field": field} if field else None)


class NotFoundError(PieceRateError):
    """Unknown hold, earnings record or bundle."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "entity_id": str(entity_id)},
        )


class InvalidStateError(PieceRateError):
    """Transition is not legal from the current state."""

    kind = "invalid_state"

    def __init__(self, current_status: str, attempted: str, reason: str | None = None):
        self.current_status = current_status
        self.attempted = attempted
        self.reason = reason
        msg = f"Cannot {attempted} while status is '{current_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            {"current_status": current_status, "attempted": attempted},
        )


class ConcurrencyConflict(PieceRateError):
    """Another writer changed the record between read and write."""

    kind = "concurrency_conflict"
    retryable = True


class StoreUnavailable(PieceRateError):
    """The store timed out or could not be reached."""

    kind = "store_unavailable"
    retryable = True
