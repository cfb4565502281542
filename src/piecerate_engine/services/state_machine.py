"""Bundle payment hold state machine with transition validation."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from piecerate_engine.errors import InvalidStateError

if TYPE_CHECKING:
    from piecerate_engine.models import BundlePaymentHold


class HoldStatus(str, Enum):
    """Hold status values."""

    DAMAGE_REPORTED = "damage_reported"
    REWORK_ASSIGNED = "rework_assigned"
    REWORK_COMPLETED = "rework_completed"
    PAYMENT_RELEASED = "payment_released"
    FORCE_RELEASED = "force_released"


class HoldStateMachine:
    """State machine for hold status transitions.

    Allowed transitions:
    - damage_reported → rework_assigned
    - rework_assigned → rework_completed (rework short of the bundle)
    - rework_assigned → payment_released (bundle complete)
    - rework_completed → rework_assigned (another round)
    - any non-terminal → force_released (supervisor override)
    """

    # Keyed by plain values: a str-mixin Enum member does not hash like its value
    VALID_TRANSITIONS: dict[str, list[str]] = {
        HoldStatus.DAMAGE_REPORTED.value: [
            HoldStatus.REWORK_ASSIGNED.value,
            HoldStatus.FORCE_RELEASED.value,
        ],
        HoldStatus.REWORK_ASSIGNED.value: [
            HoldStatus.REWORK_COMPLETED.value,
            HoldStatus.PAYMENT_RELEASED.value,
            HoldStatus.FORCE_RELEASED.value,
        ],
        HoldStatus.REWORK_COMPLETED.value: [
            HoldStatus.REWORK_ASSIGNED.value,
            HoldStatus.FORCE_RELEASED.value,
        ],
        HoldStatus.PAYMENT_RELEASED.value: [],  # Terminal state
        HoldStatus.FORCE_RELEASED.value: [],  # Terminal state
    }

    TERMINAL = {HoldStatus.PAYMENT_RELEASED.value, HoldStatus.FORCE_RELEASED.value}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(_value(from_status), [])
        return _value(to_status) in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str, action: str) -> None:
        """Validate a transition, raising InvalidStateError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateError(from_status, action)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return _value(status) in cls.TERMINAL

    @classmethod
    def payment_held_for(cls, status: str) -> bool:
        """Payment is held exactly while the hold is not terminal."""
        return _value(status) not in cls.TERMINAL

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(_value(current_status), [])

    @classmethod
    def apply(
        cls,
        hold: BundlePaymentHold,
        to_status: HoldStatus,
        action: str,
        now: datetime,
    ) -> str:
        """Move a hold to a new status, keeping payment_held in step.

        Returns the previous status.
        """
        from_status = hold.status
        cls.validate_transition(from_status, to_status, action)
        hold.status = to_status.value
        hold.payment_held = cls.payment_held_for(to_status)
        hold.updated_at = now
        return from_status


def _value(status: str) -> str:
    return status.value if isinstance(status, Enum) else status
