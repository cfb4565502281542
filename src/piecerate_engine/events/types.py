"""Hold change event types.

Events are:
- Immutable (frozen dataclasses)
- Emitted only after the transition that produced them has committed
- Ordered per hold by `sequence`
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from piecerate_engine.services.types import HoldView


class HoldChangeKind(str, Enum):
    """What happened to the hold."""

    CREATED = "created"
    REWORK_ASSIGNED = "rework_assigned"
    REWORK_COMPLETED = "rework_completed"
    PAYMENT_RELEASED = "payment_released"
    FORCE_RELEASED = "force_released"


@dataclass(frozen=True)
class HoldChanged:
    """A committed change to a bundle payment hold.

    `sequence` equals the hold version after the change, so observers can
    detect gaps or discard stale deliveries for the same hold.
    """

    kind: HoldChangeKind
    hold: HoldView
    sequence: int
    from_status: str | None
    occurred_at: datetime
    actor_id: str | None = None

    @property
    def hold_id(self) -> UUID:
        return self.hold.hold_id

    @property
    def payment_held(self) -> bool:
        return self.hold.payment_held

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "kind": self.kind.value,
            "hold_id": str(self.hold_id),
            "bundle_number": self.hold.bundle_number,
            "operator_id": self.hold.operator_id,
            "status": self.hold.status,
            "from_status": self.from_status,
            "payment_held": self.hold.payment_held,
            "sequence": self.sequence,
            "occurred_at": self.occurred_at.isoformat(),
            "actor_id": self.actor_id,
        }
