"""ORM models for holds, earnings and work assignments."""

from piecerate_engine.models.base import Base, TimestampMixin, utcnow
from piecerate_engine.models.earnings import OperatorEarnings, PaymentRelease
from piecerate_engine.models.holds import BundlePaymentHold, HoldTransition, ReworkRound
from piecerate_engine.models.work import WorkAssignment

__all__ = [
    "Base",
    "TimestampMixin",
    "utcnow",
    "BundlePaymentHold",
    "HoldTransition",
    "ReworkRound",
    "OperatorEarnings",
    "PaymentRelease",
    "WorkAssignment",
]
