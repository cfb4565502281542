"""Hold change events and the subscription feed."""

from piecerate_engine.events.feed import HoldCallback, HoldChangeFeed, Unsubscribe
from piecerate_engine.events.types import HoldChanged, HoldChangeKind

__all__ = [
    "HoldCallback",
    "HoldChangeFeed",
    "HoldChanged",
    "HoldChangeKind",
    "Unsubscribe",
]
