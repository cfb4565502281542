"""Hold engine services."""

from piecerate_engine.services.collaborators import (
    LoggingNotificationSink,
    Notification,
    NotificationSink,
    RateLookup,
    StaticRateTable,
)
from piecerate_engine.services.earnings_ledger import EarningsLedger
from piecerate_engine.services.hold_engine import PaymentHoldEngine, UnitOfWork
from piecerate_engine.services.hold_store import HoldStore
from piecerate_engine.services.results import ErrorKind, OperationError, OperationResult
from piecerate_engine.services.rework_coordinator import ReworkCoordinator
from piecerate_engine.services.state_machine import HoldStateMachine, HoldStatus
from piecerate_engine.services.types import (
    BundleDamageReport,
    CompleteReworkOutcome,
    DamageInfo,
    EarningsSummary,
    EarningsView,
    ForceReleaseOutcome,
    HoldView,
    PendingWork,
    ReworkCompletion,
    ReworkRequest,
    ReworkView,
    WorkCompletion,
    WorkItemView,
)

__all__ = [
    "PaymentHoldEngine",
    "UnitOfWork",
    "HoldStore",
    "EarningsLedger",
    "ReworkCoordinator",
    "HoldStateMachine",
    "HoldStatus",
    "ErrorKind",
    "OperationError",
    "OperationResult",
    "RateLookup",
    "NotificationSink",
    "Notification",
    "StaticRateTable",
    "LoggingNotificationSink",
    "BundleDamageReport",
    "ReworkRequest",
    "ReworkCompletion",
    "WorkCompletion",
    "DamageInfo",
    "HoldView",
    "ReworkView",
    "EarningsView",
    "WorkItemView",
    "PendingWork",
    "EarningsSummary",
    "CompleteReworkOutcome",
    "ForceReleaseOutcome",
]
