"""Piece-rate bundle payment hold and rework reconciliation engine."""

from piecerate_engine.calculators import FaultClassifier, PaymentCalculator
from piecerate_engine.errors import (
    ConcurrencyConflict,
    InvalidStateError,
    NotFoundError,
    PieceRateError,
    StoreUnavailable,
    ValidationError,
)
from piecerate_engine.events import HoldChanged, HoldChangeFeed
from piecerate_engine.policy import CalculatorPolicy, EngineConfig, FaultPolicy, RetryPolicy
from piecerate_engine.services import OperationResult, PaymentHoldEngine

__version__ = "0.1.0"

__all__ = [
    "PaymentHoldEngine",
    "OperationResult",
    "FaultClassifier",
    "PaymentCalculator",
    "HoldChanged",
    "HoldChangeFeed",
    "EngineConfig",
    "FaultPolicy",
    "CalculatorPolicy",
    "RetryPolicy",
    "PieceRateError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "ConcurrencyConflict",
    "StoreUnavailable",
]
