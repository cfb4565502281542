"""Fault attribution and damage-aware payment calculation."""

from piecerate_engine.calculators.fault_classifier import FaultClassifier
from piecerate_engine.calculators.payment_calculator import PaymentCalculator
from piecerate_engine.calculators.types import (
    BundleInfo,
    CompletionInfo,
    DamageReport,
    DamageReportStatus,
    FaultCategory,
    FaultClassification,
    PaymentBreakdown,
    PaymentResult,
    PaymentStatus,
    Severity,
)

__all__ = [
    "FaultClassifier",
    "PaymentCalculator",
    "BundleInfo",
    "CompletionInfo",
    "DamageReport",
    "DamageReportStatus",
    "FaultCategory",
    "FaultClassification",
    "PaymentBreakdown",
    "PaymentResult",
    "PaymentStatus",
    "Severity",
]
