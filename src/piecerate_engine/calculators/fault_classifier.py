"""Fault attribution for damage types."""

from __future__ import annotations

from decimal import Decimal

from piecerate_engine.calculators.types import FaultCategory, FaultClassification
from piecerate_engine.policy import FaultPolicy


class FaultClassifier:
    """Maps a damage type (and severity) to fault and deduction fraction.

    Material, cutting and dyeing problems are never the operator's fault.
    Stitching, needle, tension and alignment problems are. Anything the
    tables do not know is treated as operator error at the unknown-type
    rate. Pure and total: no input raises.
    """

    def __init__(self, policy: FaultPolicy | None = None):
        self.policy = policy or FaultPolicy()

    def classify(self, damage_type: str | None) -> FaultClassification:
        """Classify a damage type."""
        key = (damage_type or "").strip().lower()
        if key in self.policy.not_operator_fault_types:
            return FaultClassification(key, False, FaultCategory.NOT_OPERATOR_FAULT)
        return FaultClassification(key, True, FaultCategory.OPERATOR_ERROR)

    def is_known(self, damage_type: str | None) -> bool:
        key = (damage_type or "").strip().lower()
        return (
            key in self.policy.not_operator_fault_types
            or key in self.policy.operator_error_types
        )

    def normalize_severity(self, severity: str | None) -> str:
        """Severity with the configured default applied."""
        if severity is None or not str(severity).strip():
            return self.policy.default_severity
        return str(severity).strip().lower()

    def penalty_rate(self, severity: str | None = None) -> Decimal:
        """Deduction fraction for an operator error of this severity."""
        key = self.normalize_severity(severity)
        return self.policy.penalty_rates.get(key, self.policy.unknown_severity_penalty)

    def deduction_fraction(
        self,
        damage_type: str | None,
        severity: str | None = None,
        operator_fault: bool | None = None,
    ) -> Decimal:
        """Fraction of the piece rate withheld for this damage.

        operator_fault=False clears fault regardless of the tables.
        """
        if operator_fault is False:
            return Decimal("0")
        classification = self.classify(damage_type)
        if not classification.operator_fault:
            return Decimal("0")
        if not self.is_known(damage_type):
            return self.policy.unknown_type_penalty
        return self.penalty_rate(severity)

    def payment_reason(self, damage_type: str | None) -> str:
        """Human-readable reason for the payment decision."""
        if self.classify(damage_type).operator_fault:
            return "Operator error - reduced payment applied"
        return "Material/cutting defect - not operator fault"
