"""Type definitions for the damage-aware payment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class Severity(str, Enum):
    """Damage severity levels."""

    MINOR = "minor"
    MAJOR = "major"
    SEVERE = "severe"


class FaultCategory(str, Enum):
    """Who is responsible for a damage type."""

    NOT_OPERATOR_FAULT = "NOT_OPERATOR_FAULT"
    OPERATOR_ERROR = "OPERATOR_ERROR"


class DamageReportStatus(str, Enum):
    """Lifecycle of a damage report as seen by the calculator."""

    REPORTED = "reported"
    SUPERVISOR_RECEIVED = "supervisor_received"
    IN_REWORK = "in_rework"
    RETURNED_COMPLETED = "returned_completed"


PENDING_REWORK_STATUSES = frozenset(
    {
        DamageReportStatus.REPORTED,
        DamageReportStatus.SUPERVISOR_RECEIVED,
        DamageReportStatus.IN_REWORK,
    }
)


class PaymentStatus(str, Enum):
    """Release status of a bundle payment."""

    PARTIAL_HOLD = "partial_hold"
    FULL_RELEASE = "full_release"


@dataclass(frozen=True)
class FaultClassification:
    """Result of classifying a damage type."""

    damage_type: str
    operator_fault: bool
    category: FaultCategory


@dataclass(frozen=True)
class DamageReport:
    """A damage report as input to the calculator.

    piece_numbers identifies the damaged pieces. When it is empty the report
    contributes affected_pieces anonymous pieces. operator_fault=False lets a
    supervisor clear fault on a type the tables would blame on the operator.
    """

    damage_type: str
    severity: str | None = None
    affected_pieces: int = 1
    piece_numbers: tuple[Any, ...] = ()
    status: DamageReportStatus = DamageReportStatus.REPORTED
    operator_fault: bool | None = None
    report_id: str | None = None


@dataclass(frozen=True)
class BundleInfo:
    """Bundle being paid."""

    bundle_number: str
    total_pieces: int
    rate: Decimal
    operation: str | None = None
    operator: str | None = None


@dataclass(frozen=True)
class CompletionInfo:
    """Operator's completion of a bundle.

    quality_score of None means no inspection score was recorded; neither
    the low-quality penalty nor the efficiency bonus applies then.
    """

    completed_pieces: int
    defective_pieces: int = 0
    quality_score: Decimal | None = None


@dataclass(frozen=True)
class DamagedPiece:
    """One damaged piece extracted from a report."""

    piece_number: Any
    damage_type: str
    severity: str | None
    status: DamageReportStatus
    operator_fault: bool
    report_id: str | None = None


@dataclass(frozen=True)
class PieceDetail:
    """Per-piece payment decision, kept for audit."""

    piece_number: Any
    damage_type: str
    operator_fault: bool
    amount: Decimal
    status: str


@dataclass
class PaymentBreakdown:
    """Full breakdown of a bundle payment. Never collapsed to one number."""

    total_pieces: int
    completed_pieces: int
    damaged_pieces: int
    good_pieces: int
    good_pieces_payment: Decimal
    rework_completed_pieces: int
    rework_completed_payment: Decimal
    pending_rework_pieces: int
    held_payment: Decimal
    fault_deduction: Decimal
    quality_penalty: Decimal
    efficiency_bonus: Decimal
    current_payment: Decimal

    @property
    def total_potential_payment(self) -> Decimal:
        """Releasable now plus held pending rework."""
        return self.current_payment + self.held_payment


@dataclass
class PaymentResult:
    """Result of calculating one bundle's payment."""

    bundle_number: str
    rate: Decimal
    status: PaymentStatus
    breakdown: PaymentBreakdown
    completed_details: list[PieceDetail] = field(default_factory=list)
    pending_details: list[PieceDetail] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (money as strings)."""
        b = self.breakdown
        return {
            "bundle_number": self.bundle_number,
            "rate": str(self.rate),
            "status": self.status.value,
            "breakdown": {
                "total_pieces": b.total_pieces,
                "completed_pieces": b.completed_pieces,
                "damaged_pieces": b.damaged_pieces,
                "good_pieces": b.good_pieces,
                "good_pieces_payment": str(b.good_pieces_payment),
                "rework_completed_pieces": b.rework_completed_pieces,
                "rework_completed_payment": str(b.rework_completed_payment),
                "pending_rework_pieces": b.pending_rework_pieces,
                "held_payment": str(b.held_payment),
                "fault_deduction": str(b.fault_deduction),
                "quality_penalty": str(b.quality_penalty),
                "efficiency_bonus": str(b.efficiency_bonus),
                "current_payment": str(b.current_payment),
                "total_potential_payment": str(b.total_potential_payment),
            },
            "completed": [_detail_dict(d) for d in self.completed_details],
            "pending": [_detail_dict(d) for d in self.pending_details],
        }


def _detail_dict(detail: PieceDetail) -> dict[str, Any]:
    return {
        "piece_number": detail.piece_number,
        "damage_type": detail.damage_type,
        "operator_fault": detail.operator_fault,
        "amount": str(detail.amount),
        "status": detail.status,
    }


@dataclass(frozen=True)
class PaymentValidation:
    """Sanity check of a calculated payment."""

    errors: list[str]
    warnings: list[str]

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0
