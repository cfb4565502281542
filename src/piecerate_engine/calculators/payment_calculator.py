"""Damage-aware bundle payment calculation.

Key principle: operators are not penalized for fabric or material defects
beyond their control. Operator errors are paid at a reduced rate once the
piece has been reworked.

Calculation pipeline (stable order per bundle):
1) Partition damaged pieces into rework-completed and rework-pending
2) Pay good pieces at full rate
3) Pay rework-completed pieces at rate * (1 - deduction fraction)
4) Hold the same amount for every rework-pending piece
5) Subtract quality adjustments (defective pieces, low quality score)
6) Add the efficiency bonus for reworked bundles with excellent quality
7) Carry any penalty the releasable amount cannot cover against the held amount
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from piecerate_engine.calculators.fault_classifier import FaultClassifier
from piecerate_engine.calculators.types import (
    PENDING_REWORK_STATUSES,
    BundleInfo,
    CompletionInfo,
    DamagedPiece,
    DamageReport,
    DamageReportStatus,
    PaymentBreakdown,
    PaymentResult,
    PaymentStatus,
    PaymentValidation,
    PieceDetail,
)
from piecerate_engine.policy import CalculatorPolicy

ZERO = Decimal("0")


class PaymentCalculator:
    """Computes base, rework, held, penalty and bonus amounts for a bundle.

    The held amount for a pending rework piece is exactly what that piece
    will pay once reworked, so moving a piece from pending to completed
    shifts money from held to releasable without changing the total.
    """

    def __init__(
        self,
        classifier: FaultClassifier | None = None,
        policy: CalculatorPolicy | None = None,
    ):
        self.classifier = classifier or FaultClassifier()
        self.policy = policy or CalculatorPolicy()

    def calculate_bundle_payment(
        self,
        bundle: BundleInfo,
        completion: CompletionInfo,
        damage_reports: Iterable[DamageReport] = (),
    ) -> PaymentResult:
        """Calculate payment for a bundle with damage-aware hold/release logic."""
        rate = Decimal(bundle.rate)
        pieces = self.damaged_pieces(damage_reports)
        completed = [p for p in pieces if p.status == DamageReportStatus.RETURNED_COMPLETED]
        pending = [p for p in pieces if p.status in PENDING_REWORK_STATUSES]

        good_pieces = max(0, completion.completed_pieces - len(pieces))
        good_payment = rate * good_pieces

        rework_payment = ZERO
        fault_deduction = ZERO
        completed_details: list[PieceDetail] = []
        for piece in completed:
            amount = self.piece_payment(piece, rate)
            rework_payment += amount
            fault_deduction += rate - amount
            completed_details.append(
                PieceDetail(piece.piece_number, piece.damage_type, piece.operator_fault, amount, piece.status.value)
            )

        held_payment = ZERO
        pending_details: list[PieceDetail] = []
        for piece in pending:
            amount = self.piece_payment(piece, rate)
            held_payment += amount
            pending_details.append(
                PieceDetail(piece.piece_number, piece.damage_type, piece.operator_fault, amount, piece.status.value)
            )

        quality_penalty = self.quality_adjustment(bundle, completion, rate)
        efficiency_bonus = self.efficiency_bonus(bundle, completion, rate, required_rework=bool(pieces))

        releasable = good_payment + rework_payment - quality_penalty + efficiency_bonus
        current = max(ZERO, releasable)
        # Penalty beyond what is releasable now is carried against the held amount
        held_payment = max(ZERO, held_payment + min(ZERO, releasable))

        breakdown = PaymentBreakdown(
            total_pieces=bundle.total_pieces,
            completed_pieces=completion.completed_pieces,
            damaged_pieces=len(pieces),
            good_pieces=good_pieces,
            good_pieces_payment=good_payment,
            rework_completed_pieces=len(completed),
            rework_completed_payment=rework_payment,
            pending_rework_pieces=len(pending),
            held_payment=held_payment,
            fault_deduction=fault_deduction,
            quality_penalty=quality_penalty,
            efficiency_bonus=efficiency_bonus,
            current_payment=current,
        )

        return PaymentResult(
            bundle_number=bundle.bundle_number,
            rate=rate,
            status=PaymentStatus.PARTIAL_HOLD if pending else PaymentStatus.FULL_RELEASE,
            breakdown=breakdown,
            completed_details=completed_details,
            pending_details=pending_details,
        )

    def damaged_pieces(self, damage_reports: Iterable[DamageReport]) -> list[DamagedPiece]:
        """Flatten damage reports into individual pieces."""
        result: list[DamagedPiece] = []
        for report in damage_reports:
            fault = self.classifier.classify(report.damage_type).operator_fault
            if report.operator_fault is False:
                fault = False
            numbers = list(report.piece_numbers) or [None] * max(0, report.affected_pieces)
            for number in numbers:
                result.append(
                    DamagedPiece(
                        piece_number=number,
                        damage_type=report.damage_type,
                        severity=report.severity,
                        status=DamageReportStatus(report.status),
                        operator_fault=fault,
                        report_id=report.report_id,
                    )
                )
        return result

    def piece_payment(self, piece: DamagedPiece, rate: Decimal) -> Decimal:
        """Amount paid for one reworked piece."""
        fraction = self.classifier.deduction_fraction(
            piece.damage_type,
            piece.severity,
            operator_fault=piece.operator_fault,
        )
        return rate * (1 - fraction)

    def fault_deduction(
        self,
        damage_type: str,
        severity: str | None,
        affected_pieces: int,
        rate: Decimal,
        operator_fault: bool | None = None,
    ) -> Decimal:
        """Amount withheld for affected_pieces of this damage at this rate."""
        fraction = self.classifier.deduction_fraction(damage_type, severity, operator_fault)
        return Decimal(rate) * affected_pieces * fraction

    def quality_adjustment(
        self, bundle: BundleInfo, completion: CompletionInfo, rate: Decimal
    ) -> Decimal:
        """Penalty for permanently defective pieces and very poor quality."""
        adjustment = rate * completion.defective_pieces * self.policy.defective_piece_penalty

        score = completion.quality_score
        if score is not None and Decimal(score) < self.policy.quality_threshold:
            shortfall = (self.policy.quality_threshold - Decimal(score)) / 100
            adjustment += bundle.total_pieces * rate * shortfall * self.policy.quality_penalty_factor

        return max(ZERO, adjustment)

    def efficiency_bonus(
        self,
        bundle: BundleInfo,
        completion: CompletionInfo,
        rate: Decimal,
        required_rework: bool,
    ) -> Decimal:
        """Bonus for completing a bundle with damage complications well."""
        score = completion.quality_score
        if not required_rework or score is None:
            return ZERO
        if Decimal(score) < self.policy.bonus_quality_threshold:
            return ZERO
        return bundle.total_pieces * rate * self.policy.efficiency_bonus_rate

    def validate_payment(
        self,
        bundle: BundleInfo,
        completion: CompletionInfo,
        result: PaymentResult,
    ) -> PaymentValidation:
        """Flag piece-count mismatches and unusual payment amounts."""
        errors: list[str] = []
        warnings: list[str] = []
        b = result.breakdown

        accounted = b.good_pieces + b.damaged_pieces + completion.defective_pieces
        if completion.completed_pieces > bundle.total_pieces:
            errors.append(
                f"Completed pieces {completion.completed_pieces} exceed bundle size {bundle.total_pieces}"
            )
        elif accounted < completion.completed_pieces:
            errors.append(
                f"Piece count mismatch: expected {completion.completed_pieces}, got {accounted}"
            )

        full_value = bundle.total_pieces * Decimal(bundle.rate)
        if b.total_potential_payment < full_value * Decimal("0.5"):
            warnings.append("Payment is unusually low - please review quality penalties")
        if b.total_potential_payment > full_value * Decimal("1.2"):
            warnings.append("Payment is unusually high - please review bonuses")

        return PaymentValidation(errors=errors, warnings=warnings)
