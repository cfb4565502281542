"""Request payloads and read views for the hold engine.

Requests validate themselves before any write. Views are immutable
snapshots handed to callers and observers instead of live ORM objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any
from uuid import UUID

from piecerate_engine.errors import ValidationError

if TYPE_CHECKING:
    from piecerate_engine.models import (
        BundlePaymentHold,
        OperatorEarnings,
        ReworkRound,
        WorkAssignment,
    )


def _require(value: Any, name: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{name} is required", field=name)


# ============================================================================
# Requests
# ============================================================================


@dataclass(frozen=True)
class BundleDamageReport:
    """Damage reported against an operator's bundle."""

    bundle_number: str
    operator_id: str
    total_pieces: int
    completed_pieces: int
    damage_count: int
    damage_type: str
    operator_name: str | None = None
    damage_description: str | None = None
    severity: str | None = None
    supervisor_notified: bool = True

    def validate(self) -> None:
        _require(self.bundle_number, "bundle_number")
        _require(self.operator_id, "operator_id")
        _require(self.damage_type, "damage_type")
        if self.total_pieces <= 0:
            raise ValidationError("total_pieces must be positive", field="total_pieces")
        if not 0 <= self.completed_pieces <= self.total_pieces:
            raise ValidationError(
                f"completed_pieces must be between 0 and total_pieces ({self.total_pieces})",
                field="completed_pieces",
            )
        if self.damage_count <= 0:
            raise ValidationError("damage_count must be positive", field="damage_count")
        if self.damage_count > self.total_pieces:
            raise ValidationError(
                f"damage_count {self.damage_count} exceeds total_pieces {self.total_pieces}",
                field="damage_count",
            )


@dataclass(frozen=True)
class ReworkRequest:
    """Supervisor's rework assignment for a hold."""

    supervisor_id: str
    replacement_pieces: int
    assigned_to: str
    supervisor_name: str | None = None
    assigned_operator_name: str | None = None
    rework_instructions: str | None = None
    due_date: datetime | None = None

    def validate(self) -> None:
        _require(self.supervisor_id, "supervisor_id")
        _require(self.assigned_to, "assigned_to")
        if self.replacement_pieces <= 0:
            raise ValidationError("replacement_pieces must be positive", field="replacement_pieces")


@dataclass(frozen=True)
class ReworkCompletion:
    """Operator's report that a rework round is done."""

    operator_id: str
    completed_pieces: int
    operator_name: str | None = None
    quality_notes: str | None = None
    completed_at: datetime | None = None

    def validate(self) -> None:
        _require(self.operator_id, "operator_id")
        if self.completed_pieces < 0:
            raise ValidationError("completed_pieces cannot be negative", field="completed_pieces")


@dataclass(frozen=True)
class DamageInfo:
    """Damage known at the time earnings are recorded."""

    damage_type: str
    affected_pieces: int = 1
    severity: str | None = None
    reason: str | None = None
    operator_fault: bool | None = None


@dataclass(frozen=True)
class WorkCompletion:
    """A completed piece-rate operation to be recorded as earnings.

    rate_per_piece may be omitted; the engine then asks its rate lookup.
    """

    operator_id: str
    bundle_number: str
    operation: str
    pieces: int
    rate_per_piece: Decimal | None = None
    operator_name: str | None = None
    article_number: str | None = None
    machine_type: str | None = None
    completed_at: datetime | None = None
    quality_notes: str | None = None
    damage: DamageInfo | None = None

    def validate(self) -> None:
        _require(self.operator_id, "operator_id")
        _require(self.bundle_number, "bundle_number")
        _require(self.operation, "operation")
        if self.pieces <= 0:
            raise ValidationError("pieces must be positive", field="pieces")
        if self.rate_per_piece is not None:
            validate_rate(self.rate_per_piece)
        if self.damage is not None:
            _require(self.damage.damage_type, "damage.damage_type")
            if not 0 < self.damage.affected_pieces <= self.pieces:
                raise ValidationError(
                    "damage.affected_pieces must be between 1 and pieces",
                    field="damage.affected_pieces",
                )


def validate_rate(rate: Any) -> Decimal:
    """Coerce a piece rate to Decimal, rejecting negatives and junk."""
    try:
        value = Decimal(str(rate))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"invalid rate_per_piece {rate!r}", field="rate_per_piece") from exc
    if not value.is_finite() or value < 0:
        raise ValidationError("rate_per_piece must be a non-negative number", field="rate_per_piece")
    return value


# ============================================================================
# Views
# ============================================================================


@dataclass(frozen=True)
class ReworkView:
    """Snapshot of one rework round."""

    round_number: int
    supervisor_id: str
    supervisor_name: str | None
    replacement_pieces: int
    rework_instructions: str | None
    due_date: datetime
    assigned_to: str
    assigned_operator_name: str | None
    assigned_at: datetime
    status: str
    completed_pieces: int | None
    completed_at: datetime | None
    completed_by: str | None
    quality_notes: str | None
    work_assignment_id: UUID | None

    @classmethod
    def from_model(cls, r: ReworkRound) -> ReworkView:
        return cls(
            round_number=r.round_number,
            supervisor_id=r.supervisor_id,
            supervisor_name=r.supervisor_name,
            replacement_pieces=r.replacement_pieces,
            rework_instructions=r.rework_instructions,
            due_date=r.due_date,
            assigned_to=r.assigned_to,
            assigned_operator_name=r.assigned_operator_name,
            assigned_at=r.assigned_at,
            status=r.status,
            completed_pieces=r.completed_pieces,
            completed_at=r.completed_at,
            completed_by=r.completed_by,
            quality_notes=r.quality_notes,
            work_assignment_id=r.work_assignment_id,
        )


@dataclass(frozen=True)
class HoldView:
    """Snapshot of a bundle payment hold."""

    hold_id: UUID
    bundle_number: str
    operator_id: str
    operator_name: str | None
    total_pieces: int
    completed_pieces: int
    remaining_pieces: int
    damage_count: int
    damage_type: str
    damage_description: str | None
    severity: str
    status: str
    payment_held: bool
    version: int
    reported_at: datetime
    rework_assigned_at: datetime | None
    rework_completed_at: datetime | None
    payment_released_at: datetime | None
    updated_at: datetime
    force_released_by: str | None = None
    force_release_reason: str | None = None
    rework_history: tuple[ReworkView, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, h: BundlePaymentHold) -> HoldView:
        return cls(
            hold_id=h.hold_id,
            bundle_number=h.bundle_number,
            operator_id=h.operator_id,
            operator_name=h.operator_name,
            total_pieces=h.total_pieces,
            completed_pieces=h.completed_pieces,
            remaining_pieces=h.remaining_pieces,
            damage_count=h.damage_count,
            damage_type=h.damage_type,
            damage_description=h.damage_description,
            severity=h.severity,
            status=h.status,
            payment_held=h.payment_held,
            version=h.version,
            reported_at=h.reported_at,
            rework_assigned_at=h.rework_assigned_at,
            rework_completed_at=h.rework_completed_at,
            payment_released_at=h.payment_released_at,
            updated_at=h.updated_at,
            force_released_by=h.force_released_by,
            force_release_reason=h.force_release_reason,
            rework_history=tuple(ReworkView.from_model(r) for r in h.rework_rounds),
        )


@dataclass(frozen=True)
class EarningsView:
    """Snapshot of an earnings record."""

    earnings_id: UUID
    operator_id: str
    operator_name: str | None
    bundle_number: str
    article_number: str | None
    operation: str
    machine_type: str | None
    pieces: int
    rate_per_piece: Decimal
    base_earnings: Decimal
    damage_deduction: Decimal
    damage_reason: str | None
    earnings: Decimal
    status: str
    hold_id: UUID | None
    hold_reason: str | None
    completed_at: datetime
    held_by: str | None = None

    @classmethod
    def from_model(cls, e: OperatorEarnings) -> EarningsView:
        return cls(
            earnings_id=e.earnings_id,
            operator_id=e.operator_id,
            operator_name=e.operator_name,
            bundle_number=e.bundle_number,
            article_number=e.article_number,
            operation=e.operation,
            machine_type=e.machine_type,
            pieces=e.pieces,
            rate_per_piece=e.rate_per_piece,
            base_earnings=e.base_earnings,
            damage_deduction=e.damage_deduction,
            damage_reason=e.damage_reason,
            earnings=e.earnings,
            status=e.status,
            hold_id=e.hold_id,
            hold_reason=e.hold_reason,
            completed_at=e.completed_at,
            held_by=e.held_by,
        )


@dataclass(frozen=True)
class WorkItemView:
    """Snapshot of a work assignment."""

    assignment_id: UUID
    assignment_type: str
    hold_id: UUID | None
    bundle_number: str
    operation: str
    operator_id: str
    pieces: int
    instructions: str | None
    priority: str
    status: str
    due_date: datetime | None
    assigned_at: datetime
    assigned_by: str | None

    @classmethod
    def from_model(cls, w: WorkAssignment) -> WorkItemView:
        return cls(
            assignment_id=w.assignment_id,
            assignment_type=w.assignment_type,
            hold_id=w.hold_id,
            bundle_number=w.bundle_number,
            operation=w.operation,
            operator_id=w.operator_id,
            pieces=w.pieces,
            instructions=w.instructions,
            priority=w.priority,
            status=w.status,
            due_date=w.due_date,
            assigned_at=w.assigned_at,
            assigned_by=w.assigned_by,
        )


@dataclass(frozen=True)
class CompleteReworkOutcome:
    """Result of completing a rework round."""

    hold_id: UUID
    payment_released: bool
    status: str
    completed_pieces: int
    total_complete: bool
    already_terminal: bool = False
    already_completed: bool = False


@dataclass(frozen=True)
class ForceReleaseOutcome:
    """Result of a supervisor force release."""

    hold_id: UUID
    status: str
    released_count: int
    amount_released: Decimal
    already_released: bool = False


@dataclass(frozen=True)
class ReleaseOutcome:
    """Result of releasing a hold's earnings."""

    released_count: int
    transferred_count: int
    amount_released: Decimal
    damage_deduction: Decimal
    breakdowns: list[dict[str, Any]]


@dataclass(frozen=True)
class PendingWork:
    """An operator's held bundles and open work assignments."""

    held_bundles: list[HoldView]
    regular_work: list[WorkItemView]

    @property
    def total_pending(self) -> int:
        return len(self.held_bundles) + len(self.regular_work)


@dataclass
class EarningsSummary:
    """Earnings totals by status for one operator."""

    operator_id: str
    operator_name: str | None = None
    total_earnings: Decimal = Decimal("0")
    pending_earnings: Decimal = Decimal("0")
    confirmed_earnings: Decimal = Decimal("0")
    held_earnings: Decimal = Decimal("0")
    paid_earnings: Decimal = Decimal("0")
    damage_deductions: Decimal = Decimal("0")
    total_pieces: int = 0
    work_count: int = 0
    records: list[EarningsView] = field(default_factory=list)

    def add(self, record: EarningsView) -> None:
        self.total_earnings += record.earnings
        self.damage_deductions += record.damage_deduction
        self.total_pieces += record.pieces
        self.work_count += 1
        if record.status == "pending":
            self.pending_earnings += record.earnings
        elif record.status == "confirmed":
            self.confirmed_earnings += record.earnings
        elif record.status == "held":
            self.held_earnings += record.earnings
        elif record.status == "paid":
            self.paid_earnings += record.earnings
        self.records.append(record)
