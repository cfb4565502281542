"""Operator earnings ledger.

Earnings move pending -> confirmed -> paid. A damage hold parks a bundle's
pending and confirmed records in `held`; releasing the hold confirms them
with the fault-based deduction for that damage applied. Bulk hold and
release always run inside the caller's transaction, so a bundle's records
are either all moved or none are.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from piecerate_engine.calculators import (
    BundleInfo,
    CompletionInfo,
    DamageReport,
    DamageReportStatus,
    PaymentCalculator,
)
from piecerate_engine.errors import InvalidStateError, NotFoundError, ValidationError
from piecerate_engine.models import BundlePaymentHold, OperatorEarnings, PaymentRelease
from piecerate_engine.services.collaborators import RateLookup
from piecerate_engine.services.types import (
    EarningsSummary,
    EarningsView,
    ReleaseOutcome,
    WorkCompletion,
    validate_rate,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

HOLDABLE_STATUSES = ("pending", "confirmed")


def hold_reason_for(hold_id: UUID) -> str:
    """Reason stamped on every record parked by a hold."""
    return f"Bundle payment hold: {hold_id}"


class EarningsLedger:
    """Records, holds, releases, confirms and pays operator earnings."""

    def __init__(
        self,
        session: AsyncSession,
        calculator: PaymentCalculator | None = None,
        rate_lookup: RateLookup | None = None,
        id_factory: Callable[[], UUID] = uuid4,
    ):
        self.session = session
        self.calculator = calculator or PaymentCalculator()
        self.rate_lookup = rate_lookup
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def resolve_rate(self, work: WorkCompletion) -> Decimal:
        """Rate from the payload, else from the rate lookup. Never guessed."""
        if work.rate_per_piece is not None:
            return validate_rate(work.rate_per_piece)
        if self.rate_lookup is not None:
            rate = await self.rate_lookup.get_rate(work.operation, work.machine_type)
            if rate is not None:
                return validate_rate(rate)
        raise ValidationError(
            f"No rate for operation '{work.operation}'",
            field="rate_per_piece",
        )

    async def record_earnings(
        self,
        work: WorkCompletion,
        now: datetime,
        active_hold: BundlePaymentHold | None = None,
    ) -> OperatorEarnings:
        """Create an earnings record for a completed operation.

        If the bundle already has an active hold for this operator the
        record is created held, so the operator never sees it as payable.
        """
        work.validate()
        rate = await self.resolve_rate(work)
        base = rate * work.pieces

        deduction = ZERO
        damage_reason = None
        if work.damage is not None:
            deduction = self.calculator.fault_deduction(
                work.damage.damage_type,
                work.damage.severity,
                work.damage.affected_pieces,
                rate,
                operator_fault=work.damage.operator_fault,
            )
            damage_reason = work.damage.reason or self.calculator.classifier.payment_reason(
                work.damage.damage_type
            )
        deduction = min(deduction, base)

        record = OperatorEarnings(
            earnings_id=self.id_factory(),
            operator_id=work.operator_id,
            operator_name=work.operator_name,
            bundle_number=work.bundle_number,
            article_number=work.article_number,
            operation=work.operation,
            machine_type=work.machine_type,
            pieces=work.pieces,
            rate_per_piece=rate,
            base_earnings=base,
            damage_deduction=deduction,
            damage_reason=damage_reason,
            earnings=base - deduction,
            status="pending",
            quality_notes=work.quality_notes,
            completed_at=work.completed_at or now,
            updated_at=now,
            created_at=now,
        )
        if active_hold is not None:
            record.status = "held"
            record.hold_id = active_hold.hold_id
            record.hold_reason = hold_reason_for(active_hold.hold_id)
            record.held_at = now

        self.session.add(record)
        await self.session.flush()
        return record

    # ------------------------------------------------------------------
    # Hold / release
    # ------------------------------------------------------------------

    async def hold_for(
        self,
        bundle_number: str,
        operator_id: str,
        hold_id: UUID,
        now: datetime,
    ) -> int:
        """Park every payable record of a bundle/operator under a hold.

        Returns count of held records. Paid records are left alone.
        """
        result = await self.session.execute(
            update(OperatorEarnings)
            .where(
                OperatorEarnings.bundle_number == bundle_number,
                OperatorEarnings.operator_id == operator_id,
                OperatorEarnings.status.in_(HOLDABLE_STATUSES),
            )
            .values(
                status="held",
                hold_id=hold_id,
                hold_reason=hold_reason_for(hold_id),
                held_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def held_records(self, bundle_number: str, operator_id: str) -> list[OperatorEarnings]:
        """Records of a bundle/operator parked by any bundle hold.

        Records held individually by a supervisor (no hold_id) are excluded.
        """
        result = await self.session.execute(
            select(OperatorEarnings)
            .where(
                OperatorEarnings.bundle_number == bundle_number,
                OperatorEarnings.operator_id == operator_id,
                OperatorEarnings.status == "held",
                OperatorEarnings.hold_id.is_not(None),
            )
            .order_by(OperatorEarnings.completed_at, OperatorEarnings.earnings_id)
            .with_for_update()
        )
        return list(result.scalars().all())

    async def release_for(
        self,
        hold: BundlePaymentHold,
        release_kind: str,
        released_by: str,
        reason: str,
        now: datetime,
        successor: BundlePaymentHold | None = None,
    ) -> ReleaseOutcome:
        """Release the records parked on a hold's bundle/operator and write the audit entry.

        A completed release charges the hold's fault deduction to every
        record held on the pair, including records still parked under an
        older hold; a forced release pays in full. When another hold is
        still active on the pair the records move to it, keeping the
        deduction, instead of becoming payable. The unique hold_id on
        payment_releases makes a second release of the same hold fail at
        flush.
        """
        records = await self.held_records(hold.bundle_number, hold.operator_id)

        released = 0
        transferred = 0
        amount = ZERO
        total_deduction = ZERO
        breakdowns: list[dict[str, Any]] = []

        for record in records:
            if release_kind == "completed":
                deduction, breakdown = self._release_deduction(record, hold)
                breakdowns.append(
                    {"earnings_id": str(record.earnings_id), "deduction": str(deduction), **breakdown}
                )
                if deduction > ZERO:
                    record.damage_deduction = min(record.base_earnings, record.damage_deduction + deduction)
                    record.earnings = max(ZERO, record.base_earnings - record.damage_deduction)
                    record.damage_reason = self.calculator.classifier.payment_reason(hold.damage_type)
                    total_deduction += deduction
            else:
                breakdowns.append(
                    {"earnings_id": str(record.earnings_id), "deduction": "0", "forced": True}
                )
            record.updated_at = now

            if successor is not None:
                record.hold_id = successor.hold_id
                record.hold_reason = hold_reason_for(successor.hold_id)
                transferred += 1
                continue

            record.status = "confirmed"
            record.hold_reason = None
            record.hold_released_at = now
            record.confirmed_at = now
            record.confirmed_by = released_by
            amount += record.earnings
            released += 1

        self.session.add(
            PaymentRelease(
                release_id=self.id_factory(),
                hold_id=hold.hold_id,
                bundle_number=hold.bundle_number,
                operator_id=hold.operator_id,
                operator_name=hold.operator_name,
                release_kind=release_kind,
                released_by=released_by,
                reason=reason,
                earnings_count=released,
                transferred_count=transferred,
                amount_released=amount,
                damage_deduction=total_deduction,
                breakdown_json=breakdowns,
                released_at=now,
                created_at=now,
            )
        )
        await self.session.flush()

        if transferred:
            logger.info(
                "Hold %s released; %d records stay held under hold %s",
                hold.hold_id,
                transferred,
                successor.hold_id if successor else None,
            )

        return ReleaseOutcome(
            released_count=released,
            transferred_count=transferred,
            amount_released=amount,
            damage_deduction=total_deduction,
            breakdowns=breakdowns,
        )

    def _release_deduction(
        self, record: OperatorEarnings, hold: BundlePaymentHold
    ) -> tuple[Decimal, dict[str, Any]]:
        """Deduction for the hold's damaged pieces within one record."""
        affected = min(hold.damage_count, record.pieces)
        result = self.calculator.calculate_bundle_payment(
            BundleInfo(
                bundle_number=record.bundle_number,
                total_pieces=record.pieces,
                rate=record.rate_per_piece,
                operation=record.operation,
                operator=record.operator_id,
            ),
            CompletionInfo(completed_pieces=record.pieces),
            [
                DamageReport(
                    damage_type=hold.damage_type,
                    severity=hold.severity,
                    affected_pieces=affected,
                    status=DamageReportStatus.RETURNED_COMPLETED,
                )
            ],
        )
        return result.breakdown.fault_deduction, result.to_dict()

    async def hold_earnings(
        self, earnings_id: UUID, reason: str, held_by: str, now: datetime
    ) -> OperatorEarnings:
        """Hold a single record on a supervisor's say-so, outside any bundle hold.

        Holding a record that is already held is a no-op.
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to hold earnings", field="reason")
        if not held_by or not held_by.strip():
            raise ValidationError("held_by is required", field="held_by")

        record = await self._require(earnings_id)
        if record.status == "held":
            return record
        if record.status not in HOLDABLE_STATUSES:
            raise InvalidStateError(record.status, "hold earnings")

        record.status = "held"
        record.hold_id = None
        record.hold_reason = reason
        record.held_by = held_by
        record.held_at = now
        record.updated_at = now
        await self.session.flush()
        logger.info("Earnings %s held by %s: %s", earnings_id, held_by, reason)
        return record

    async def release_earnings_hold(
        self, earnings_id: UUID, released_by: str, now: datetime
    ) -> OperatorEarnings:
        """Confirm a record held by hold_earnings.

        Records parked by a bundle hold are released only with that hold.
        """
        if not released_by or not released_by.strip():
            raise ValidationError("released_by is required", field="released_by")

        record = await self._require(earnings_id)
        if record.status != "held":
            raise InvalidStateError(record.status, "release earnings hold", "earnings are not held")
        if record.hold_id is not None:
            raise InvalidStateError(
                record.status,
                "release earnings hold",
                f"held by bundle hold {record.hold_id}",
            )

        record.status = "confirmed"
        record.hold_reason = None
        record.hold_released_at = now
        record.confirmed_at = now
        record.confirmed_by = released_by
        record.updated_at = now
        await self.session.flush()
        return record

    # ------------------------------------------------------------------
    # Confirm / pay
    # ------------------------------------------------------------------

    async def _require(self, earnings_id: UUID) -> OperatorEarnings:
        result = await self.session.execute(
            select(OperatorEarnings)
            .where(OperatorEarnings.earnings_id == earnings_id)
            .with_for_update()
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("Earnings", earnings_id)
        return record

    async def confirm_earnings(
        self, earnings_ids: list[UUID], confirmed_by: str, now: datetime
    ) -> list[OperatorEarnings]:
        """Confirm pending records. Already confirmed records are skipped."""
        records = []
        for earnings_id in earnings_ids:
            record = await self._require(earnings_id)
            if record.status == "confirmed":
                continue
            if record.status != "pending":
                raise InvalidStateError(record.status, "confirm earnings")
            record.status = "confirmed"
            record.confirmed_at = now
            record.confirmed_by = confirmed_by
            record.updated_at = now
            records.append(record)
        await self.session.flush()
        return records

    async def mark_as_paid(
        self,
        earnings_ids: list[UUID],
        paid_by: str,
        payment_reference: str | None,
        now: datetime,
    ) -> list[OperatorEarnings]:
        """Mark confirmed records paid. Held records can never be paid."""
        records = []
        for earnings_id in earnings_ids:
            record = await self._require(earnings_id)
            if record.status == "paid":
                continue
            if record.status != "confirmed":
                raise InvalidStateError(record.status, "mark earnings paid")
            record.status = "paid"
            record.paid_at = now
            record.paid_by = paid_by
            record.payment_reference = payment_reference
            record.updated_at = now
            records.append(record)
        await self.session.flush()
        return records

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_for_operator(
        self,
        operator_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        status: str | None = None,
    ) -> list[OperatorEarnings]:
        stmt = select(OperatorEarnings).where(OperatorEarnings.operator_id == operator_id)
        if start is not None:
            stmt = stmt.where(OperatorEarnings.completed_at >= start)
        if end is not None:
            stmt = stmt.where(OperatorEarnings.completed_at <= end)
        if status is not None:
            stmt = stmt.where(OperatorEarnings.status == status)
        result = await self.session.execute(stmt.order_by(OperatorEarnings.completed_at.desc()))
        return list(result.scalars().all())

    async def get_operator_summary(
        self,
        operator_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> EarningsSummary:
        """Totals by status for one operator."""
        summary = EarningsSummary(operator_id=operator_id)
        for record in await self.list_for_operator(operator_id, start, end):
            summary.operator_name = summary.operator_name or record.operator_name
            summary.add(EarningsView.from_model(record))
        return summary

    async def get_all_operators_summary(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[EarningsSummary]:
        """Totals by status per operator, highest earners first."""
        stmt = select(OperatorEarnings)
        if start is not None:
            stmt = stmt.where(OperatorEarnings.completed_at >= start)
        if end is not None:
            stmt = stmt.where(OperatorEarnings.completed_at <= end)
        result = await self.session.execute(stmt.order_by(OperatorEarnings.completed_at))

        summaries: OrderedDict[str, EarningsSummary] = OrderedDict()
        for record in result.scalars().all():
            summary = summaries.get(record.operator_id)
            if summary is None:
                summary = EarningsSummary(operator_id=record.operator_id)
                summaries[record.operator_id] = summary
            summary.operator_name = summary.operator_name or record.operator_name
            summary.add(EarningsView.from_model(record))

        return sorted(summaries.values(), key=lambda s: s.total_earnings, reverse=True)
