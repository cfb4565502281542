"""Persistence of bundle payment holds and their transition log."""

from __future__ import annotations

from datetime import datetime
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from piecerate_engine.errors import NotFoundError
from piecerate_engine.models import BundlePaymentHold, HoldTransition
from piecerate_engine.services.state_machine import HoldStateMachine, HoldStatus
from piecerate_engine.services.types import BundleDamageReport


class HoldStore:
    """Reads and writes holds inside the caller's transaction.

    Hold rows carry a version counter, so a writer that read a stale copy
    fails at flush instead of overwriting a concurrent change. Rework
    rounds and transitions are separate append-only rows.
    """

    def __init__(
        self,
        session: AsyncSession,
        id_factory: Callable[[], UUID] = uuid4,
    ):
        self.session = session
        self.id_factory = id_factory

    async def add(
        self,
        report: BundleDamageReport,
        severity: str,
        now: datetime,
    ) -> BundlePaymentHold:
        """Create a hold in damage_reported and flush it."""
        hold = BundlePaymentHold(
            hold_id=self.id_factory(),
            bundle_number=report.bundle_number,
            operator_id=report.operator_id,
            operator_name=report.operator_name,
            total_pieces=report.total_pieces,
            completed_pieces=report.completed_pieces,
            damage_count=report.damage_count,
            damage_type=report.damage_type,
            damage_description=report.damage_description,
            severity=severity,
            status=HoldStatus.DAMAGE_REPORTED.value,
            payment_held=HoldStateMachine.payment_held_for(HoldStatus.DAMAGE_REPORTED),
            supervisor_notified=report.supervisor_notified,
            reported_at=now,
            updated_at=now,
            created_at=now,
        )
        # Empty collection up front so rework_rounds never lazy-loads
        hold.rework_rounds = []
        self.session.add(hold)
        await self.session.flush()
        return hold

    async def get(self, hold_id: UUID, for_update: bool = False) -> BundlePaymentHold | None:
        """Load a hold, optionally locking its row."""
        stmt = select(BundlePaymentHold).where(BundlePaymentHold.hold_id == hold_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def require(self, hold_id: UUID, for_update: bool = True) -> BundlePaymentHold:
        """Load a hold or raise NotFoundError."""
        hold = await self.get(hold_id, for_update=for_update)
        if hold is None:
            raise NotFoundError("Hold", hold_id)
        return hold

    async def list_held(self) -> list[BundlePaymentHold]:
        """Holds still withholding payment, newest first."""
        result = await self.session.execute(
            select(BundlePaymentHold)
            .where(BundlePaymentHold.payment_held.is_(True))
            .order_by(BundlePaymentHold.reported_at.desc())
        )
        return list(result.scalars().all())

    async def list_held_for_operator(self, operator_id: str) -> list[BundlePaymentHold]:
        """Holds withholding this operator's payment, newest first."""
        result = await self.session.execute(
            select(BundlePaymentHold)
            .where(
                BundlePaymentHold.operator_id == operator_id,
                BundlePaymentHold.payment_held.is_(True),
            )
            .order_by(BundlePaymentHold.reported_at.desc())
        )
        return list(result.scalars().all())

    async def find_active_for_bundle(
        self,
        bundle_number: str,
        operator_id: str,
        exclude: UUID | None = None,
    ) -> BundlePaymentHold | None:
        """Oldest non-terminal hold for a bundle/operator pair."""
        stmt = select(BundlePaymentHold).where(
            BundlePaymentHold.bundle_number == bundle_number,
            BundlePaymentHold.operator_id == operator_id,
            BundlePaymentHold.payment_held.is_(True),
        )
        if exclude is not None:
            stmt = stmt.where(BundlePaymentHold.hold_id != exclude)
        result = await self.session.execute(
            stmt.order_by(BundlePaymentHold.reported_at).limit(1)
        )
        return result.scalar_one_or_none()

    async def record_transition(
        self,
        hold: BundlePaymentHold,
        from_status: str | None,
        actor_id: str | None,
        reason: str | None,
        now: datetime,
    ) -> HoldTransition:
        """Append a transition row numbered by the hold's new version.

        Flushes first: the version is only bumped when the hold UPDATE is
        written, and that is also where a stale version is detected.
        """
        await self.session.flush()
        transition = HoldTransition(
            transition_id=self.id_factory(),
            hold_id=hold.hold_id,
            sequence=hold.version,
            from_status=from_status,
            to_status=hold.status,
            actor_id=actor_id,
            reason=reason,
            created_at=now,
        )
        self.session.add(transition)
        return transition

    async def transitions(self, hold_id: UUID) -> list[HoldTransition]:
        """Transition log for one hold in commit order."""
        result = await self.session.execute(
            select(HoldTransition)
            .where(HoldTransition.hold_id == hold_id)
            .order_by(HoldTransition.sequence)
        )
        return list(result.scalars().all())
