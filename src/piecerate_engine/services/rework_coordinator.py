"""Rework rounds and their work assignments."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from piecerate_engine.errors import InvalidStateError
from piecerate_engine.models import BundlePaymentHold, ReworkRound, WorkAssignment
from piecerate_engine.services.state_machine import HoldStatus
from piecerate_engine.services.types import ReworkCompletion, ReworkRequest

REWORK_OPERATION = "damage_rework"
REWORK_PRIORITY = "high"


def rework_bundle_number(bundle_number: str) -> str:
    return f"{bundle_number}-REWORK"


class ReworkCoordinator:
    """Appends rework rounds and creates the matching work assignment.

    Does not own hold status; the engine moves the hold through the state
    machine in the same transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        id_factory: Callable[[], UUID] = uuid4,
        rework_due_hours: int = 24,
    ):
        self.session = session
        self.id_factory = id_factory
        self.rework_due_hours = rework_due_hours

    async def assign(
        self,
        hold: BundlePaymentHold,
        request: ReworkRequest,
        now: datetime,
    ) -> ReworkRound:
        """Append the next rework round and create its work assignment."""
        due_date = request.due_date or now + timedelta(hours=self.rework_due_hours)
        round_number = len(hold.rework_rounds) + 1

        assignment = WorkAssignment(
            assignment_id=self.id_factory(),
            assignment_type="rework",
            hold_id=hold.hold_id,
            bundle_number=rework_bundle_number(hold.bundle_number),
            operation=REWORK_OPERATION,
            operator_id=request.assigned_to,
            operator_name=request.assigned_operator_name,
            pieces=request.replacement_pieces,
            instructions=request.rework_instructions,
            priority=REWORK_PRIORITY,
            status="assigned",
            due_date=due_date,
            assigned_at=now,
            assigned_by=request.supervisor_id,
            created_at=now,
        )
        self.session.add(assignment)

        rework_round = ReworkRound(
            round_id=self.id_factory(),
            hold_id=hold.hold_id,
            round_number=round_number,
            supervisor_id=request.supervisor_id,
            supervisor_name=request.supervisor_name,
            replacement_pieces=request.replacement_pieces,
            rework_instructions=request.rework_instructions,
            due_date=due_date,
            assigned_to=request.assigned_to,
            assigned_operator_name=request.assigned_operator_name,
            assigned_at=now,
            work_assignment_id=assignment.assignment_id,
            status="assigned",
            created_at=now,
        )
        hold.rework_rounds.append(rework_round)
        return rework_round

    @staticmethod
    def repeats_last_completion(hold: BundlePaymentHold, completion: ReworkCompletion) -> bool:
        """True when the completion was already applied to the latest round."""
        latest = hold.latest_round
        return (
            hold.status == HoldStatus.REWORK_COMPLETED.value
            and latest is not None
            and latest.status == "completed"
            and latest.completed_by == completion.operator_id
            and latest.completed_pieces == completion.completed_pieces
        )

    async def complete(
        self,
        hold: BundlePaymentHold,
        completion: ReworkCompletion,
        now: datetime,
    ) -> ReworkRound:
        """Mark the latest round completed. Earlier rounds are untouched."""
        latest = hold.latest_round
        if latest is None or latest.status == "completed":
            raise InvalidStateError(hold.status, "complete rework", "no open rework round")

        completed_at = completion.completed_at or now
        latest.status = "completed"
        latest.completed_pieces = completion.completed_pieces
        latest.completed_at = completed_at
        latest.completed_by = completion.operator_id
        latest.completed_by_name = completion.operator_name
        latest.quality_notes = completion.quality_notes

        if latest.work_assignment_id is not None:
            await self.session.execute(
                update(WorkAssignment)
                .where(WorkAssignment.assignment_id == latest.work_assignment_id)
                .values(status="completed", completed_at=completed_at)
                .execution_options(synchronize_session=False)
            )
        return latest

    async def cancel_open(self, hold: BundlePaymentHold, now: datetime) -> int:
        """Cancel outstanding rework assignments of a force-released hold."""
        result = await self.session.execute(
            update(WorkAssignment)
            .where(
                WorkAssignment.hold_id == hold.hold_id,
                WorkAssignment.status.in_(("assigned", "in_progress")),
            )
            .values(status="cancelled", completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def list_open_work(self, operator_id: str) -> list[WorkAssignment]:
        """Assignments this operator still has to do, most urgent first."""
        result = await self.session.execute(
            select(WorkAssignment)
            .where(
                WorkAssignment.operator_id == operator_id,
                WorkAssignment.status == "assigned",
            )
            .order_by(WorkAssignment.due_date, WorkAssignment.assigned_at)
        )
        return list(result.scalars().all())
