"""Hold lifecycle integration tests.

Runs the engine against a real SQLite database: damage report, rework
rounds, release, force release, and the audit rows each one writes.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from piecerate_engine.models import BundlePaymentHold, PaymentRelease, WorkAssignment
from piecerate_engine.services import (
    BundleDamageReport,
    ErrorKind,
    HoldStore,
    ReworkCompletion,
    ReworkRequest,
)

from tests.conftest import BUNDLE, OPERATOR, RATE

pytestmark = pytest.mark.asyncio


def damage(
    total: int = 22,
    completed: int = 22,
    count: int = 1,
    damage_type: str = "fabric_hole",
    severity: str | None = None,
    bundle_number: str = BUNDLE,
) -> BundleDamageReport:
    return BundleDamageReport(
        bundle_number=bundle_number,
        operator_id=OPERATOR,
        operator_name="Ram",
        total_pieces=total,
        completed_pieces=completed,
        damage_count=count,
        damage_type=damage_type,
        severity=severity,
    )


def rework(pieces: int = 1, assigned_to: str = "op1") -> ReworkRequest:
    return ReworkRequest(
        supervisor_id="sup-1",
        supervisor_name="Sita",
        replacement_pieces=pieces,
        assigned_to=assigned_to,
        rework_instructions="Replace damaged panel",
    )


def done(pieces: int = 1) -> ReworkCompletion:
    return ReworkCompletion(operator_id="op1", completed_pieces=pieces, quality_notes="ok")


class TestReportDamage:
    """Damage reports park bundle earnings."""

    async def test_report_holds_bundle_earnings(self, hold_engine, seed_earnings, load_earnings):
        await seed_earnings(pieces=12)
        await seed_earnings(pieces=10, operation="overlock")
        await seed_earnings(bundle_number="B-OTHER", pieces=5)

        result = await hold_engine.report_damage(damage())

        assert result.success, result.error
        hold = (await hold_engine.get_hold(result.data)).unwrap()
        assert hold.status == "damage_reported"
        assert hold.payment_held is True
        assert hold.remaining_pieces == 0

        records = await load_earnings()
        assert [r.status for r in records] == ["held", "held"]
        assert all(r.hold_reason == f"Bundle payment hold: {hold.hold_id}" for r in records)
        assert all(r.hold_id == hold.hold_id for r in records)

        other = await load_earnings(bundle_number="B-OTHER")
        assert other[0].status == "pending"

    async def test_paid_earnings_are_not_held(self, hold_engine, seed_earnings, load_earnings):
        await seed_earnings(status="paid")

        await hold_engine.report_damage(damage())

        records = await load_earnings()
        assert records[0].status == "paid"
        assert records[0].hold_reason is None

    @pytest.mark.parametrize(
        "report",
        [
            damage(count=23),
            damage(count=0),
            damage(completed=23),
            damage(completed=-1),
            damage(bundle_number=""),
        ],
    )
    async def test_invalid_reports_rejected_before_write(self, hold_engine, session, report):
        result = await hold_engine.report_damage(report)

        assert result.success is False
        assert result.error.kind == ErrorKind.VALIDATION
        assert result.error.retryable is False
        count = await session.scalar(select(func.count()).select_from(BundlePaymentHold))
        assert count == 0

    async def test_default_severity_recorded(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage(severity=None))).unwrap()

        hold = (await hold_engine.get_hold(hold_id)).unwrap()

        assert hold.severity == "minor"

    async def test_supervisor_notified(self, hold_engine, notifier):
        await hold_engine.report_damage(damage())

        assert [n.event for n in notifier.sent] == ["damage_reported"]
        assert notifier.sent[0].recipient_role == "supervisor"


class TestAssignRework:
    """Rework assignment and the rework work item."""

    async def test_assign_creates_high_priority_rework_item(self, hold_engine, session, clock):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()

        result = await hold_engine.assign_rework(hold_id, rework())

        assert result.success, result.error
        assert result.data.round_number == 1
        hold = (await hold_engine.get_hold(hold_id)).unwrap()
        assert hold.status == "rework_assigned"
        assert hold.payment_held is True

        items = (await session.execute(select(WorkAssignment))).scalars().all()
        assert len(items) == 1
        item = items[0]
        assert item.operator_id == "op1"
        assert item.priority == "high"
        assert item.assignment_type == "rework"
        assert item.bundle_number == f"{BUNDLE}-REWORK"
        assert item.operation == "damage_rework"
        assert item.hold_id == hold_id
        assert item.due_date.replace(tzinfo=None) == clock().replace(tzinfo=None) + timedelta(hours=24)

    async def test_pending_work_shows_rework_for_assignee(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()
        await hold_engine.assign_rework(hold_id, rework(assigned_to="op1"))

        pending = (await hold_engine.get_operator_pending_work("op1")).unwrap()
        owner = (await hold_engine.get_operator_pending_work(OPERATOR)).unwrap()

        assert [w.priority for w in pending.regular_work] == ["high"]
        assert pending.held_bundles == []
        assert [h.hold_id for h in owner.held_bundles] == [hold_id]
        assert owner.total_pending == 1

    async def test_unknown_hold_is_not_found(self, hold_engine):
        result = await hold_engine.assign_rework(uuid4(), rework())

        assert result.error.kind == ErrorKind.NOT_FOUND

    async def test_cannot_assign_twice(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()
        await hold_engine.assign_rework(hold_id, rework())

        result = await hold_engine.assign_rework(hold_id, rework())

        assert result.error.kind == ErrorKind.INVALID_STATE
        assert result.error.details["current_status"] == "rework_assigned"

    async def test_cannot_assign_on_released_hold(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()
        await hold_engine.force_release_payment(hold_id, "sup-1", "Shift closing")

        result = await hold_engine.assign_rework(hold_id, rework())

        assert result.error.kind == ErrorKind.INVALID_STATE

    async def test_invalid_request_rejected(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()

        result = await hold_engine.assign_rework(hold_id, rework(pieces=0))

        assert result.error.kind == ErrorKind.VALIDATION


class TestCompleteRework:
    """Release on completion, reduced-rate rework and idempotence."""

    async def test_non_operator_fault_releases_full_pay(
        self, hold_engine, seed_earnings, load_earnings, session
    ):
        await seed_earnings(pieces=22)
        hold_id = (await hold_engine.report_damage(damage())).unwrap()
        await hold_engine.assign_rework(hold_id, rework())

        result = await hold_engine.complete_rework(hold_id, done(1))

        assert result.success, result.error
        assert result.data.payment_released is True
        assert result.data.status == "payment_released"

        records = await load_earnings()
        assert records[0].status == "confirmed"
        assert records[0].hold_reason is None
        assert records[0].earnings == RATE * 22
        assert records[0].damage_deduction == Decimal("0")

        release = (await session.execute(select(PaymentRelease))).scalar_one()
        assert release.hold_id == hold_id
        assert release.release_kind == "completed"
        assert release.earnings_count == 1
        assert release.reason == "Bundle work completed including rework"

    async def test_operator_fault_rework_piece_paid_at_reduced_rate(
        self, hold_engine, seed_earnings, load_earnings
    ):
        await seed_earnings(pieces=22)
        hold_id = (
            await hold_engine.report_damage(damage(damage_type="stitching_defect", severity="major"))
        ).unwrap()
        await hold_engine.assign_rework(hold_id, rework())

        result = await hold_engine.complete_rework(hold_id, done(1))

        assert result.data.payment_released is True
        record = (await load_earnings())[0]
        # 21 pieces at full rate, the reworked piece at 75%
        assert record.earnings == RATE * 21 + RATE * Decimal("0.75")
        assert record.damage_deduction == RATE * Decimal("0.25")
        assert record.status == "confirmed"

    async def test_partial_rework_keeps_payment_held(self, hold_engine, seed_earnings, load_earnings):
        await seed_earnings(pieces=25)
        hold_id = (await hold_engine.report_damage(damage(total=30, completed=25, count=5))).unwrap()
        await hold_engine.assign_rework(hold_id, rework(pieces=5))

        result = await hold_engine.complete_rework(hold_id, done(3))

        assert result.data.payment_released is False
        assert result.data.status == "rework_completed"
        assert result.data.completed_pieces == 28
        hold = (await hold_engine.get_hold(hold_id)).unwrap()
        assert hold.payment_held is True
        assert (await load_earnings())[0].status == "held"

    async def test_completion_rule_counts_every_round(self, hold_engine, seed_earnings, load_earnings):
        """30 total, 25 completed, 5 damaged: released once 5 are reworked."""
        await seed_earnings(pieces=25)
        hold_id = (await hold_engine.report_damage(damage(total=30, completed=25, count=5))).unwrap()

        await hold_engine.assign_rework(hold_id, rework(pieces=5))
        first = (await hold_engine.complete_rework(hold_id, done(3))).unwrap()
        await hold_engine.assign_rework(hold_id, rework(pieces=2, assigned_to="op2"))
        second = (await hold_engine.complete_rework(hold_id, done(2))).unwrap()

        assert first.payment_released is False
        assert second.payment_released is True
        hold = (await hold_engine.get_hold(hold_id)).unwrap()
        assert [r.round_number for r in hold.rework_history] == [1, 2]
        assert [r.completed_pieces for r in hold.rework_history] == [3, 2]
        assert all(r.status == "completed" for r in hold.rework_history)
        assert (await load_earnings())[0].status == "confirmed"

    async def test_single_round_of_five(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage(total=30, completed=25, count=5))).unwrap()
        await hold_engine.assign_rework(hold_id, rework(pieces=5))

        outcome = (await hold_engine.complete_rework(hold_id, done(5))).unwrap()

        assert outcome.payment_released is True
        assert outcome.total_complete is True

    async def test_second_completion_is_a_no_op(self, hold_engine, seed_earnings, session):
        await seed_earnings(pieces=22)
        hold_id = (await hold_engine.report_damage(damage())).unwrap()
        await hold_engine.assign_rework(hold_id, rework())
        await hold_engine.complete_rework(hold_id, done(1))

        again = await hold_engine.complete_rework(hold_id, done(1))

        assert again.success
        assert again.data.already_terminal is True
        assert again.data.payment_released is True
        assert again.data.status == "payment_released"
        releases = await session.scalar(select(func.count()).select_from(PaymentRelease))
        assert releases == 1

    async def test_retried_partial_completion_returns_same_outcome(self, hold_engine, seed_earnings):
        await seed_earnings(pieces=25)
        hold_id = (await hold_engine.report_damage(damage(total=30, completed=25, count=5))).unwrap()
        await hold_engine.assign_rework(hold_id, rework(pieces=5))
        await hold_engine.complete_rework(hold_id, done(3))

        again = await hold_engine.complete_rework(hold_id, done(3))

        assert again.success, again.error
        assert again.data.already_completed is True
        assert again.data.status == "rework_completed"
        assert again.data.completed_pieces == 28
        assert again.data.payment_released is False
        hold = (await hold_engine.get_hold(hold_id)).unwrap()
        assert len(hold.rework_history) == 1
        assert hold.version == 3

    async def test_different_completion_on_finished_round_is_invalid(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage(total=30, completed=25, count=5))).unwrap()
        await hold_engine.assign_rework(hold_id, rework(pieces=5))
        await hold_engine.complete_rework(hold_id, done(3))

        result = await hold_engine.complete_rework(hold_id, done(2))

        assert result.error.kind == ErrorKind.INVALID_STATE

    async def test_complete_without_assignment_is_invalid(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()

        result = await hold_engine.complete_rework(hold_id, done(1))

        assert result.error.kind == ErrorKind.INVALID_STATE

    async def test_rework_assignment_marked_completed(self, hold_engine, session):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()
        await hold_engine.assign_rework(hold_id, rework())
        await hold_engine.complete_rework(hold_id, done(1))

        item = (await session.execute(select(WorkAssignment))).scalar_one()

        assert item.status == "completed"
        pending = (await hold_engine.get_operator_pending_work("op1")).unwrap()
        assert pending.regular_work == []


class TestForceRelease:
    """Supervisor override."""

    async def test_force_release_from_rework_assigned(
        self, hold_engine, seed_earnings, load_earnings, session
    ):
        await seed_earnings(pieces=22)
        hold_id = (
            await hold_engine.report_damage(damage(damage_type="needle_damage", severity="severe"))
        ).unwrap()
        await hold_engine.assign_rework(hold_id, rework())

        result = await hold_engine.force_release_payment(hold_id, "sup-9", "Management approved")

        assert result.success, result.error
        assert result.affected_count == 1
        assert result.data.status == "force_released"
        hold = (await hold_engine.get_hold(hold_id)).unwrap()
        assert hold.payment_held is False
        assert hold.force_released_by == "sup-9"
        assert hold.force_release_reason == "Management approved"

        record = (await load_earnings())[0]
        assert record.status == "confirmed"
        assert record.earnings == RATE * 22

        release = (await session.execute(select(PaymentRelease))).scalar_one()
        assert release.release_kind == "forced"
        assert release.reason == "Management approved"
        assert release.released_by == "sup-9"

        item = (await session.execute(select(WorkAssignment))).scalar_one()
        assert item.status == "cancelled"

    async def test_force_release_twice_is_idempotent(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()
        await hold_engine.force_release_payment(hold_id, "sup-1", "Override")

        again = await hold_engine.force_release_payment(hold_id, "sup-1", "Override")

        assert again.success
        assert again.data.already_released is True
        assert again.affected_count == 0

    async def test_force_release_after_payment_release_is_invalid(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()
        await hold_engine.assign_rework(hold_id, rework())
        await hold_engine.complete_rework(hold_id, done(1))

        result = await hold_engine.force_release_payment(hold_id, "sup-1", "Override")

        assert result.error.kind == ErrorKind.INVALID_STATE
        assert result.error.details["current_status"] == "payment_released"

    async def test_reason_required(self, hold_engine):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()

        result = await hold_engine.force_release_payment(hold_id, "sup-1", "   ")

        assert result.error.kind == ErrorKind.VALIDATION
        hold = (await hold_engine.get_hold(hold_id)).unwrap()
        assert hold.status == "damage_reported"


class TestHeldBundles:
    async def test_held_bundles_newest_first(self, hold_engine, clock):
        first = (await hold_engine.report_damage(damage(bundle_number="B-1"))).unwrap()
        clock.advance(minutes=5)
        second = (await hold_engine.report_damage(damage(bundle_number="B-2"))).unwrap()
        clock.advance(minutes=5)
        third = (await hold_engine.report_damage(damage(bundle_number="B-3"))).unwrap()
        await hold_engine.force_release_payment(third, "sup-1", "Override")

        held = (await hold_engine.get_held_bundles()).unwrap()

        assert [h.hold_id for h in held] == [second, first]


class TestPaymentHeldInvariant:
    """payment_held always matches the status."""

    async def test_invariant_across_lifecycle(self, hold_engine, session_factory):
        ids = []
        for n in range(3):
            ids.append(
                (await hold_engine.report_damage(damage(bundle_number=f"B-{n}", total=10, completed=8, count=2))).unwrap()
            )
        await hold_engine.assign_rework(ids[0], rework(pieces=2))
        await hold_engine.complete_rework(ids[0], done(2))
        await hold_engine.assign_rework(ids[1], rework(pieces=2))
        await hold_engine.complete_rework(ids[1], done(1))
        await hold_engine.force_release_payment(ids[2], "sup-1", "Override")

        async with session_factory() as session:
            holds = (await session.execute(select(BundlePaymentHold))).scalars().all()

        assert {h.status for h in holds} == {"payment_released", "rework_completed", "force_released"}
        for hold in holds:
            assert hold.payment_held == (hold.status not in ("payment_released", "force_released"))


class TestTransitionLog:
    async def test_transitions_numbered_by_version(self, hold_engine, session_factory):
        hold_id = (await hold_engine.report_damage(damage())).unwrap()
        await hold_engine.assign_rework(hold_id, rework())
        await hold_engine.complete_rework(hold_id, done(1))

        async with session_factory() as session:
            transitions = await HoldStore(session).transitions(hold_id)

        assert [(t.sequence, t.from_status, t.to_status) for t in transitions] == [
            (1, None, "damage_reported"),
            (2, "damage_reported", "rework_assigned"),
            (3, "rework_assigned", "payment_released"),
        ]
