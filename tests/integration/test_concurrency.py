"""Concurrency, retry and change feed tests.

Concurrent writers to one hold must serialize: exactly one transition
wins and the loser sees the state the winner left behind.
"""

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from piecerate_engine.errors import ConcurrencyConflict, StoreUnavailable
from piecerate_engine.models import BundlePaymentHold, PaymentRelease
from piecerate_engine.services import (
    BundleDamageReport,
    ErrorKind,
    PaymentHoldEngine,
    ReworkCompletion,
    ReworkRequest,
)
from piecerate_engine.services.hold_engine import translate_store_error
from tests.conftest import BUNDLE, OPERATOR

pytestmark = pytest.mark.asyncio


def report(bundle_number: str = BUNDLE) -> BundleDamageReport:
    return BundleDamageReport(
        bundle_number=bundle_number,
        operator_id=OPERATOR,
        total_pieces=22,
        completed_pieces=22,
        damage_count=1,
        damage_type="fabric_hole",
    )


REWORK = ReworkRequest(supervisor_id="sup-1", replacement_pieces=1, assigned_to="op1")
DONE = ReworkCompletion(operator_id="op1", completed_pieces=1)


class FlakySessionFactory:
    """Session factory whose first `failures` sessions cannot connect."""

    def __init__(self, factory, failures: int):
        self.factory = factory
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise OperationalError("SELECT 1", {}, ConnectionRefusedError("db down"))
        return self.factory()


class TestConcurrentTransitions:
    async def test_concurrent_assigns_one_wins(self, hold_engine):
        hold_id = (await hold_engine.report_damage(report())).unwrap()

        results = await asyncio.gather(
            hold_engine.assign_rework(hold_id, REWORK),
            hold_engine.assign_rework(hold_id, REWORK),
        )

        assert sorted(r.success for r in results) == [False, True]
        loser = next(r for r in results if not r.success)
        assert loser.error.kind == ErrorKind.INVALID_STATE
        hold = (await hold_engine.get_hold(hold_id)).unwrap()
        assert len(hold.rework_history) == 1

    async def test_concurrent_completions_release_once(self, hold_engine, session):
        hold_id = (await hold_engine.report_damage(report())).unwrap()
        await hold_engine.assign_rework(hold_id, REWORK)

        results = await asyncio.gather(
            hold_engine.complete_rework(hold_id, DONE),
            hold_engine.complete_rework(hold_id, DONE),
        )

        assert all(r.success for r in results)
        assert sorted(r.data.already_terminal for r in results) == [False, True]
        releases = await session.scalar(select(func.count()).select_from(PaymentRelease))
        assert releases == 1

    async def test_release_races_force_release(self, hold_engine, session):
        hold_id = (await hold_engine.report_damage(report())).unwrap()
        await hold_engine.assign_rework(hold_id, REWORK)

        await asyncio.gather(
            hold_engine.complete_rework(hold_id, DONE),
            hold_engine.force_release_payment(hold_id, "sup-1", "Override"),
        )

        releases = await session.scalar(select(func.count()).select_from(PaymentRelease))
        assert releases == 1
        hold = (await hold_engine.get_hold(hold_id)).unwrap()
        assert hold.payment_held is False

    async def test_different_bundles_proceed_independently(self, hold_engine):
        results = await asyncio.gather(*(hold_engine.report_damage(report(f"B-{n}")) for n in range(5)))

        assert all(r.success for r in results)
        held = (await hold_engine.get_held_bundles()).unwrap()
        assert len(held) == 5


class TestStaleWriters:
    async def test_stale_version_rejected(self, hold_engine, session_factory):
        """A writer holding an old version cannot overwrite a newer one."""
        hold_id = (await hold_engine.report_damage(report())).unwrap()

        async with session_factory() as stale:
            old = await stale.get(BundlePaymentHold, hold_id)
            await hold_engine.assign_rework(hold_id, REWORK)

            old.damage_description = "late edit"
            with pytest.raises(StaleDataError):
                await stale.commit()

    def test_store_errors_translated(self):
        assert isinstance(translate_store_error(StaleDataError("stale")), ConcurrencyConflict)
        assert isinstance(
            translate_store_error(IntegrityError("INSERT", {}, Exception("unique"))),
            ConcurrencyConflict,
        )
        assert isinstance(
            translate_store_error(OperationalError("SELECT 1", {}, Exception("gone"))),
            StoreUnavailable,
        )
        assert isinstance(translate_store_error(asyncio.TimeoutError()), StoreUnavailable)
        assert translate_store_error(KeyError("x")) is None


class TestRetries:
    async def test_transient_outage_is_retried(self, session_factory, config, clock):
        flaky = FlakySessionFactory(session_factory, failures=1)
        engine = PaymentHoldEngine(flaky, config=config, clock=clock)

        result = await engine.report_damage(report())

        assert result.success, result.error
        assert flaky.calls == 2

    async def test_persistent_outage_is_retryable_error(self, session_factory, config, clock):
        flaky = FlakySessionFactory(session_factory, failures=100)
        engine = PaymentHoldEngine(flaky, config=config, clock=clock)

        result = await engine.report_damage(report())

        assert result.error.kind == ErrorKind.STORE_UNAVAILABLE
        assert result.error.retryable is True
        assert flaky.calls == config.retry.max_retries + 1


class TestChangeFeed:
    async def test_events_in_sequence_order(self, hold_engine):
        seen = []
        hold_engine.subscribe_to_held_bundles(seen.append)

        hold_id = (await hold_engine.report_damage(report())).unwrap()
        await hold_engine.assign_rework(hold_id, REWORK)
        await hold_engine.complete_rework(hold_id, DONE)

        assert [e.sequence for e in seen] == [1, 2, 3]
        assert [e.kind.value for e in seen] == ["created", "rework_assigned", "payment_released"]
        assert [e.payment_held for e in seen] == [True, True, False]
        assert seen[2].from_status == "rework_assigned"

    async def test_no_event_for_rejected_transition(self, hold_engine):
        hold_id = (await hold_engine.report_damage(report())).unwrap()
        seen = []
        hold_engine.subscribe_to_held_bundles(seen.append)

        await hold_engine.complete_rework(hold_id, DONE)

        assert seen == []

    async def test_unsubscribe(self, hold_engine):
        seen = []
        unsubscribe = hold_engine.subscribe_to_held_bundles(seen.append)
        await hold_engine.report_damage(report("B-1"))

        unsubscribe()
        await hold_engine.report_damage(report("B-2"))

        assert len(seen) == 1

    async def test_failing_subscriber_does_not_fail_operation(self, hold_engine):
        def broken(event):
            raise RuntimeError("subscriber down")

        hold_engine.subscribe_to_held_bundles(broken)

        result = await hold_engine.report_damage(report())

        assert result.success

    async def test_failing_notifier_keeps_commit(self, session_factory, config, clock):
        class DownNotifier:
            async def notify(self, notification):
                raise ConnectionError("smtp down")

        engine = PaymentHoldEngine(session_factory, config=config, clock=clock, notifier=DownNotifier())

        result = await engine.report_damage(report())

        assert result.success
        assert (await engine.get_hold(result.data)).unwrap().payment_held is True
