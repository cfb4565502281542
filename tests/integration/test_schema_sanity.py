"""Schema sanity checks.

The database itself refuses the states the engine must never produce.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from piecerate_engine.database import create_schema, get_engine, make_session_factory
from piecerate_engine.models import BundlePaymentHold, PaymentRelease

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def hold(**overrides) -> BundlePaymentHold:
    values = dict(
        hold_id=uuid4(),
        bundle_number="B-1",
        operator_id="op-1",
        total_pieces=10,
        completed_pieces=10,
        damage_count=1,
        damage_type="fabric_hole",
        severity="minor",
        status="damage_reported",
        payment_held=True,
        reported_at=NOW,
        updated_at=NOW,
    )
    values.update(overrides)
    return BundlePaymentHold(**values)


def release(hold_id) -> PaymentRelease:
    return PaymentRelease(
        release_id=uuid4(),
        hold_id=hold_id,
        bundle_number="B-1",
        operator_id="op-1",
        release_kind="completed",
        released_by="system",
        reason="done",
        earnings_count=0,
        amount_released=Decimal("0"),
        damage_deduction=Decimal("0"),
        breakdown_json=[],
        released_at=NOW,
    )


class TestSchemaCreation:
    async def test_create_schema(self, tmp_path):
        """create_schema builds every table on a fresh database."""
        engine = get_engine(f"sqlite+aiosqlite:///{tmp_path}/fresh.db")
        try:
            await create_schema(engine)
            async with engine.connect() as conn:
                tables = await conn.run_sync(lambda sync: inspect(sync).get_table_names())
        finally:
            await engine.dispose()

        assert {
            "bundle_payment_holds",
            "hold_rework_rounds",
            "hold_transitions",
            "operator_earnings",
            "payment_releases",
            "work_assignments",
        } <= set(tables)


class TestHoldConstraints:
    async def test_valid_hold_accepted(self, db_engine):
        factory = make_session_factory(db_engine)
        async with factory() as session:
            session.add(hold())
            await session.commit()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"status": "payment_released", "payment_held": True},
            {"status": "rework_assigned", "payment_held": False},
            {"status": "archived"},
            {"damage_count": 11},
            {"completed_pieces": 12},
        ],
    )
    async def test_invalid_hold_rejected(self, db_engine, overrides):
        factory = make_session_factory(db_engine)
        async with factory() as session:
            session.add(hold(**overrides))
            with pytest.raises(IntegrityError):
                await session.commit()

    async def test_one_release_per_hold(self, db_engine):
        factory = make_session_factory(db_engine)
        hold_id = uuid4()
        async with factory() as session:
            session.add(release(hold_id))
            await session.commit()

        async with factory() as session:
            session.add(release(hold_id))
            with pytest.raises(IntegrityError):
                await session.commit()
