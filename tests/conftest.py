"""Pytest fixtures for piece-rate engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from piecerate_engine.database import make_session_factory
from piecerate_engine.models import Base, OperatorEarnings
from piecerate_engine.policy import EngineConfig, RetryPolicy
from piecerate_engine.services import PaymentHoldEngine, StaticRateTable

RATE = Decimal("2.50")
BUNDLE = "B-1001"
OPERATOR = "op-ram"


class FixedClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """NotificationSink that keeps every notification."""

    def __init__(self) -> None:
        self.sent = []

    async def notify(self, notification) -> None:
        self.sent.append(notification)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite so every session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/piecerate_test.db", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(db_engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for direct reads in assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(
        retry=RetryPolicy(max_retries=2, base_delay_seconds=0.001, max_delay_seconds=0.01)
    )


@pytest.fixture
def hold_engine(session_factory, config, clock, notifier) -> PaymentHoldEngine:
    return PaymentHoldEngine(
        session_factory,
        config=config,
        clock=clock,
        rate_lookup=StaticRateTable({"single_needle": "2.50", "overlock": "1.75"}),
        notifier=notifier,
    )


@pytest.fixture
def seed_earnings(session_factory, clock):
    """Insert earnings records directly, bypassing the engine."""

    async def _seed(
        bundle_number: str = BUNDLE,
        operator_id: str = OPERATOR,
        pieces: int = 22,
        rate: Decimal = RATE,
        status: str = "pending",
        operation: str = "single_needle",
    ) -> OperatorEarnings:
        base = rate * pieces
        record = OperatorEarnings(
            earnings_id=uuid4(),
            operator_id=operator_id,
            operator_name="Ram",
            bundle_number=bundle_number,
            operation=operation,
            pieces=pieces,
            rate_per_piece=rate,
            base_earnings=base,
            damage_deduction=Decimal("0"),
            earnings=base,
            status=status,
            completed_at=clock(),
            updated_at=clock(),
        )
        async with session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    return _seed


@pytest.fixture
def load_earnings(session_factory):
    """Fresh read of a bundle's earnings records."""

    async def _load(bundle_number: str = BUNDLE, operator_id: str = OPERATOR) -> list[OperatorEarnings]:
        async with session_factory() as session:
            result = await session.execute(
                select(OperatorEarnings)
                .where(
                    OperatorEarnings.bundle_number == bundle_number,
                    OperatorEarnings.operator_id == operator_id,
                )
                .order_by(OperatorEarnings.completed_at)
            )
            return list(result.scalars().all())

    return _load
