"""Operator earnings and payment release models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from piecerate_engine.models.base import Base, TimestampMixin


class OperatorEarnings(Base, TimestampMixin):
    """Earnings for one completed piece-rate operation on a bundle."""

    __tablename__ = "operator_earnings"

    earnings_id: Mapped[UUID] = mapped_column(primary_key=True)
    operator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    operator_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    bundle_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    article_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    operation: Mapped[str] = mapped_column(String(128), nullable=False)
    machine_type: Mapped[str | None] = mapped_column(String(64), nullable=True)

    pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    rate_per_piece: Mapped[Decimal] = mapped_column(nullable=False)
    base_earnings: Mapped[Decimal] = mapped_column(nullable=False)
    damage_deduction: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    damage_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    earnings: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    hold_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    hold_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    held_at: Mapped[datetime | None] = mapped_column(nullable=True)
    held_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hold_released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    quality_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'held', 'paid')",
            name="operator_earnings_status_check",
        ),
        CheckConstraint("earnings >= 0", name="operator_earnings_non_negative"),
        CheckConstraint("pieces > 0", name="operator_earnings_pieces_check"),
        CheckConstraint(
            "(status = 'held') = (hold_reason IS NOT NULL)",
            name="operator_earnings_hold_reason_check",
        ),
    )


class PaymentRelease(Base, TimestampMixin):
    """Immutable audit entry written when a hold releases payment.

    One per hold: the unique hold_id makes a second release impossible,
    so retried completions cannot pay twice.
    """

    __tablename__ = "payment_releases"

    release_id: Mapped[UUID] = mapped_column(primary_key=True)
    hold_id: Mapped[UUID] = mapped_column(nullable=False)
    bundle_number: Mapped[str] = mapped_column(String(64), nullable=False)
    operator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    operator_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    release_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    released_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    earnings_count: Mapped[int] = mapped_column(Integer, nullable=False)
    transferred_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_released: Mapped[Decimal] = mapped_column(nullable=False)
    damage_deduction: Mapped[Decimal] = mapped_column(nullable=False)
    breakdown_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    released_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("hold_id", name="payment_release_one_per_hold"),
        CheckConstraint(
            "release_kind IN ('completed', 'forced')",
            name="payment_release_kind_check",
        ),
    )
