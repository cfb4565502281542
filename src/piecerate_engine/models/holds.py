"""Bundle payment hold models.

A hold is the financial audit record of one damage incident. Holds are
never deleted. Rework rounds and state transitions are appended as their
own rows so concurrent writers never rewrite each other's history.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from piecerate_engine.models.base import Base, TimestampMixin

TERMINAL_STATUSES_SQL = "('payment_released', 'force_released')"


class BundlePaymentHold(Base, TimestampMixin):
    """Payment hold for one damage incident on an operator's bundle."""

    __tablename__ = "bundle_payment_holds"

    hold_id: Mapped[UUID] = mapped_column(primary_key=True)
    bundle_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    operator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    operator_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    total_pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_pieces: Mapped[int] = mapped_column(Integer, nullable=False)

    damage_count: Mapped[int] = mapped_column(Integer, nullable=False)
    damage_type: Mapped[str] = mapped_column(String(64), nullable=False)
    damage_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_held: Mapped[bool] = mapped_column(Boolean, nullable=False)
    supervisor_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    reported_at: Mapped[datetime] = mapped_column(nullable=False)
    rework_assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rework_completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    force_released_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    force_release_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    force_released_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('damage_reported', 'rework_assigned', 'rework_completed', "
            "'payment_released', 'force_released')",
            name="bundle_payment_hold_status_check",
        ),
        CheckConstraint(
            f"(payment_held AND status NOT IN {TERMINAL_STATUSES_SQL}) "
            f"OR (NOT payment_held AND status IN {TERMINAL_STATUSES_SQL})",
            name="bundle_payment_hold_held_matches_status",
        ),
        CheckConstraint(
            "completed_pieces >= 0 AND completed_pieces <= total_pieces",
            name="bundle_payment_hold_completed_check",
        ),
        CheckConstraint(
            "damage_count > 0 AND damage_count <= total_pieces",
            name="bundle_payment_hold_damage_check",
        ),
    )

    # Relationships
    rework_rounds: Mapped[list[ReworkRound]] = relationship(
        back_populates="hold",
        order_by="ReworkRound.round_number",
        lazy="selectin",
    )

    @property
    def remaining_pieces(self) -> int:
        """Pieces not yet completed in the original pass."""
        return self.total_pieces - self.completed_pieces

    @property
    def latest_round(self) -> ReworkRound | None:
        """Most recently assigned rework round."""
        return self.rework_rounds[-1] if self.rework_rounds else None

    @property
    def reworked_pieces(self) -> int:
        """Pieces completed across all finished rework rounds."""
        return sum(
            r.completed_pieces or 0 for r in self.rework_rounds if r.status == "completed"
        )


class ReworkRound(Base, TimestampMixin):
    """One rework assignment in a hold's history. Append-only per round."""

    __tablename__ = "hold_rework_rounds"

    round_id: Mapped[UUID] = mapped_column(primary_key=True)
    hold_id: Mapped[UUID] = mapped_column(
        ForeignKey("bundle_payment_holds.hold_id"),
        nullable=False,
        index=True,
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)

    supervisor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    supervisor_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    replacement_pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    rework_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[datetime] = mapped_column(nullable=False)
    assigned_to: Mapped[str] = mapped_column(String(64), nullable=False)
    assigned_operator_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    work_assignment_id: Mapped[UUID | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="assigned")
    completed_pieces: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_by_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    quality_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("hold_id", "round_number", name="hold_rework_round_unique"),
        CheckConstraint(
            "status IN ('assigned', 'in_progress', 'completed')",
            name="hold_rework_round_status_check",
        ),
        CheckConstraint("replacement_pieces > 0", name="hold_rework_round_pieces_check"),
    )

    # Relationships
    hold: Mapped[BundlePaymentHold] = relationship(back_populates="rework_rounds")


class HoldTransition(Base, TimestampMixin):
    """Append-only log of hold state transitions, ordered per hold."""

    __tablename__ = "hold_transitions"

    transition_id: Mapped[UUID] = mapped_column(primary_key=True)
    hold_id: Mapped[UUID] = mapped_column(
        ForeignKey("bundle_payment_holds.hold_id"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("hold_id", "sequence", name="hold_transition_sequence_unique"),
    )
