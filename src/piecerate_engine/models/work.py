"""Work assignment model shared with the work-assignment subsystem."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from piecerate_engine.models.base import Base, TimestampMixin


class WorkAssignment(Base, TimestampMixin):
    """A unit of work assigned to an operator.

    The engine only writes rework assignments; regular assignments are
    created by the work-assignment subsystem and read here for the
    operator's pending-work view.
    """

    __tablename__ = "work_assignments"

    assignment_id: Mapped[UUID] = mapped_column(primary_key=True)
    assignment_type: Mapped[str] = mapped_column(String(16), nullable=False)
    hold_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    bundle_number: Mapped[str] = mapped_column(String(80), nullable=False)
    operation: Mapped[str] = mapped_column(String(128), nullable=False)
    operator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    operator_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="assigned")
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    assigned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "assignment_type IN ('rework', 'regular')",
            name="work_assignment_type_check",
        ),
        CheckConstraint(
            "priority IN ('low', 'normal', 'high')",
            name="work_assignment_priority_check",
        ),
        CheckConstraint(
            "status IN ('assigned', 'in_progress', 'completed', 'cancelled')",
            name="work_assignment_status_check",
        ),
    )
