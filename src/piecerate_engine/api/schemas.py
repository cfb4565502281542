"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from piecerate_engine.services.types import (
    BundleDamageReport,
    DamageInfo,
    ReworkCompletion,
    ReworkRequest,
    WorkCompletion,
)


# ============================================================================
# Hold schemas
# ============================================================================


class DamageReportCreate(BaseModel):
    """Schema for reporting damage on a bundle."""

    bundle_number: str = Field(min_length=1)
    operator_id: str = Field(min_length=1)
    operator_name: str | None = None
    total_pieces: int
    completed_pieces: int
    damage_count: int
    damage_type: str = Field(min_length=1)
    damage_description: str | None = None
    severity: str | None = None
    supervisor_notified: bool = True

    def to_report(self) -> BundleDamageReport:
        return BundleDamageReport(**self.model_dump())


class HoldCreatedResponse(BaseModel):
    """Schema for a newly created hold."""

    hold_id: UUID


class ReworkRoundResponse(BaseModel):
    """Schema for one rework round."""

    model_config = ConfigDict(from_attributes=True)

    round_number: int
    supervisor_id: str
    supervisor_name: str | None = None
    replacement_pieces: int
    rework_instructions: str | None = None
    due_date: datetime
    assigned_to: str
    assigned_operator_name: str | None = None
    assigned_at: datetime
    status: str
    completed_pieces: int | None = None
    completed_at: datetime | None = None
    completed_by: str | None = None
    quality_notes: str | None = None
    work_assignment_id: UUID | None = None


class HoldResponse(BaseModel):
    """Schema for hold response."""

    model_config = ConfigDict(from_attributes=True)

    hold_id: UUID
    bundle_number: str
    operator_id: str
    operator_name: str | None = None
    total_pieces: int
    completed_pieces: int
    remaining_pieces: int
    damage_count: int
    damage_type: str
    damage_description: str | None = None
    severity: str
    status: str
    payment_held: bool
    version: int
    reported_at: datetime
    rework_assigned_at: datetime | None = None
    rework_completed_at: datetime | None = None
    payment_released_at: datetime | None = None
    updated_at: datetime
    force_released_by: str | None = None
    force_release_reason: str | None = None
    rework_history: list[ReworkRoundResponse] = []


class HoldListResponse(BaseModel):
    """Schema for listing held bundles."""

    items: list[HoldResponse]
    total: int


class ReworkAssign(BaseModel):
    """Schema for assigning rework."""

    supervisor_id: str = Field(min_length=1)
    supervisor_name: str | None = None
    replacement_pieces: int
    assigned_to: str = Field(min_length=1)
    assigned_operator_name: str | None = None
    rework_instructions: str | None = None
    due_date: datetime | None = None

    def to_request(self) -> ReworkRequest:
        return ReworkRequest(**self.model_dump())


class ReworkComplete(BaseModel):
    """Schema for completing rework."""

    operator_id: str = Field(min_length=1)
    operator_name: str | None = None
    completed_pieces: int
    quality_notes: str | None = None
    completed_at: datetime | None = None

    def to_completion(self) -> ReworkCompletion:
        return ReworkCompletion(**self.model_dump())


class ReworkCompleteResponse(BaseModel):
    """Schema for rework completion response."""

    model_config = ConfigDict(from_attributes=True)

    hold_id: UUID
    payment_released: bool
    status: str
    completed_pieces: int
    total_complete: bool
    already_terminal: bool
    already_completed: bool = False


class ForceReleaseRequest(BaseModel):
    """Schema for a supervisor force release."""

    supervisor_id: str = Field(min_length=1)
    reason: str = Field(min_length=1)


class ForceReleaseResponse(BaseModel):
    """Schema for force release response."""

    model_config = ConfigDict(from_attributes=True)

    hold_id: UUID
    status: str
    released_count: int
    amount_released: Decimal
    already_released: bool


# ============================================================================
# Work and earnings schemas
# ============================================================================


class WorkItemResponse(BaseModel):
    """Schema for a work assignment."""

    model_config = ConfigDict(from_attributes=True)

    assignment_id: UUID
    assignment_type: str
    hold_id: UUID | None = None
    bundle_number: str
    operation: str
    operator_id: str
    pieces: int
    instructions: str | None = None
    priority: str
    status: str
    due_date: datetime | None = None
    assigned_at: datetime
    assigned_by: str | None = None


class PendingWorkResponse(BaseModel):
    """Schema for an operator's pending work."""

    held_bundles: list[HoldResponse]
    regular_work: list[WorkItemResponse]
    total_pending: int


class DamageInfoCreate(BaseModel):
    """Schema for damage known when earnings are recorded."""

    damage_type: str = Field(min_length=1)
    affected_pieces: int = 1
    severity: str | None = None
    reason: str | None = None
    operator_fault: bool | None = None


class EarningsCreate(BaseModel):
    """Schema for recording earnings."""

    operator_id: str = Field(min_length=1)
    operator_name: str | None = None
    bundle_number: str = Field(min_length=1)
    article_number: str | None = None
    operation: str = Field(min_length=1)
    machine_type: str | None = None
    pieces: int
    rate_per_piece: Decimal | None = None
    completed_at: datetime | None = None
    quality_notes: str | None = None
    damage: DamageInfoCreate | None = None

    def to_work_completion(self) -> WorkCompletion:
        data = self.model_dump(exclude={"damage"})
        damage = DamageInfo(**self.damage.model_dump()) if self.damage else None
        return WorkCompletion(**data, damage=damage)


class EarningsResponse(BaseModel):
    """Schema for an earnings record."""

    model_config = ConfigDict(from_attributes=True)

    earnings_id: UUID
    operator_id: str
    operator_name: str | None = None
    bundle_number: str
    article_number: str | None = None
    operation: str
    machine_type: str | None = None
    pieces: int
    rate_per_piece: Decimal
    base_earnings: Decimal
    damage_deduction: Decimal
    damage_reason: str | None = None
    earnings: Decimal
    status: str
    hold_id: UUID | None = None
    hold_reason: str | None = None
    held_by: str | None = None
    completed_at: datetime


class EarningsHoldRequest(BaseModel):
    """Schema for holding a single earnings record."""

    held_by: str = Field(min_length=1)
    reason: str = Field(min_length=1)


class EarningsReleaseRequest(BaseModel):
    """Schema for releasing a single held earnings record."""

    released_by: str = Field(min_length=1)


class EarningsSummaryResponse(BaseModel):
    """Schema for an operator's earnings summary."""

    model_config = ConfigDict(from_attributes=True)

    operator_id: str
    operator_name: str | None = None
    total_earnings: Decimal
    pending_earnings: Decimal
    confirmed_earnings: Decimal
    held_earnings: Decimal
    paid_earnings: Decimal
    damage_deductions: Decimal
    total_pieces: int
    work_count: int
    records: list[EarningsResponse]


# ============================================================================
# Error schemas
# ============================================================================


class ErrorDetail(BaseModel):
    """Schema for an engine error."""

    message: str
    code: str
    retryable: bool = False
    context: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: ErrorDetail
