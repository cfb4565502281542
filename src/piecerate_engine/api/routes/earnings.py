"""Operator earnings API endpoints."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from piecerate_engine.api.dependencies import HoldEngine, unwrap_result
from piecerate_engine.api.schemas import (
    EarningsCreate,
    EarningsHoldRequest,
    EarningsReleaseRequest,
    EarningsResponse,
    EarningsSummaryResponse,
    ErrorResponse,
)

router = APIRouter(tags=["earnings"])


@router.post(
    "/earnings",
    response_model=EarningsResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def record_earnings(
    engine: HoldEngine,
    payload: EarningsCreate,
) -> EarningsResponse:
    """Record earnings for a completed operation."""
    record = unwrap_result(await engine.record_earnings(payload.to_work_completion()))
    return EarningsResponse.model_validate(record)


@router.get("/operators/{operator_id}/earnings", response_model=EarningsSummaryResponse)
async def get_operator_earnings(
    engine: HoldEngine,
    operator_id: Annotated[str, Path(min_length=1)],
    start: Annotated[datetime | None, Query()] = None,
    end: Annotated[datetime | None, Query()] = None,
) -> EarningsSummaryResponse:
    """Earnings totals by status, with the underlying records."""
    summary = unwrap_result(
        await engine.get_operator_earnings_summary(operator_id, start=start, end=end)
    )
    return EarningsSummaryResponse.model_validate(summary)


@router.post(
    "/earnings/{earnings_id}/hold",
    response_model=EarningsResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def hold_earnings(
    engine: HoldEngine,
    earnings_id: UUID,
    payload: EarningsHoldRequest,
) -> EarningsResponse:
    """Hold a single earnings record outside any bundle hold."""
    record = unwrap_result(
        await engine.hold_earnings(earnings_id, payload.reason, payload.held_by)
    )
    return EarningsResponse.model_validate(record)


@router.post(
    "/earnings/{earnings_id}/release",
    response_model=EarningsResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def release_earnings_hold(
    engine: HoldEngine,
    earnings_id: UUID,
    payload: EarningsReleaseRequest,
) -> EarningsResponse:
    """Release a single held earnings record; bundle-held records are refused."""
    record = unwrap_result(await engine.release_earnings_hold(earnings_id, payload.released_by))
    return EarningsResponse.model_validate(record)
