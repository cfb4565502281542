"""Bundle payment hold API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from piecerate_engine.api.dependencies import HoldEngine, unwrap_result
from piecerate_engine.api.schemas import (
    DamageReportCreate,
    ErrorResponse,
    ForceReleaseRequest,
    ForceReleaseResponse,
    HoldCreatedResponse,
    HoldListResponse,
    HoldResponse,
    PendingWorkResponse,
    ReworkAssign,
    ReworkComplete,
    ReworkCompleteResponse,
    ReworkRoundResponse,
    WorkItemResponse,
)

router = APIRouter(tags=["holds"])


# ============================================================================
# Holds
# ============================================================================


@router.post(
    "/holds",
    response_model=HoldCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def report_damage(
    engine: HoldEngine,
    payload: DamageReportCreate,
) -> HoldCreatedResponse:
    """Report damage on a bundle and hold its payment."""
    hold_id = unwrap_result(await engine.report_damage(payload.to_report()))
    return HoldCreatedResponse(hold_id=hold_id)


@router.get("/holds", response_model=HoldListResponse)
async def list_held_bundles(engine: HoldEngine) -> HoldListResponse:
    """List holds still withholding payment, newest first."""
    holds = unwrap_result(await engine.get_held_bundles())
    return HoldListResponse(
        items=[HoldResponse.model_validate(h) for h in holds],
        total=len(holds),
    )


@router.get(
    "/holds/{hold_id}",
    response_model=HoldResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_hold(
    engine: HoldEngine,
    hold_id: Annotated[UUID, Path()],
) -> HoldResponse:
    """Get a hold with its rework history."""
    hold = unwrap_result(await engine.get_hold(hold_id))
    return HoldResponse.model_validate(hold)


# ============================================================================
# Rework
# ============================================================================


@router.post(
    "/holds/{hold_id}/rework",
    response_model=ReworkRoundResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def assign_rework(
    engine: HoldEngine,
    hold_id: Annotated[UUID, Path()],
    payload: ReworkAssign,
) -> ReworkRoundResponse:
    """Assign a rework round for a hold."""
    rework_round = unwrap_result(await engine.assign_rework(hold_id, payload.to_request()))
    return ReworkRoundResponse.model_validate(rework_round)


@router.post(
    "/holds/{hold_id}/rework/complete",
    response_model=ReworkCompleteResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def complete_rework(
    engine: HoldEngine,
    hold_id: Annotated[UUID, Path()],
    payload: ReworkComplete,
) -> ReworkCompleteResponse:
    """Complete the latest rework round; releases payment once the bundle is whole."""
    outcome = unwrap_result(await engine.complete_rework(hold_id, payload.to_completion()))
    return ReworkCompleteResponse.model_validate(outcome)


@router.post(
    "/holds/{hold_id}/force-release",
    response_model=ForceReleaseResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def force_release(
    engine: HoldEngine,
    hold_id: Annotated[UUID, Path()],
    payload: ForceReleaseRequest,
) -> ForceReleaseResponse:
    """Release payment without waiting for rework (supervisor override)."""
    outcome = unwrap_result(
        await engine.force_release_payment(hold_id, payload.supervisor_id, payload.reason)
    )
    return ForceReleaseResponse.model_validate(outcome)


# ============================================================================
# Operators
# ============================================================================


@router.get("/operators/{operator_id}/pending-work", response_model=PendingWorkResponse)
async def get_pending_work(
    engine: HoldEngine,
    operator_id: Annotated[str, Path(min_length=1)],
) -> PendingWorkResponse:
    """Held bundles and assigned work for an operator."""
    pending = unwrap_result(await engine.get_operator_pending_work(operator_id))
    return PendingWorkResponse(
        held_bundles=[HoldResponse.model_validate(h) for h in pending.held_bundles],
        regular_work=[WorkItemResponse.model_validate(w) for w in pending.regular_work],
        total_pending=pending.total_pending,
    )
