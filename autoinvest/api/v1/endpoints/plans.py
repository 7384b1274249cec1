"""
Auto-invest plan endpoints.

- GET    /auto-invest/plans?user_id=       — List a user's plans
- POST   /auto-invest/plans?user_id=       — Create a plan
- GET    /auto-invest/plans/{id}           — Plan with allocations
- PATCH  /auto-invest/plans/{id}           — Edit a plan
- DELETE /auto-invest/plans/{id}           — Delete a plan (history kept)
- POST   /auto-invest/plans/{id}/pause     — Pause
- POST   /auto-invest/plans/{id}/resume    — Resume
- POST   /auto-invest/plans/{id}/cancel    — Cancel (terminal)
- GET    /auto-invest/stats?user_id=       — Dashboard totals
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from autoinvest.api.deps import get_now
from autoinvest.db.session import get_db
from autoinvest.models.plan import AutoInvestAllocation, AutoInvestPlan
from autoinvest.repositories.plan_repo import AllocationRepository, PlanRepository
from autoinvest.schemas.common import ErrorResponse, ValidationErrorResponse
from autoinvest.schemas.plan import (
    PauseRequest,
    PlanCreate,
    PlanDetailResponse,
    PlanResponse,
    PlanStatsResponse,
    PlanUpdate,
)
from autoinvest.services.plan_service import PlanService

router = APIRouter()

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Plan not found"}}
_CONFLICT = {409: {"model": ErrorResponse, "description": "Illegal transition or concurrent change"}}


# ── Dependency injection ──


def _get_plan_service(db: AsyncSession = Depends(get_db)) -> PlanService:
    """Build a PlanService wired to the current request's DB session."""
    return PlanService(
        plan_repo=PlanRepository(AutoInvestPlan, db),
        allocation_repo=AllocationRepository(AutoInvestAllocation, db),
    )


# ── Endpoints ──


@router.get(
    "/plans",
    response_model=List[PlanResponse],
    summary="List a user's plans",
)
async def list_plans(
    user_id: UUID = Query(..., description="Owner of the plans"),
    service: PlanService = Depends(_get_plan_service),
) -> List[PlanResponse]:
    return await service.list_plans(user_id)


@router.post(
    "/plans",
    response_model=PlanResponse,
    status_code=201,
    summary="Create an auto-invest plan",
    description=(
        "Creates an active plan whose first execution is on ``start_date``. "
        "Allocation percentages must sum to 100."
    ),
    responses={
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_plan(
    plan: PlanCreate,
    user_id: UUID = Query(..., description="Owner of the new plan"),
    now: datetime = Depends(get_now),
    service: PlanService = Depends(_get_plan_service),
) -> PlanResponse:
    return await service.create_plan(user_id, plan, now)


@router.get(
    "/plans/{plan_id}",
    response_model=PlanDetailResponse,
    summary="Get a plan with its allocations",
    responses=_NOT_FOUND,
)
async def get_plan(
    plan_id: UUID,
    service: PlanService = Depends(_get_plan_service),
) -> PlanDetailResponse:
    return await service.get_plan(plan_id)


@router.patch(
    "/plans/{plan_id}",
    response_model=PlanResponse,
    summary="Edit a plan",
    description="Only the supplied fields change.  Cancelled plans cannot be edited.",
    responses={**_NOT_FOUND, **_CONFLICT},
)
async def update_plan(
    plan_id: UUID,
    plan_update: PlanUpdate,
    now: datetime = Depends(get_now),
    service: PlanService = Depends(_get_plan_service),
) -> PlanResponse:
    return await service.update_plan(plan_id, plan_update, now)


@router.delete(
    "/plans/{plan_id}",
    status_code=204,
    summary="Delete a plan",
    description="Removes the plan and its allocations.  Execution history is kept.",
    responses=_NOT_FOUND,
)
async def delete_plan(
    plan_id: UUID,
    service: PlanService = Depends(_get_plan_service),
) -> Response:
    await service.delete_plan(plan_id)
    return Response(status_code=204)


@router.post(
    "/plans/{plan_id}/pause",
    response_model=PlanResponse,
    summary="Pause a plan",
    responses={**_NOT_FOUND, **_CONFLICT},
)
async def pause_plan(
    plan_id: UUID,
    body: Optional[PauseRequest] = None,
    now: datetime = Depends(get_now),
    service: PlanService = Depends(_get_plan_service),
) -> PlanResponse:
    pause_until = body.pause_until if body else None
    return await service.pause_plan(plan_id, now, pause_until=pause_until)


@router.post(
    "/plans/{plan_id}/resume",
    response_model=PlanResponse,
    summary="Resume a paused plan",
    responses={**_NOT_FOUND, **_CONFLICT},
)
async def resume_plan(
    plan_id: UUID,
    now: datetime = Depends(get_now),
    service: PlanService = Depends(_get_plan_service),
) -> PlanResponse:
    return await service.resume_plan(plan_id, now)


@router.post(
    "/plans/{plan_id}/cancel",
    response_model=PlanResponse,
    summary="Cancel a plan",
    responses={**_NOT_FOUND, **_CONFLICT},
)
async def cancel_plan(
    plan_id: UUID,
    now: datetime = Depends(get_now),
    service: PlanService = Depends(_get_plan_service),
) -> PlanResponse:
    return await service.cancel_plan(plan_id, now)


@router.get(
    "/stats",
    response_model=PlanStatsResponse,
    summary="Auto-invest dashboard totals",
)
async def get_stats(
    user_id: UUID = Query(...),
    service: PlanService = Depends(_get_plan_service),
) -> PlanStatsResponse:
    return await service.get_stats(user_id)
