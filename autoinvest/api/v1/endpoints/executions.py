"""
Execution endpoints.

- POST /auto-invest/plans/{plan_id}/executions         — Record a scheduled run
- GET  /auto-invest/plans/{plan_id}/executions?user_id= — History of one plan
- GET  /auto-invest/executions?user_id=                 — History across plans
- GET  /auto-invest/executions/{execution_id}           — One run with details
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from autoinvest.api.deps import get_now
from autoinvest.db.session import get_db
from autoinvest.models.execution import AutoInvestExecution
from autoinvest.models.plan import AutoInvestAllocation, AutoInvestPlan
from autoinvest.repositories.execution_repo import ExecutionRepository
from autoinvest.repositories.plan_repo import AllocationRepository, PlanRepository
from autoinvest.schemas.common import ErrorResponse, ValidationErrorResponse
from autoinvest.schemas.execution import (
    ExecutionDetailedResponse,
    ExecutionRequest,
    ExecutionResponse,
)
from autoinvest.services.execution_service import ExecutionService

router = APIRouter()


# ── Dependency injection ──


def _get_execution_service(db: AsyncSession = Depends(get_db)) -> ExecutionService:
    """
    Build an ExecutionService wired to the current request's DB session.

    Recording needs the plan and its allocations as well as the execution
    tables, so all three repositories share the one session.
    """
    return ExecutionService(
        plan_repo=PlanRepository(AutoInvestPlan, db),
        allocation_repo=AllocationRepository(AutoInvestAllocation, db),
        execution_repo=ExecutionRepository(AutoInvestExecution, db),
    )


# ── Endpoints ──


@router.post(
    "/plans/{plan_id}/executions",
    response_model=ExecutionDetailedResponse,
    status_code=201,
    summary="Record an execution",
    description=(
        "Called by the trade pipeline once a plan's scheduled date is reached. "
        "Insufficient funds are handled with the plan's policy and never "
        "return an error."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Plan not found"},
        409: {
            "model": ErrorResponse,
            "description": "Plan not active, not due, or cycle already recorded",
        },
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def record_execution(
    plan_id: UUID,
    request: ExecutionRequest,
    now: datetime = Depends(get_now),
    service: ExecutionService = Depends(_get_execution_service),
) -> ExecutionDetailedResponse:
    return await service.record_execution(plan_id, request, now)


@router.get(
    "/plans/{plan_id}/executions",
    response_model=List[ExecutionResponse],
    summary="Execution history of a plan",
)
async def list_plan_executions(
    plan_id: UUID,
    user_id: UUID = Query(...),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: ExecutionService = Depends(_get_execution_service),
) -> List[ExecutionResponse]:
    return await service.list_executions(user_id, plan_id, skip=skip, limit=limit)


@router.get(
    "/executions",
    response_model=List[ExecutionResponse],
    summary="Execution history of a user",
    description="Includes executions of plans that have since been deleted.",
)
async def list_executions(
    user_id: UUID = Query(...),
    plan_id: Optional[UUID] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    service: ExecutionService = Depends(_get_execution_service),
) -> List[ExecutionResponse]:
    return await service.list_executions(user_id, plan_id, skip=skip, limit=limit)


@router.get(
    "/executions/{execution_id}",
    response_model=ExecutionDetailedResponse,
    summary="Get an execution with per-target details",
    responses={404: {"model": ErrorResponse, "description": "Execution not found"}},
)
async def get_execution(
    execution_id: UUID,
    service: ExecutionService = Depends(_get_execution_service),
) -> ExecutionDetailedResponse:
    return await service.get_execution(execution_id)
