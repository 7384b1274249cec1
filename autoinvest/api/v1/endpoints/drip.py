"""
DRIP endpoints.

- GET  /drip/settings/{user_id}                          — Settings (defaults if unsaved)
- PUT  /drip/settings/{user_id}                          — Upsert settings
- GET  /drip/settings/{user_id}/properties               — Per-holding overrides
- PUT  /drip/settings/{user_id}/properties/{property_id} — Upsert one override
- GET  /drip/settings/{user_id}/custom-allocations       — Custom allocation list
- PUT  /drip/settings/{user_id}/custom-allocations       — Replace the list
- POST /drip/distributions                               — Process a distribution
- GET  /drip/transactions/{user_id}                      — Reinvestment history
- GET  /drip/stats/{user_id}                             — Totals
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from autoinvest.api.deps import get_now
from autoinvest.db.session import get_db
from autoinvest.models.drip import (
    DRIPAccrual,
    DRIPCustomAllocation,
    DRIPPropertySetting,
    DRIPSettings,
    DRIPTransaction,
)
from autoinvest.models.holding import Holding
from autoinvest.repositories.drip_repo import (
    AccrualRepository,
    CustomAllocationRepository,
    DripSettingsRepository,
    DripTransactionRepository,
    PropertyOverrideRepository,
)
from autoinvest.repositories.holding_repo import HoldingRepository
from autoinvest.schemas.common import ErrorResponse, ValidationErrorResponse
from autoinvest.schemas.drip import (
    CustomAllocationIn,
    CustomAllocationResponse,
    DistributionEvent,
    DistributionOutcome,
    DRIPSettingsResponse,
    DRIPSettingsUpdate,
    DRIPStatsResponse,
    DRIPTransactionResponse,
    PropertyOverrideResponse,
    PropertyOverrideUpdate,
)
from autoinvest.services.drip_service import DripService

router = APIRouter()


# ── Dependency injection ──


def _get_drip_service(db: AsyncSession = Depends(get_db)) -> DripService:
    """Build a DripService wired to the current request's DB session."""
    return DripService(
        settings_repo=DripSettingsRepository(DRIPSettings, db),
        override_repo=PropertyOverrideRepository(DRIPPropertySetting, db),
        custom_repo=CustomAllocationRepository(DRIPCustomAllocation, db),
        accrual_repo=AccrualRepository(DRIPAccrual, db),
        transaction_repo=DripTransactionRepository(DRIPTransaction, db),
        holding_repo=HoldingRepository(Holding, db),
    )


# ── Settings ──


@router.get(
    "/settings/{user_id}",
    response_model=DRIPSettingsResponse,
    summary="Get DRIP settings",
)
async def get_settings(
    user_id: UUID,
    service: DripService = Depends(_get_drip_service),
) -> DRIPSettingsResponse:
    return await service.get_settings(user_id)


@router.put(
    "/settings/{user_id}",
    response_model=DRIPSettingsResponse,
    summary="Save DRIP settings",
    responses={422: {"model": ValidationErrorResponse, "description": "Validation error"}},
)
async def update_settings(
    user_id: UUID,
    update: DRIPSettingsUpdate,
    now: datetime = Depends(get_now),
    service: DripService = Depends(_get_drip_service),
) -> DRIPSettingsResponse:
    return await service.update_settings(user_id, update, now)


@router.get(
    "/settings/{user_id}/properties",
    response_model=List[PropertyOverrideResponse],
    summary="List per-holding overrides",
)
async def list_property_overrides(
    user_id: UUID,
    service: DripService = Depends(_get_drip_service),
) -> List[PropertyOverrideResponse]:
    return await service.list_property_overrides(user_id)


@router.put(
    "/settings/{user_id}/properties/{property_id}",
    response_model=PropertyOverrideResponse,
    summary="Save the override for one holding",
    responses={422: {"model": ErrorResponse, "description": "Invalid reinvest target"}},
)
async def update_property_override(
    user_id: UUID,
    property_id: str,
    update: PropertyOverrideUpdate,
    service: DripService = Depends(_get_drip_service),
) -> PropertyOverrideResponse:
    return await service.update_property_override(user_id, property_id, update)


@router.get(
    "/settings/{user_id}/custom-allocations",
    response_model=List[CustomAllocationResponse],
    summary="Get the custom allocation list",
)
async def list_custom_allocations(
    user_id: UUID,
    service: DripService = Depends(_get_drip_service),
) -> List[CustomAllocationResponse]:
    return await service.list_custom_allocations(user_id)


@router.put(
    "/settings/{user_id}/custom-allocations",
    response_model=List[CustomAllocationResponse],
    summary="Replace the custom allocation list",
    description="Percentages must sum to 100.",
    responses={422: {"model": ErrorResponse, "description": "Invalid allocation"}},
)
async def set_custom_allocations(
    user_id: UUID,
    allocations: List[CustomAllocationIn],
    service: DripService = Depends(_get_drip_service),
) -> List[CustomAllocationResponse]:
    return await service.set_custom_allocations(user_id, allocations)


# ── Distributions & history ──


@router.post(
    "/distributions",
    response_model=DistributionOutcome,
    summary="Process a distribution",
    description=(
        "Decides whether a dividend, interest payment or winnings are reinvested, "
        "accrues them per target and releases buckets that reach the minimum."
    ),
    responses={422: {"model": ErrorResponse, "description": "DRIP misconfigured"}},
)
async def process_distribution(
    event: DistributionEvent,
    now: datetime = Depends(get_now),
    service: DripService = Depends(_get_drip_service),
) -> DistributionOutcome:
    return await service.process_distribution(event, now)


@router.get(
    "/transactions/{user_id}",
    response_model=List[DRIPTransactionResponse],
    summary="Reinvestment history",
)
async def list_transactions(
    user_id: UUID,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    service: DripService = Depends(_get_drip_service),
) -> List[DRIPTransactionResponse]:
    return await service.list_transactions(user_id, limit=limit)


@router.get(
    "/stats/{user_id}",
    response_model=DRIPStatsResponse,
    summary="DRIP totals",
)
async def get_stats(
    user_id: UUID,
    service: DripService = Depends(_get_drip_service),
) -> DRIPStatsResponse:
    return await service.get_stats(user_id)
