"""
Pydantic schemas for auto-invest plan request / response serialisation.

Field-level constraints here give HTTP callers early 422s; the cross-field
business rules (allocation totals, funding-source consistency) are enforced
by :class:`autoinvest.services.plan_service.PlanService` so they also hold
for non-HTTP callers.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from autoinvest.models.plan import (
    FundingSource,
    Frequency,
    InsufficientFundsAction,
    PlanStatus,
    TargetType,
)


class AllocationIn(BaseModel):
    """One weighted target in a plan creation payload."""

    target_type: TargetType
    target_id: Optional[str] = Field(
        default=None, max_length=64, description="Required for property and loan targets"
    )
    category: Optional[str] = Field(
        default=None, max_length=64, description="Required for category targets"
    )
    allocation_percent: Decimal = Field(..., gt=0, le=100, examples=[60])


class PlanCreate(BaseModel):
    """Schema for ``POST /auto-invest/plans?user_id=...``."""

    name: str = Field(..., min_length=1, max_length=255, examples=["Monthly rentals"])
    frequency: Frequency
    amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=2, examples=[500])
    funding_source: FundingSource = FundingSource.WALLET
    linked_account_id: Optional[UUID] = None
    insufficient_funds_action: InsufficientFundsAction = InsufficientFundsAction.SKIP
    start_date: date = Field(..., examples=["2024-01-31"])
    allocations: List[AllocationIn] = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class PlanUpdate(BaseModel):
    """
    Schema for ``PATCH /auto-invest/plans/{plan_id}``.

    Only the supplied fields change.  ``allocation_percents`` maps existing
    allocation ids to their new weight; the resulting set must still sum
    to 100.
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=20, decimal_places=2)
    funding_source: Optional[FundingSource] = None
    linked_account_id: Optional[UUID] = None
    insufficient_funds_action: Optional[InsufficientFundsAction] = None
    allocation_percents: Optional[Dict[UUID, Decimal]] = None


class PauseRequest(BaseModel):
    pause_until: Optional[date] = Field(
        default=None, description="Informational resume date; omit for an indefinite pause"
    )


class AllocationResponse(BaseModel):
    id: UUID
    plan_id: UUID
    target_type: TargetType
    target_id: Optional[str]
    category: Optional[str]
    allocation_percent: Decimal

    model_config = ConfigDict(from_attributes=True)


class PlanResponse(BaseModel):
    """Schema returned by plan endpoints."""

    id: UUID
    user_id: UUID
    name: str
    status: PlanStatus
    frequency: Frequency
    amount: Decimal
    funding_source: FundingSource
    linked_account_id: Optional[UUID]
    insufficient_funds_action: InsufficientFundsAction
    start_date: date
    next_execution_date: date
    last_execution_date: Optional[datetime]
    total_invested: Decimal
    total_executions: int
    paused_at: Optional[datetime]
    pause_until: Optional[date]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PlanDetailResponse(PlanResponse):
    """A plan together with its allocations."""

    allocations: List[AllocationResponse] = []


class PlanStatsResponse(BaseModel):
    """Dashboard totals across a user's plans."""

    active_plans: int
    monthly_amount: Decimal
    total_invested: Decimal
    total_executions: int
