"""
Pydantic schemas for DRIP settings, distributions and reinvestment history.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from autoinvest.models.drip import DistributionCategory, DripType


class DRIPSettingsUpdate(BaseModel):
    """Schema for ``PUT /drip/settings/{user_id}``; omitted fields keep their value."""

    is_enabled: Optional[bool] = None
    reinvest_equity_dividends: Optional[bool] = None
    reinvest_debt_interest: Optional[bool] = None
    reinvest_prediction_winnings: Optional[bool] = None
    drip_type: Optional[DripType] = None
    minimum_reinvest_amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=20, decimal_places=2
    )


class DRIPSettingsResponse(BaseModel):
    user_id: UUID
    is_enabled: bool
    reinvest_equity_dividends: bool
    reinvest_debt_interest: bool
    reinvest_prediction_winnings: bool
    drip_type: DripType
    minimum_reinvest_amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class PropertyOverrideUpdate(BaseModel):
    is_enabled: Optional[bool] = None
    reinvest_to: Optional[str] = Field(
        default=None,
        max_length=64,
        description="'same_property' or the id of another holding",
    )


class PropertyOverrideResponse(BaseModel):
    id: UUID
    user_id: UUID
    property_id: str
    is_enabled: bool
    reinvest_to: str

    model_config = ConfigDict(from_attributes=True)


class CustomAllocationIn(BaseModel):
    target_id: str = Field(..., min_length=1, max_length=64)
    allocation_percent: Decimal = Field(..., gt=0, le=100)


class CustomAllocationResponse(BaseModel):
    target_id: str
    allocation_percent: Decimal

    model_config = ConfigDict(from_attributes=True)


class DistributionEvent(BaseModel):
    """A cash distribution produced by one of the user's holdings."""

    user_id: UUID
    source_id: str = Field(..., min_length=1, max_length=64, description="Holding that paid out")
    category: DistributionCategory
    amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=2, examples=[5])


class DRIPTransactionResponse(BaseModel):
    id: UUID
    source_type: DistributionCategory
    source_id: str
    source_amount: Decimal
    reinvest_property_id: str
    reinvest_amount: Decimal
    tokens_purchased: Optional[Decimal]
    token_price: Optional[Decimal]
    status: str
    executed_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccrualResponse(BaseModel):
    """A target whose bucket is still below the minimum reinvest amount."""

    target_id: str
    balance: Decimal
    minimum_reinvest_amount: Decimal


class DistributionOutcome(BaseModel):
    reinvest: bool
    strategy: str
    reason: str
    reinvestments: List[DRIPTransactionResponse] = []
    pending: List[AccrualResponse] = []


class DRIPStatsResponse(BaseModel):
    total_reinvested: Decimal
    tokens_acquired: Decimal
    current_value: Decimal
    extra_earned: Decimal
    pending_balance: Decimal
    reinvestment_count: int
