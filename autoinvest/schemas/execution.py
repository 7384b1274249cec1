"""
Pydantic schemas for execution recording and execution history.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from autoinvest.models.execution import DetailStatus, ExecutionStatus
from autoinvest.models.plan import TargetType


class TargetResult(BaseModel):
    """Outcome of the trade placed for one allocation target."""

    target_id: str = Field(..., max_length=64, description="Target id, or the category name")
    success: bool = True
    transaction_id: Optional[str] = Field(default=None, max_length=128)
    token_price: Optional[Decimal] = Field(default=None, gt=0)
    target_name: Optional[str] = Field(default=None, max_length=255)
    failure_reason: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def require_transaction_on_success(self) -> "TargetResult":
        """A successful trade always carries the pipeline's transaction id."""
        if self.success and not self.transaction_id:
            raise ValueError("transaction_id is required when success is true")
        return self


class ExecutionRequest(BaseModel):
    """
    Schema for ``POST /auto-invest/plans/{plan_id}/executions``.

    Sent by the external execution pipeline when a plan's scheduled date is
    reached.  ``available_amount`` is what the funding source could supply;
    targets without an entry in ``target_results`` are recorded as not
    executed.
    """

    available_amount: Decimal = Field(..., ge=0, examples=[600])
    execution_date: Optional[date] = Field(
        default=None,
        description="Scheduled cycle being reported; must equal the plan's next_execution_date",
    )
    target_results: List[TargetResult] = []


class ExecutionDetailResponse(BaseModel):
    id: UUID
    execution_id: UUID
    target_type: TargetType
    target_id: str
    target_name: str
    intended_amount: Decimal
    actual_amount: Decimal
    tokens_purchased: Optional[Decimal]
    token_price: Optional[Decimal]
    status: DetailStatus
    failure_reason: Optional[str]
    transaction_id: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class ExecutionResponse(BaseModel):
    id: UUID
    plan_id: UUID
    user_id: UUID
    execution_date: date
    total_amount: Decimal
    actual_amount: Decimal
    status: ExecutionStatus
    failure_reason: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ExecutionDetailedResponse(ExecutionResponse):
    details: List[ExecutionDetailResponse] = []
