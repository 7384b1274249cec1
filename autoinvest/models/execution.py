"""
Execution history models.

An execution is one dated attempt to apply a plan's contribution; each
attempted target gets an :class:`AutoInvestExecutionDetail`.  Executions
deliberately carry no foreign key to ``auto_invest_plans`` so that history
survives deletion of the plan.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index
from sqlmodel import Field, SQLModel

from autoinvest.models.plan import TargetType


class ExecutionStatus(str, Enum):
    """``pending → processing → completed | partial | failed``."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class DetailStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


INSUFFICIENT_FUNDS = "insufficient_funds"


class AutoInvestExecution(SQLModel, table=True):
    """SQLModel table for execution attempts."""

    __tablename__ = "auto_invest_executions"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("actual_amount >= 0", name="ck_executions_actual_non_negative"),
        CheckConstraint(
            "actual_amount <= total_amount", name="ck_executions_actual_le_total"
        ),
        # Covers: WHERE plan_id = ? ORDER BY execution_date DESC
        Index("ix_executions_plan_date", "plan_id", "execution_date"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    plan_id: uuid.UUID = Field(index=True)
    user_id: uuid.UUID = Field(index=True)
    execution_date: date
    total_amount: Decimal = Field(max_digits=20, decimal_places=2)
    actual_amount: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=2)
    status: ExecutionStatus = Field(default=ExecutionStatus.PENDING)
    failure_reason: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)  # type: ignore[arg-type]
    )

    def __repr__(self) -> str:
        return (
            f"<AutoInvestExecution id={self.id} plan={self.plan_id} "
            f"status={self.status.value} ${self.actual_amount}/{self.total_amount}>"
        )


class AutoInvestExecutionDetail(SQLModel, table=True):
    """Per-target outcome of one execution."""

    __tablename__ = "auto_invest_execution_details"  # type: ignore[assignment]

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    execution_id: uuid.UUID = Field(
        foreign_key="auto_invest_executions.id",
        index=True,
        ondelete="CASCADE",
    )
    target_type: TargetType
    target_id: str = Field(max_length=64)
    target_name: str = Field(default="", max_length=255)
    intended_amount: Decimal = Field(max_digits=20, decimal_places=2)
    actual_amount: Decimal = Field(max_digits=20, decimal_places=2)
    tokens_purchased: Optional[Decimal] = Field(default=None, max_digits=24, decimal_places=8)
    token_price: Optional[Decimal] = Field(default=None, max_digits=20, decimal_places=4)
    status: DetailStatus
    failure_reason: Optional[str] = Field(default=None, max_length=255)
    transaction_id: Optional[str] = Field(default=None, max_length=128)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
