"""
Auto-invest plan domain models.

An :class:`AutoInvestPlan` is a recurring contribution instruction owned by
one user; its :class:`AutoInvestAllocation` rows split each contribution
across weighted targets.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index
from sqlmodel import Field, SQLModel


class PlanStatus(str, Enum):
    """Lifecycle states of a plan.  ``CANCELLED`` is terminal."""

    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class Frequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class FundingSource(str, Enum):
    WALLET = "wallet"
    LINKED_ACCOUNT = "linked_account"


class InsufficientFundsAction(str, Enum):
    """What an execution does when funds fall short of the plan amount."""

    SKIP = "skip"
    PARTIAL = "partial"
    PAUSE = "pause"


class TargetType(str, Enum):
    PROPERTY = "property"
    LOAN = "loan"
    CATEGORY = "category"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutoInvestPlan(SQLModel, table=True):
    """
    SQLModel table for recurring contribution plans.

    ``total_invested`` and ``total_executions`` are accumulators: they are
    only ever changed by an atomic ``SET col = col + :delta`` update issued
    by :meth:`PlanRepository.apply_execution`, never by read-modify-write.

    ``schedule_anchor`` is the date the current cadence is phased from.
    It equals ``start_date`` on creation and is reset on resume.
    """

    __tablename__ = "auto_invest_plans"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_plans_amount_positive"),
        CheckConstraint("total_invested >= 0", name="ck_plans_total_invested_non_negative"),
        CheckConstraint("total_executions >= 0", name="ck_plans_total_executions_non_negative"),
        CheckConstraint("length(name) > 0", name="ck_plans_name_not_empty"),
        CheckConstraint(
            "next_execution_date >= start_date", name="ck_plans_next_after_start"
        ),
        # Scheduler scan: WHERE status = 'active' AND next_execution_date <= ?
        Index("ix_plans_status_next_execution", "status", "next_execution_date"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    name: str = Field(max_length=255)
    status: PlanStatus = Field(default=PlanStatus.ACTIVE)
    frequency: Frequency
    amount: Decimal = Field(max_digits=20, decimal_places=2)
    funding_source: FundingSource = Field(default=FundingSource.WALLET)
    linked_account_id: Optional[uuid.UUID] = Field(default=None)
    insufficient_funds_action: InsufficientFundsAction = Field(
        default=InsufficientFundsAction.SKIP
    )
    start_date: date
    schedule_anchor: date
    next_execution_date: date
    last_execution_date: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)  # type: ignore[arg-type]
    )
    total_invested: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=2)
    total_executions: int = Field(default=0)
    paused_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)  # type: ignore[arg-type]
    )
    pause_until: Optional[date] = Field(default=None)
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    def __repr__(self) -> str:
        return (
            f"<AutoInvestPlan id={self.id} name='{self.name}' "
            f"status={self.status.value} next={self.next_execution_date}>"
        )


class AutoInvestAllocation(SQLModel, table=True):
    """
    One weighted target of a plan.

    Deleted together with its plan (``ON DELETE CASCADE``).  The
    per-plan sum of ``allocation_percent`` is checked by the service layer.

    ``position`` keeps the order the allocations were submitted in; execution
    splits and their rounding remainder follow it.
    """

    __tablename__ = "auto_invest_allocations"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint(
            "allocation_percent > 0 AND allocation_percent <= 100",
            name="ck_allocations_percent_range",
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    plan_id: uuid.UUID = Field(
        foreign_key="auto_invest_plans.id",
        index=True,
        ondelete="CASCADE",
    )
    target_type: TargetType
    target_id: Optional[str] = Field(default=None, max_length=64)
    category: Optional[str] = Field(default=None, max_length=64)
    allocation_percent: Decimal = Field(max_digits=7, decimal_places=4)
    position: int = Field(default=0, ge=0)
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    @property
    def target_key(self) -> str:
        """Identifier of what this allocation buys: the target id or the category."""
        return self.target_id or self.category or ""

    def __repr__(self) -> str:
        return (
            f"<AutoInvestAllocation plan={self.plan_id} "
            f"{self.target_type.value}:{self.target_key} {self.allocation_percent}%>"
        )
