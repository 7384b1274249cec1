"""
DRIP (dividend reinvestment) domain models.

- :class:`DRIPSettings` — one row per user, global switches and strategy.
- :class:`DRIPPropertySetting` — optional per-holding override.
- :class:`DRIPCustomAllocation` — allocation list for the ``custom`` strategy.
- :class:`DRIPAccrual` — durable accrual bucket per (user, target) holding
  amounts that have not yet reached the minimum reinvest threshold.
- :class:`DRIPTransaction` — one released reinvestment.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

SAME_PROPERTY = "same_property"
TRANSACTION_COMPLETED = "completed"


class DripType(str, Enum):
    SAME_PROPERTY = "same_property"
    SPREAD_PORTFOLIO = "spread_portfolio"
    CUSTOM = "custom"


class DistributionCategory(str, Enum):
    """Kinds of cash distribution that may be reinvested."""

    EQUITY_DIVIDEND = "equity_dividend"
    DEBT_INTEREST = "debt_interest"
    PREDICTION_WINNINGS = "prediction_winnings"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DRIPSettings(SQLModel, table=True):
    """Global DRIP configuration for a user."""

    __tablename__ = "drip_settings"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("minimum_reinvest_amount > 0", name="ck_drip_minimum_positive"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(unique=True, index=True)
    is_enabled: bool = Field(default=False)
    reinvest_equity_dividends: bool = Field(default=True)
    reinvest_debt_interest: bool = Field(default=True)
    reinvest_prediction_winnings: bool = Field(default=False)
    drip_type: DripType = Field(default=DripType.SAME_PROPERTY)
    minimum_reinvest_amount: Decimal = Field(
        default=Decimal("10.00"), max_digits=20, decimal_places=2
    )
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

    def reinvests(self, category: DistributionCategory) -> bool:
        """Per-category switch, ignoring the global ``is_enabled`` flag."""
        return {
            DistributionCategory.EQUITY_DIVIDEND: self.reinvest_equity_dividends,
            DistributionCategory.DEBT_INTEREST: self.reinvest_debt_interest,
            DistributionCategory.PREDICTION_WINNINGS: self.reinvest_prediction_winnings,
        }[category]


class DRIPPropertySetting(SQLModel, table=True):
    """
    Per-holding override.

    ``reinvest_to`` is either :data:`SAME_PROPERTY` (defer to the global
    strategy) or the id of another holding that receives the reinvestment.
    """

    __tablename__ = "drip_property_settings"  # type: ignore[assignment]

    __table_args__ = (
        UniqueConstraint("user_id", "property_id", name="uq_drip_property_user_property"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    property_id: str = Field(max_length=64)
    is_enabled: bool = Field(default=True)
    reinvest_to: str = Field(default=SAME_PROPERTY, max_length=64)
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )


class DRIPCustomAllocation(SQLModel, table=True):
    """One weighted target of a user's custom DRIP allocation."""

    __tablename__ = "drip_custom_allocations"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint(
            "allocation_percent > 0 AND allocation_percent <= 100",
            name="ck_drip_custom_percent_range",
        ),
        UniqueConstraint("user_id", "target_id", name="uq_drip_custom_user_target"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    target_id: str = Field(max_length=64)
    allocation_percent: Decimal = Field(max_digits=7, decimal_places=4)


class DRIPAccrual(SQLModel, table=True):
    """Accrued, not-yet-reinvested balance for one (user, target)."""

    __tablename__ = "drip_accruals"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_drip_accrual_non_negative"),
        UniqueConstraint("user_id", "target_id", name="uq_drip_accrual_user_target"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    target_id: str = Field(max_length=64)
    balance: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=2)
    updated_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )


class DRIPTransaction(SQLModel, table=True):
    """A reinvestment released from an accrual bucket."""

    __tablename__ = "drip_transactions"  # type: ignore[assignment]

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    source_type: DistributionCategory
    source_id: str = Field(max_length=64)
    source_amount: Decimal = Field(max_digits=20, decimal_places=2)
    reinvest_property_id: str = Field(max_length=64, index=True)
    reinvest_amount: Decimal = Field(max_digits=20, decimal_places=2)
    tokens_purchased: Optional[Decimal] = Field(default=None, max_digits=24, decimal_places=8)
    token_price: Optional[Decimal] = Field(default=None, max_digits=20, decimal_places=4)
    status: str = Field(default="pending", max_length=32)
    executed_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)  # type: ignore[arg-type]
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
