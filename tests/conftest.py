"""
Shared pytest fixtures for unit tests.

Tests run with ``USE_SQLITE=true``.  Most use mocked repositories; the
few that need committed state build their own in-memory SQLite engine.
All dates are fixed so scheduling assertions are deterministic.
"""

import os

os.environ.setdefault("USE_SQLITE", "true")

import uuid  # noqa: E402
from datetime import date, datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402

from autoinvest.models.drip import (  # noqa: E402
    SAME_PROPERTY,
    DistributionCategory,
    DRIPCustomAllocation,
    DRIPPropertySetting,
    DRIPSettings,
    DRIPTransaction,
    DripType,
)
from autoinvest.models.execution import (  # noqa: E402
    AutoInvestExecution,
    AutoInvestExecutionDetail,
    DetailStatus,
    ExecutionStatus,
)
from autoinvest.models.holding import Holding  # noqa: E402
from autoinvest.models.plan import (  # noqa: E402
    AutoInvestAllocation,
    AutoInvestPlan,
    Frequency,
    FundingSource,
    InsufficientFundsAction,
    PlanStatus,
    TargetType,
)

# ────────────────────────────────────────────────────────────────────────────
# Factory helpers — create domain objects with sensible defaults
# ────────────────────────────────────────────────────────────────────────────

USER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
PLAN_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
EXECUTION_ID = uuid.UUID("33333333-3333-3333-3333-333333333333")
ALLOCATION_ID = uuid.UUID("44444444-4444-4444-4444-444444444444")
ALLOCATION_ID_2 = uuid.UUID("55555555-5555-5555-5555-555555555555")

PROPERTY_A = "prop-a"
PROPERTY_B = "prop-b"

NOW = datetime(2024, 1, 31, 9, 0, 0, tzinfo=timezone.utc)


def make_plan(
    *,
    id: uuid.UUID = PLAN_ID,
    user_id: uuid.UUID = USER_ID,
    name: str = "Monthly rentals",
    status: PlanStatus = PlanStatus.ACTIVE,
    frequency: Frequency = Frequency.MONTHLY,
    amount: Decimal = Decimal("1000.00"),
    insufficient_funds_action: InsufficientFundsAction = InsufficientFundsAction.SKIP,
    start_date: date = date(2024, 1, 31),
    schedule_anchor: date | None = None,
    next_execution_date: date | None = None,
    total_invested: Decimal = Decimal("0"),
    total_executions: int = 0,
    paused_at: datetime | None = None,
    pause_until: date | None = None,
) -> AutoInvestPlan:
    """Create an AutoInvestPlan with sensible test defaults."""
    return AutoInvestPlan(
        id=id,
        user_id=user_id,
        name=name,
        status=status,
        frequency=frequency,
        amount=amount,
        funding_source=FundingSource.WALLET,
        insufficient_funds_action=insufficient_funds_action,
        start_date=start_date,
        schedule_anchor=schedule_anchor or start_date,
        next_execution_date=next_execution_date or start_date,
        total_invested=total_invested,
        total_executions=total_executions,
        paused_at=paused_at,
        pause_until=pause_until,
        created_at=NOW,
        updated_at=NOW,
    )


def make_allocation(
    *,
    id: uuid.UUID = ALLOCATION_ID,
    plan_id: uuid.UUID = PLAN_ID,
    target_type: TargetType = TargetType.PROPERTY,
    target_id: str | None = PROPERTY_A,
    category: str | None = None,
    allocation_percent: Decimal = Decimal("100"),
) -> AutoInvestAllocation:
    """Create an AutoInvestAllocation with sensible test defaults."""
    return AutoInvestAllocation(
        id=id,
        plan_id=plan_id,
        target_type=target_type,
        target_id=target_id,
        category=category,
        allocation_percent=allocation_percent,
        created_at=NOW,
    )


def make_execution(
    *,
    id: uuid.UUID = EXECUTION_ID,
    plan_id: uuid.UUID = PLAN_ID,
    status: ExecutionStatus = ExecutionStatus.COMPLETED,
    total_amount: Decimal = Decimal("1000.00"),
    actual_amount: Decimal = Decimal("1000.00"),
    failure_reason: str | None = None,
) -> AutoInvestExecution:
    return AutoInvestExecution(
        id=id,
        plan_id=plan_id,
        user_id=USER_ID,
        execution_date=date(2024, 1, 31),
        total_amount=total_amount,
        actual_amount=actual_amount,
        status=status,
        failure_reason=failure_reason,
        created_at=NOW,
        completed_at=NOW if status != ExecutionStatus.FAILED else None,
    )


def make_detail(
    *,
    execution_id: uuid.UUID = EXECUTION_ID,
    target_id: str = PROPERTY_A,
    amount: Decimal = Decimal("1000.00"),
) -> AutoInvestExecutionDetail:
    return AutoInvestExecutionDetail(
        execution_id=execution_id,
        target_type=TargetType.PROPERTY,
        target_id=target_id,
        target_name=target_id,
        intended_amount=amount,
        actual_amount=amount,
        status=DetailStatus.SUCCESS,
        transaction_id="tx-1",
    )


def make_settings(
    *,
    user_id: uuid.UUID = USER_ID,
    is_enabled: bool = True,
    reinvest_equity_dividends: bool = True,
    reinvest_debt_interest: bool = True,
    reinvest_prediction_winnings: bool = False,
    drip_type: DripType = DripType.SAME_PROPERTY,
    minimum_reinvest_amount: Decimal = Decimal("10.00"),
) -> DRIPSettings:
    """Create DRIPSettings; unlike the table defaults, DRIP is switched on."""
    return DRIPSettings(
        user_id=user_id,
        is_enabled=is_enabled,
        reinvest_equity_dividends=reinvest_equity_dividends,
        reinvest_debt_interest=reinvest_debt_interest,
        reinvest_prediction_winnings=reinvest_prediction_winnings,
        drip_type=drip_type,
        minimum_reinvest_amount=minimum_reinvest_amount,
    )


def make_override(
    *,
    property_id: str = PROPERTY_A,
    is_enabled: bool = True,
    reinvest_to: str = SAME_PROPERTY,
) -> DRIPPropertySetting:
    return DRIPPropertySetting(
        user_id=USER_ID,
        property_id=property_id,
        is_enabled=is_enabled,
        reinvest_to=reinvest_to,
    )


def make_custom(target_id: str, percent: str) -> DRIPCustomAllocation:
    return DRIPCustomAllocation(
        user_id=USER_ID, target_id=target_id, allocation_percent=Decimal(percent)
    )


def make_holding(
    property_id: str = PROPERTY_A,
    *,
    current_value: Decimal = Decimal("1000.00"),
    token_price: Decimal = Decimal("50.00"),
) -> Holding:
    return Holding(
        user_id=USER_ID,
        property_id=property_id,
        property_name=property_id.upper(),
        tokens=current_value / token_price,
        token_price=token_price,
        current_value=current_value,
    )


def make_drip_transaction(
    *,
    target_id: str = PROPERTY_A,
    amount: Decimal = Decimal("12.00"),
) -> DRIPTransaction:
    return DRIPTransaction(
        user_id=USER_ID,
        source_type=DistributionCategory.EQUITY_DIVIDEND,
        source_id=target_id,
        source_amount=amount,
        reinvest_property_id=target_id,
        reinvest_amount=amount,
        tokens_purchased=Decimal("0.24"),
        token_price=Decimal("50.00"),
        status="completed",
        executed_at=NOW,
        created_at=NOW,
    )


# ────────────────────────────────────────────────────────────────────────────
# Pytest fixtures
# ────────────────────────────────────────────────────────────────────────────


@pytest.fixture()
def mock_db():
    """A mocked AsyncSession that tracks add/commit/refresh/rollback calls."""
    session = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    session.commit = AsyncMock()
    session.flush = AsyncMock()
    session.refresh = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock()
    session.scalar = AsyncMock()
    session.get = AsyncMock()
    session.merge = AsyncMock()
    session.delete = AsyncMock()
    return session


@pytest.fixture(autouse=True)
def _reset_circuit_breaker():
    """Keep the module-level DB breaker closed between tests."""
    from autoinvest.core.resilience import CircuitState, db_circuit_breaker

    db_circuit_breaker._state = CircuitState.CLOSED
    db_circuit_breaker._failure_count = 0
    yield
    db_circuit_breaker._state = CircuitState.CLOSED
    db_circuit_breaker._failure_count = 0
