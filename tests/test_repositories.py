"""
Unit tests for the repository layer against a mocked AsyncSession.

Tests cover:
- guarded (compare-and-set) updates: success, lost race, vanished row
- rollback on OperationalError during commit
- accrual buckets: create-on-first-add, conflicting release
- plan / execution writes that span several rows, including rollback of
  the plan update when the execution insert fails
- override upserts and holding look-ups
- circuit breaker integration
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from autoinvest.core.exceptions import ConcurrencyError, NotFoundException
from autoinvest.core.resilience import CircuitBreakerError, db_circuit_breaker
from autoinvest.models.drip import DRIPAccrual, DRIPPropertySetting, DRIPTransaction
from autoinvest.models.execution import ExecutionStatus
from autoinvest.models.holding import Holding
from autoinvest.models.plan import AutoInvestAllocation, AutoInvestPlan, PlanStatus
from autoinvest.repositories.drip_repo import (
    AccrualRepository,
    DripTransactionRepository,
    PropertyOverrideRepository,
)
from autoinvest.repositories.holding_repo import HoldingRepository
from autoinvest.repositories.plan_repo import AllocationRepository, PlanRepository

from .conftest import (
    ALLOCATION_ID_2,
    NOW,
    PLAN_ID,
    PROPERTY_A,
    PROPERTY_B,
    USER_ID,
    make_allocation,
    make_detail,
    make_drip_transaction,
    make_execution,
    make_holding,
    make_override,
    make_plan,
)


def _rows(count):
    return MagicMock(rowcount=count)


def _scalars(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    result.scalars.return_value.first.return_value = rows[0] if rows else None
    return result


# ────────────────────────────────────────────────────────────────────────────
# Guarded updates
# ────────────────────────────────────────────────────────────────────────────


class TestGuardedUpdate:
    @pytest.mark.asyncio
    async def test_applies_and_reloads(self, mock_db):
        plan = make_plan(status=PlanStatus.PAUSED)
        mock_db.execute.return_value = _rows(1)
        mock_db.get.return_value = plan
        repo = PlanRepository(AutoInvestPlan, mock_db)

        result = await repo.update_fields(
            PLAN_ID, {"status": PlanStatus.PAUSED}, [PlanStatus.ACTIVE]
        )

        assert result is plan
        mock_db.commit.assert_awaited_once()
        mock_db.get.assert_awaited_once_with(AutoInvestPlan, PLAN_ID, populate_existing=True)

    @pytest.mark.asyncio
    async def test_lost_race_is_concurrency_error(self, mock_db):
        mock_db.execute.return_value = _rows(0)
        mock_db.get.return_value = make_plan(status=PlanStatus.CANCELLED)
        repo = PlanRepository(AutoInvestPlan, mock_db)

        with pytest.raises(ConcurrencyError):
            await repo.update_fields(PLAN_ID, {"status": PlanStatus.PAUSED}, [PlanStatus.ACTIVE])

    @pytest.mark.asyncio
    async def test_missing_row_is_not_found(self, mock_db):
        mock_db.execute.return_value = _rows(0)
        mock_db.get.return_value = None
        repo = PlanRepository(AutoInvestPlan, mock_db)

        with pytest.raises(NotFoundException):
            await repo.update_fields(PLAN_ID, {"status": PlanStatus.PAUSED}, [PlanStatus.ACTIVE])

    @pytest.mark.asyncio
    async def test_operational_error_rolls_back(self, mock_db):
        mock_db.execute.return_value = _rows(1)
        mock_db.commit.side_effect = OperationalError("COMMIT", {}, Exception("deadlock"))
        repo = PlanRepository(AutoInvestPlan, mock_db)

        with pytest.raises(OperationalError):
            await repo.update_fields(PLAN_ID, {"name": "x"}, [PlanStatus.ACTIVE])
        mock_db.rollback.assert_awaited_once()


class TestApplyExecution:
    @staticmethod
    async def _apply(repo, execution=None, details=(), invested="0", executions=0, executed_at=None):
        return await repo.apply_execution(
            PLAN_ID,
            execution or make_execution(),
            list(details),
            expected_next_execution_date=NOW.date(),
            next_execution_date=NOW.date(),
            invested=Decimal(invested),
            executions=executions,
            executed_at=executed_at,
            updated_at=NOW,
        )

    @pytest.mark.asyncio
    async def test_second_recording_of_cycle_conflicts(self, mock_db):
        mock_db.execute.return_value = _rows(0)
        mock_db.get.return_value = make_plan()
        repo = PlanRepository(AutoInvestPlan, mock_db)

        with pytest.raises(ConcurrencyError):
            await self._apply(repo)
        mock_db.rollback.assert_awaited_once()
        mock_db.add.assert_not_called()
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_writes_plan_and_execution_in_one_commit(self, mock_db):
        mock_db.execute.return_value = _rows(1)
        execution = make_execution()
        detail = make_detail(execution_id=None)
        repo = PlanRepository(AutoInvestPlan, mock_db)

        result = await self._apply(
            repo, execution, [detail], invested="600", executions=1, executed_at=NOW
        )

        assert result is execution
        assert detail.execution_id == execution.id
        assert mock_db.add.call_count == 2
        mock_db.commit.assert_awaited_once()
        mock_db.get.assert_awaited_once_with(AutoInvestPlan, PLAN_ID, populate_existing=True)
        sql = str(mock_db.execute.call_args.args[0])
        assert "auto_invest_plans.total_invested +" in sql
        assert "auto_invest_plans.total_executions +" in sql
        assert "last_execution_date" in sql

    @pytest.mark.asyncio
    async def test_no_trade_keeps_last_execution_date(self, mock_db):
        mock_db.execute.return_value = _rows(1)
        repo = PlanRepository(AutoInvestPlan, mock_db)

        await self._apply(repo)

        assert "last_execution_date" not in str(mock_db.execute.call_args.args[0])

    @pytest.mark.asyncio
    async def test_failed_insert_rolls_back_plan_update(self, mock_db):
        mock_db.execute.return_value = _rows(1)
        mock_db.flush.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
        repo = PlanRepository(AutoInvestPlan, mock_db)

        with pytest.raises(OperationalError):
            await self._apply(repo, invested="600", executions=1, executed_at=NOW)
        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pause_on_execution(self, mock_db):
        mock_db.execute.return_value = _rows(1)
        execution = make_execution(status=ExecutionStatus.FAILED)
        repo = PlanRepository(AutoInvestPlan, mock_db)

        result = await repo.pause_on_execution(
            PLAN_ID, execution, expected_next_execution_date=NOW.date(), paused_at=NOW
        )

        assert result is execution
        sql = str(mock_db.execute.call_args.args[0])
        assert "paused_at" in sql
        assert "next_execution_date=" not in sql
        mock_db.commit.assert_awaited_once()


# ────────────────────────────────────────────────────────────────────────────
# Multi-row writes
# ────────────────────────────────────────────────────────────────────────────


class TestPlanWrites:
    @pytest.mark.asyncio
    async def test_create_with_allocations_links_and_orders_rows(self, mock_db):
        plan = make_plan()
        first = make_allocation(plan_id=None)
        second = make_allocation(id=ALLOCATION_ID_2, plan_id=None, target_id=PROPERTY_B)
        repo = PlanRepository(AutoInvestPlan, mock_db)

        await repo.create_with_allocations(plan, [first, second])

        assert first.plan_id == second.plan_id == plan.id
        assert (first.position, second.position) == (0, 1)
        mock_db.flush.assert_awaited_once()
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rowcount, expected", [(1, True), (0, False)])
    async def test_delete_with_allocations(self, mock_db, rowcount, expected):
        mock_db.execute.return_value = _rows(rowcount)
        repo = PlanRepository(AutoInvestPlan, mock_db)

        assert await repo.delete_with_allocations(PLAN_ID) is expected
        statements = [str(c.args[0]) for c in mock_db.execute.call_args_list]
        assert statements[0].startswith("DELETE FROM auto_invest_allocations")
        assert statements[1].startswith("DELETE FROM auto_invest_plans")
        assert not any("auto_invest_executions" in s for s in statements)

    @pytest.mark.asyncio
    async def test_allocations_listed_in_submitted_order(self, mock_db):
        mock_db.execute.return_value = _scalars([])
        repo = AllocationRepository(AutoInvestAllocation, mock_db)

        await repo.list_by_plan(PLAN_ID)

        sql = str(mock_db.execute.call_args.args[0])
        assert "ORDER BY auto_invest_allocations.position" in sql


# ────────────────────────────────────────────────────────────────────────────
# Accrual buckets
# ────────────────────────────────────────────────────────────────────────────


class TestAccrualRepository:
    @pytest.mark.asyncio
    async def test_first_add_creates_bucket(self, mock_db):
        mock_db.execute.return_value = _rows(0)
        mock_db.scalar.return_value = Decimal("5.00")
        repo = AccrualRepository(DRIPAccrual, mock_db)

        balance = await repo.add(USER_ID, PROPERTY_A, Decimal("5.00"), NOW)

        assert balance == Decimal("5.00")
        created = mock_db.add.call_args.args[0]
        assert isinstance(created, DRIPAccrual)
        assert created.balance == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_add_to_existing_bucket(self, mock_db):
        mock_db.execute.return_value = _rows(1)
        mock_db.scalar.return_value = Decimal("12.00")
        repo = AccrualRepository(DRIPAccrual, mock_db)

        balance = await repo.add(USER_ID, PROPERTY_A, Decimal("7.00"), NOW)

        assert balance == Decimal("12.00")
        mock_db.add.assert_not_called()
        assert "drip_accruals.balance +" in str(mock_db.execute.call_args.args[0])

    @pytest.mark.asyncio
    async def test_release_records_transaction(self, mock_db):
        mock_db.execute.return_value = _rows(1)
        transaction = make_drip_transaction()
        repo = AccrualRepository(DRIPAccrual, mock_db)

        result = await repo.release(USER_ID, PROPERTY_A, Decimal("12.00"), transaction, NOW)

        assert result is transaction
        mock_db.add.assert_called_once_with(transaction)
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_release_conflict(self, mock_db):
        mock_db.execute.return_value = _rows(0)
        repo = AccrualRepository(DRIPAccrual, mock_db)

        with pytest.raises(ConcurrencyError):
            await repo.release(
                USER_ID, PROPERTY_A, Decimal("12.00"), make_drip_transaction(), NOW
            )
        mock_db.rollback.assert_awaited_once()
        mock_db.add.assert_not_called()
        mock_db.commit.assert_not_awaited()


class TestDripTransactionRepository:
    @pytest.mark.asyncio
    async def test_totals(self, mock_db):
        result = MagicMock()
        result.one.return_value = (Decimal("24.00"), Decimal("0.48"), 2)
        mock_db.execute.return_value = result
        repo = DripTransactionRepository(DRIPTransaction, mock_db)

        assert await repo.totals_for_user(USER_ID) == (Decimal("24.00"), Decimal("0.48"), 2)

    @pytest.mark.asyncio
    async def test_positions_by_property(self, mock_db):
        result = MagicMock()
        result.all.return_value = [(PROPERTY_A, 0.24, 12), (PROPERTY_B, 0, 5)]
        mock_db.execute.return_value = result
        repo = DripTransactionRepository(DRIPTransaction, mock_db)

        positions = await repo.positions_by_property(USER_ID)

        assert positions == {
            PROPERTY_A: (Decimal("0.24"), Decimal("12")),
            PROPERTY_B: (Decimal("0"), Decimal("5")),
        }
        assert "GROUP BY drip_transactions.reinvest_property_id" in str(
            mock_db.execute.call_args.args[0]
        )


class TestPropertyOverrideRepository:
    @pytest.mark.asyncio
    async def test_upsert_inserts_when_missing(self, mock_db):
        mock_db.execute.return_value = _scalars([])
        repo = PropertyOverrideRepository(DRIPPropertySetting, mock_db)

        row = await repo.upsert(USER_ID, PROPERTY_A, {"is_enabled": False})

        assert row.is_enabled is False
        assert row.property_id == PROPERTY_A
        mock_db.add.assert_called_once_with(row)
        mock_db.merge.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upsert_updates_existing(self, mock_db):
        existing = make_override()
        mock_db.execute.return_value = _scalars([existing])
        mock_db.merge.return_value = existing
        repo = PropertyOverrideRepository(DRIPPropertySetting, mock_db)

        row = await repo.upsert(USER_ID, PROPERTY_A, {"reinvest_to": PROPERTY_B})

        assert row is existing
        assert existing.reinvest_to == PROPERTY_B
        mock_db.add.assert_not_called()


class TestHoldingRepository:
    @pytest.mark.asyncio
    async def test_get_by_property(self, mock_db):
        a = make_holding(PROPERTY_A)
        b = make_holding(PROPERTY_B, current_value=Decimal("500.00"))
        mock_db.execute.return_value = _scalars([a, b])
        repo = HoldingRepository(Holding, mock_db)

        assert await repo.get_current_holdings(USER_ID) == [a, b]
        assert await repo.get_by_property(USER_ID) == {PROPERTY_A: a, PROPERTY_B: b}


# ────────────────────────────────────────────────────────────────────────────
# Circuit breaker integration
# ────────────────────────────────────────────────────────────────────────────


class TestCircuitBreakerIntegration:
    @pytest.mark.asyncio
    async def test_connection_failures_open_the_circuit(self, mock_db):
        mock_db.execute.side_effect = ConnectionError("connection refused")
        repo = PlanRepository(AutoInvestPlan, mock_db)

        for _ in range(db_circuit_breaker.failure_threshold):
            with pytest.raises(ConnectionError):
                await repo.list_by_user(USER_ID)

        with pytest.raises(CircuitBreakerError):
            await repo.list_by_user(USER_ID)
        assert mock_db.execute.await_count == db_circuit_breaker.failure_threshold

    @pytest.mark.asyncio
    async def test_domain_errors_do_not_count(self, mock_db):
        mock_db.execute.return_value = _rows(0)
        mock_db.get.return_value = make_plan()
        repo = PlanRepository(AutoInvestPlan, mock_db)

        with pytest.raises(ConcurrencyError):
            await repo.update_fields(PLAN_ID, {"name": "x"}, [PlanStatus.ACTIVE])
        assert db_circuit_breaker._failure_count == 0


def test_allocation_target_key():
    assert make_allocation().target_key == PROPERTY_A
    assert make_allocation(target_id=None, category="residential").target_key == "residential"
