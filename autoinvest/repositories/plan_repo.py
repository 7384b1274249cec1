"""
Plan and allocation repositories — data access for ``auto_invest_plans`` and
``auto_invest_allocations``.

Recording an execution changes the plan and inserts the execution rows in
one transaction, so that write lives here rather than in the execution
repository.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from autoinvest.models.execution import AutoInvestExecution, AutoInvestExecutionDetail
from autoinvest.models.plan import AutoInvestAllocation, AutoInvestPlan, PlanStatus
from autoinvest.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class PlanRepository(BaseRepository[AutoInvestPlan]):
    """Concrete repository for :class:`AutoInvestPlan` entities."""

    resource_name = "Auto-invest plan"

    async def list_by_user(self, user_id: UUID) -> List[AutoInvestPlan]:
        """All plans of a user, newest first."""

        async def _list() -> List[AutoInvestPlan]:
            stmt = (
                select(self.model)
                .where(self.model.user_id == user_id)
                .order_by(self.model.created_at.desc())
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def create_with_allocations(
        self, plan: AutoInvestPlan, allocations: Iterable[AutoInvestAllocation]
    ) -> AutoInvestPlan:
        """Insert a plan and its allocations in a single transaction."""

        async def _create() -> AutoInvestPlan:
            self.db.add(plan)
            await self.db.flush()
            for position, allocation in enumerate(allocations):
                allocation.plan_id = plan.id
                allocation.position = position
                self.db.add(allocation)
            await self._commit("create_with_allocations")
            await self.db.refresh(plan)
            return plan

        return await self._execute_with_circuit_breaker(_create)

    async def update_fields(
        self,
        plan_id: UUID,
        values: dict,
        expected_statuses: Iterable[PlanStatus],
    ) -> AutoInvestPlan:
        """
        Apply ``values`` only while the plan is still in one of ``expected_statuses``.

        Lifecycle transitions use this so a plan cancelled by another request
        between our read and our write is never silently resurrected.
        """
        return await self._guarded_update(
            plan_id,
            [self.model.status.in_(list(expected_statuses))],
            values,
        )

    async def apply_execution(
        self,
        plan_id: UUID,
        execution: AutoInvestExecution,
        details: Sequence[AutoInvestExecutionDetail],
        *,
        expected_next_execution_date: date,
        next_execution_date: date,
        invested: Decimal,
        executions: int,
        executed_at: Optional[datetime],
        updated_at: datetime,
    ) -> AutoInvestExecution:
        """
        Insert an execution with its details and apply its effect on the plan.

        Everything happens in one transaction.  Accumulators are incremented
        in SQL.  The plan update is guarded on the plan still being active
        and still scheduled for ``expected_next_execution_date``, so two
        recordings for the same cycle cannot both apply, and a failed insert
        leaves the plan untouched.
        """
        values = {
            "total_invested": self.model.total_invested + invested,
            "total_executions": self.model.total_executions + executions,
            "next_execution_date": next_execution_date,
            "updated_at": updated_at,
        }
        if executed_at is not None:
            values["last_execution_date"] = executed_at
        return await self._record_cycle(
            plan_id, expected_next_execution_date, values, execution, details
        )

    async def pause_on_execution(
        self,
        plan_id: UUID,
        execution: AutoInvestExecution,
        *,
        expected_next_execution_date: date,
        paused_at: datetime,
    ) -> AutoInvestExecution:
        """Pause the plan and insert the failed execution that caused it, atomically."""
        values = {
            "status": PlanStatus.PAUSED,
            "paused_at": paused_at,
            "pause_until": None,
            "updated_at": paused_at,
        }
        return await self._record_cycle(
            plan_id, expected_next_execution_date, values, execution, []
        )

    async def _record_cycle(
        self,
        plan_id: UUID,
        expected_next_execution_date: date,
        values: dict,
        execution: AutoInvestExecution,
        details: Sequence[AutoInvestExecutionDetail],
    ) -> AutoInvestExecution:
        async def _record() -> AutoInvestExecution:
            await self._claim(
                plan_id,
                [
                    self.model.status == PlanStatus.ACTIVE,
                    self.model.next_execution_date == expected_next_execution_date,
                ],
                values,
            )
            try:
                self.db.add(execution)
                await self.db.flush()
                for detail in details:
                    detail.execution_id = execution.id
                    self.db.add(detail)
                await self.db.commit()
            except SQLAlchemyError:
                await self.db.rollback()
                logger.error(
                    "Recording execution for plan %s failed; plan update rolled back",
                    plan_id,
                    extra={"plan_id": str(plan_id)},
                )
                raise
            await self.db.refresh(execution)
            await self.db.get(self.model, plan_id, populate_existing=True)
            return execution

        return await self._execute_with_circuit_breaker(_record)

    async def delete_with_allocations(self, plan_id: UUID) -> bool:
        """Hard-delete a plan and its allocations; execution history is untouched."""

        async def _delete() -> bool:
            await self.db.execute(
                delete(AutoInvestAllocation).where(AutoInvestAllocation.plan_id == plan_id)
            )
            result = await self.db.execute(delete(self.model).where(self.model.id == plan_id))
            await self._commit("delete_with_allocations")
            return result.rowcount > 0

        return await self._execute_with_circuit_breaker(_delete)


class AllocationRepository(BaseRepository[AutoInvestAllocation]):
    """Concrete repository for :class:`AutoInvestAllocation` entities."""

    resource_name = "Allocation"

    async def list_by_plan(self, plan_id: UUID) -> List[AutoInvestAllocation]:
        """Allocations of a plan in the order they were submitted."""

        async def _list() -> List[AutoInvestAllocation]:
            stmt = (
                select(self.model)
                .where(self.model.plan_id == plan_id)
                .order_by(self.model.position, self.model.id)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def update_percents(self, plan_id: UUID, percents: Dict[UUID, Decimal]) -> None:
        """Rewrite ``allocation_percent`` for several allocations in one transaction."""

        async def _update() -> None:
            for allocation_id, percent in percents.items():
                await self.db.execute(
                    update(self.model)
                    .where(self.model.id == allocation_id, self.model.plan_id == plan_id)
                    .values(allocation_percent=percent)
                    .execution_options(synchronize_session=False)
                )
            await self._commit("update_percents")

        await self._execute_with_circuit_breaker(_update)
