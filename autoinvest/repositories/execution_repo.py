"""
Execution repository — data access for ``auto_invest_executions`` and their
``auto_invest_execution_details``.

Read-only: executions are written by :meth:`PlanRepository.apply_execution`
together with the plan update they belong to.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy.future import select

from autoinvest.models.execution import AutoInvestExecution, AutoInvestExecutionDetail
from autoinvest.repositories.base import BaseRepository


class ExecutionRepository(BaseRepository[AutoInvestExecution]):
    """Concrete repository for :class:`AutoInvestExecution` entities."""

    resource_name = "Execution"

    async def list_for_user(
        self,
        user_id: UUID,
        plan_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AutoInvestExecution]:
        """
        Executions of a user, most recent first, optionally narrowed to one plan.

        Executions of deleted plans are still returned.
        """

        async def _list() -> List[AutoInvestExecution]:
            stmt = select(self.model).where(self.model.user_id == user_id)
            if plan_id is not None:
                stmt = stmt.where(self.model.plan_id == plan_id)
            stmt = (
                stmt.order_by(self.model.execution_date.desc(), self.model.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def list_details(self, execution_id: UUID) -> List[AutoInvestExecutionDetail]:
        async def _list() -> List[AutoInvestExecutionDetail]:
            stmt = (
                select(AutoInvestExecutionDetail)
                .where(AutoInvestExecutionDetail.execution_id == execution_id)
                .order_by(AutoInvestExecutionDetail.created_at, AutoInvestExecutionDetail.id)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)
