"""
DRIP repositories — data access for DRIP settings, per-holding overrides,
custom allocations, accrual buckets and the reinvestment log.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import delete, func, update
from sqlalchemy.future import select

from autoinvest.core.exceptions import ConcurrencyError
from autoinvest.models.drip import (
    DRIPAccrual,
    DRIPCustomAllocation,
    DRIPPropertySetting,
    DRIPSettings,
    DRIPTransaction,
)
from autoinvest.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class DripSettingsRepository(BaseRepository[DRIPSettings]):
    """Concrete repository for :class:`DRIPSettings` (one row per user)."""

    resource_name = "DRIP settings"

    async def get_by_user(self, user_id: UUID) -> Optional[DRIPSettings]:
        async def _get() -> Optional[DRIPSettings]:
            stmt = select(self.model).where(self.model.user_id == user_id)
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get)

    async def upsert(self, user_id: UUID, values: dict) -> DRIPSettings:
        """Update the user's settings row, creating it with defaults first if absent."""
        existing = await self.get_by_user(user_id)
        if existing is None:
            return await self.create(DRIPSettings(user_id=user_id, **values))
        for key, value in values.items():
            setattr(existing, key, value)
        return await self.update(existing)


class PropertyOverrideRepository(BaseRepository[DRIPPropertySetting]):
    """Concrete repository for :class:`DRIPPropertySetting` entities."""

    resource_name = "DRIP property setting"

    async def list_by_user(self, user_id: UUID) -> List[DRIPPropertySetting]:
        async def _list() -> List[DRIPPropertySetting]:
            stmt = (
                select(self.model)
                .where(self.model.user_id == user_id)
                .order_by(self.model.created_at)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def get_for_property(self, user_id: UUID, property_id: str) -> Optional[DRIPPropertySetting]:
        async def _get() -> Optional[DRIPPropertySetting]:
            stmt = select(self.model).where(
                self.model.user_id == user_id, self.model.property_id == property_id
            )
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get)

    async def upsert(self, user_id: UUID, property_id: str, values: dict) -> DRIPPropertySetting:
        existing = await self.get_for_property(user_id, property_id)
        if existing is None:
            return await self.create(
                DRIPPropertySetting(user_id=user_id, property_id=property_id, **values)
            )
        for key, value in values.items():
            setattr(existing, key, value)
        return await self.update(existing)


class CustomAllocationRepository(BaseRepository[DRIPCustomAllocation]):
    """Concrete repository for :class:`DRIPCustomAllocation` entities."""

    resource_name = "DRIP custom allocation"

    async def list_by_user(self, user_id: UUID) -> List[DRIPCustomAllocation]:
        async def _list() -> List[DRIPCustomAllocation]:
            stmt = (
                select(self.model)
                .where(self.model.user_id == user_id)
                .order_by(self.model.target_id)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def replace(
        self, user_id: UUID, rows: Sequence[DRIPCustomAllocation]
    ) -> List[DRIPCustomAllocation]:
        """Swap the user's whole allocation list in one transaction."""

        async def _replace() -> List[DRIPCustomAllocation]:
            await self.db.execute(delete(self.model).where(self.model.user_id == user_id))
            self.db.add_all(list(rows))
            await self._commit("replace")
            return list(rows)

        return await self._execute_with_circuit_breaker(_replace)


class AccrualRepository(BaseRepository[DRIPAccrual]):
    """
    Durable accrual buckets keyed by (user, target).

    Balances only change through single SQL statements
    (``balance = balance + :amount`` / ``balance - :amount``), so concurrent
    distributions add up instead of overwriting each other.
    """

    resource_name = "DRIP accrual"

    def _bucket(self, user_id: UUID, target_id: str) -> list:
        return [self.model.user_id == user_id, self.model.target_id == target_id]

    async def add(self, user_id: UUID, target_id: str, amount: Decimal, now: datetime) -> Decimal:
        """Add ``amount`` to the bucket (creating it if needed) and return the new balance."""

        async def _add() -> Decimal:
            result = await self.db.execute(
                update(self.model)
                .where(*self._bucket(user_id, target_id))
                .values(balance=self.model.balance + amount, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.add(
                    DRIPAccrual(user_id=user_id, target_id=target_id, balance=amount, updated_at=now)
                )
            await self._commit("accrue")
            balance = await self.db.scalar(
                select(self.model.balance).where(*self._bucket(user_id, target_id))
            )
            return Decimal(str(balance))

        return await self._execute_with_circuit_breaker(_add)

    async def release(
        self,
        user_id: UUID,
        target_id: str,
        amount: Decimal,
        transaction: DRIPTransaction,
        now: datetime,
    ) -> DRIPTransaction:
        """
        Take ``amount`` out of the bucket and log the reinvestment atomically.

        Raises :class:`ConcurrencyError` if the bucket no longer holds
        ``amount`` (another worker released it first).
        """

        async def _release() -> DRIPTransaction:
            result = await self.db.execute(
                update(self.model)
                .where(*self._bucket(user_id, target_id), self.model.balance >= amount)
                .values(balance=self.model.balance - amount, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                logger.warning(
                    "Accrual release conflict for user=%s target=%s amount=%s",
                    user_id,
                    target_id,
                    amount,
                )
                raise ConcurrencyError(self.resource_name, f"{user_id}:{target_id}")
            self.db.add(transaction)
            await self._commit("release")
            await self.db.refresh(transaction)
            return transaction

        return await self._execute_with_circuit_breaker(_release)

    async def list_by_user(self, user_id: UUID) -> List[DRIPAccrual]:
        async def _list() -> List[DRIPAccrual]:
            stmt = (
                select(self.model)
                .where(self.model.user_id == user_id, self.model.balance > 0)
                .order_by(self.model.target_id)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)


class DripTransactionRepository(BaseRepository[DRIPTransaction]):
    """Concrete repository for :class:`DRIPTransaction` entities."""

    resource_name = "DRIP transaction"

    async def list_by_user(self, user_id: UUID, limit: Optional[int] = None) -> List[DRIPTransaction]:
        """Reinvestments of a user, newest first."""

        async def _list() -> List[DRIPTransaction]:
            stmt = (
                select(self.model)
                .where(self.model.user_id == user_id)
                .order_by(self.model.created_at.desc())
            )
            if limit:
                stmt = stmt.limit(limit)
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def totals_for_user(self, user_id: UUID) -> tuple:
        """``(total_reinvested, tokens_acquired, count)`` over all of a user's reinvestments."""

        async def _totals() -> tuple:
            stmt = select(
                func.coalesce(func.sum(self.model.reinvest_amount), 0),
                func.coalesce(func.sum(self.model.tokens_purchased), 0),
                func.count(self.model.id),
            ).where(self.model.user_id == user_id)
            result = await self.db.execute(stmt)
            reinvested, tokens, count = result.one()
            return Decimal(str(reinvested)), Decimal(str(tokens)), int(count)

        return await self._execute_with_circuit_breaker(_totals)

    async def positions_by_property(self, user_id: UUID) -> Dict[str, Tuple[Decimal, Decimal]]:
        """``{property_id: (tokens_acquired, amount_reinvested)}`` over a user's reinvestments."""

        async def _positions() -> Dict[str, Tuple[Decimal, Decimal]]:
            stmt = (
                select(
                    self.model.reinvest_property_id,
                    func.coalesce(func.sum(self.model.tokens_purchased), 0),
                    func.coalesce(func.sum(self.model.reinvest_amount), 0),
                )
                .where(self.model.user_id == user_id)
                .group_by(self.model.reinvest_property_id)
            )
            result = await self.db.execute(stmt)
            return {
                property_id: (Decimal(str(tokens)), Decimal(str(reinvested)))
                for property_id, tokens, reinvested in result.all()
            }

        return await self._execute_with_circuit_breaker(_positions)
