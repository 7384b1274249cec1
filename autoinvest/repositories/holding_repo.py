"""
Holding repository — read-only access to the ``holdings`` table.

Used for spread-portfolio weighting and token-price look-ups.
"""

from typing import Dict, List
from uuid import UUID

from sqlalchemy.future import select

from autoinvest.models.holding import Holding
from autoinvest.repositories.base import BaseRepository


class HoldingRepository(BaseRepository[Holding]):
    """Concrete repository for :class:`Holding` entities."""

    resource_name = "Holding"

    async def get_current_holdings(self, user_id: UUID) -> List[Holding]:
        """The user's holdings, largest current value first."""

        async def _list() -> List[Holding]:
            stmt = (
                select(self.model)
                .where(self.model.user_id == user_id)
                .order_by(self.model.current_value.desc(), self.model.property_id)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def get_by_property(self, user_id: UUID) -> Dict[str, Holding]:
        """Holdings keyed by property id."""
        return {h.property_id: h for h in await self.get_current_holdings(user_id)}
