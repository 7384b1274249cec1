"""
Generic async repository (Data Access Layer).

Implements the Repository pattern on top of SQLAlchemy's ``AsyncSession``.
Concrete repositories inherit from ``BaseRepository[T]`` and add the
entity-specific queries the services need.

- **IntegrityError** is NOT caught here; services translate it into a
  domain error.
- **OperationalError** (connection loss, deadlock) rolls the session back
  and is re-raised, so a failed commit never leaks a dirty transaction.
- Every call goes through ``db_circuit_breaker`` so a dead database makes
  callers fail fast.
- Guarded updates (:meth:`_guarded_update`) are the compare-and-set
  primitive: zero affected rows on an existing entity means a concurrent
  writer got there first and surfaces as :class:`ConcurrencyError`.
"""

import logging
from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from autoinvest.core.exceptions import ConcurrencyError, NotFoundException
from autoinvest.core.resilience import db_circuit_breaker

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic CRUD repository for SQLModel entities.

    Parameters
    ----------
    model : Type[ModelType]
        The SQLModel class this repository manages.
    db : AsyncSession
        An active async database session.
    """

    resource_name = "Entity"

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ── Internal helpers ──

    async def _execute_with_circuit_breaker(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        return await db_circuit_breaker.call(func, *args, **kwargs)

    async def _commit(self, operation: str) -> None:
        """Commit, rolling back and re-raising on ``OperationalError``."""
        try:
            await self.db.commit()
        except OperationalError:
            await self.db.rollback()
            logger.error("OperationalError during %s for %s", operation, self.model.__name__)
            raise

    async def _claim(self, id: Any, conditions: Sequence[Any], values: dict) -> None:
        """
        ``UPDATE ... WHERE id = :id AND <conditions>`` inside the open transaction.

        Nothing is committed, so the caller can add more rows to the same
        unit of work.  On zero affected rows the transaction is rolled back
        and :class:`NotFoundException` (row gone) or
        :class:`ConcurrencyError` (row no longer matches) is raised.
        """
        stmt = (
            update(self.model)
            .where(self.model.id == id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            await self.db.rollback()
            if await self.db.get(self.model, id) is None:
                raise NotFoundException(self.resource_name, id)
            raise ConcurrencyError(self.resource_name, id)

    async def _guarded_update(self, id: Any, conditions: Sequence[Any], values: dict) -> ModelType:
        """
        :meth:`_claim`, commit, then return the fresh row.

        ``values`` may contain SQL expressions (``col + :delta``), which makes
        accumulator updates atomic at the database.
        """

        async def _update() -> ModelType:
            await self._claim(id, conditions, values)
            await self._commit("guarded update")
            return await self.db.get(self.model, id, populate_existing=True)

        return await self._execute_with_circuit_breaker(_update)

    # ── CRUD ──

    async def get(self, id: Any) -> Optional[ModelType]:
        """Fetch a single entity by primary key.  Returns ``None`` if not found."""

        async def _get() -> Optional[ModelType]:
            return await self.db.get(self.model, id)

        return await self._execute_with_circuit_breaker(_get)

    async def create(self, obj_in: ModelType) -> ModelType:
        """Insert a new entity and return the refreshed instance."""

        async def _create() -> ModelType:
            self.db.add(obj_in)
            await self._commit("create")
            await self.db.refresh(obj_in)
            return obj_in

        return await self._execute_with_circuit_breaker(_create)

    async def update(self, entity: ModelType) -> ModelType:
        """
        Persist changes to an entity the caller has already mutated.

        Use only for fields that are not guarded or accumulated; those go
        through :meth:`_guarded_update`.
        """

        async def _update() -> ModelType:
            merged = await self.db.merge(entity)
            await self._commit("update")
            await self.db.refresh(merged)
            return merged

        return await self._execute_with_circuit_breaker(_update)
