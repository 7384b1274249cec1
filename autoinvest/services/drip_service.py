"""
DRIP service — settings management and distribution processing.

``process_distribution`` is the entry point for every cash distribution a
user's holding produces:

1. :func:`autoinvest.engine.drip.resolve_reinvest_target` decides whether to
   reinvest and with which strategy.
2. The amount is split across targets: one target for ``single``, current
   holding value share for ``spread_portfolio``, the saved list for
   ``custom``.
3. Each target's share is added to its durable accrual bucket.  Once a
   bucket reaches ``minimum_reinvest_amount`` the whole bucket is released
   as one :class:`DRIPTransaction` and reset to zero.

Two $5 and $7 dividends against a $10 minimum therefore produce a single
$12 reinvestment on the second event.
"""

import logging
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from autoinvest.core.config import settings as app_settings
from autoinvest.core.exceptions import ValidationError
from autoinvest.engine.allocation import (
    CENT,
    HUNDRED,
    AllocationTarget,
    allocate,
    tokens_for,
    validate_percentages,
    weights_from_values,
)
from autoinvest.engine.drip import ReinvestDecision, ReinvestStrategy, resolve_reinvest_target
from autoinvest.models.drip import (
    SAME_PROPERTY,
    TRANSACTION_COMPLETED,
    DRIPCustomAllocation,
    DRIPPropertySetting,
    DRIPSettings,
    DRIPTransaction,
    DripType,
)
from autoinvest.models.holding import Holding
from autoinvest.repositories.drip_repo import (
    AccrualRepository,
    CustomAllocationRepository,
    DripSettingsRepository,
    DripTransactionRepository,
    PropertyOverrideRepository,
)
from autoinvest.repositories.holding_repo import HoldingRepository
from autoinvest.schemas.drip import (
    AccrualResponse,
    CustomAllocationIn,
    DistributionEvent,
    DistributionOutcome,
    DRIPSettingsUpdate,
    DRIPStatsResponse,
    DRIPTransactionResponse,
    PropertyOverrideUpdate,
)

logger = logging.getLogger(__name__)


class DripService:
    """DRIP configuration plus the distribution → reinvestment pipeline."""

    def __init__(
        self,
        settings_repo: DripSettingsRepository,
        override_repo: PropertyOverrideRepository,
        custom_repo: CustomAllocationRepository,
        accrual_repo: AccrualRepository,
        transaction_repo: DripTransactionRepository,
        holding_repo: HoldingRepository,
    ):
        self._settings_repo = settings_repo
        self._override_repo = override_repo
        self._custom_repo = custom_repo
        self._accrual_repo = accrual_repo
        self._transaction_repo = transaction_repo
        self._holding_repo = holding_repo

    # ── Queries ──

    async def get_settings(self, user_id: UUID) -> DRIPSettings:
        """
        The user's DRIP settings.

        A user who never saved settings gets the defaults (DRIP off); nothing
        is persisted until :meth:`update_settings` is called.
        """
        existing = await self._settings_repo.get_by_user(user_id)
        if existing is not None:
            return existing
        return DRIPSettings(
            user_id=user_id,
            minimum_reinvest_amount=app_settings.DRIP_DEFAULT_MINIMUM_REINVEST,
        )

    async def list_property_overrides(self, user_id: UUID) -> List[DRIPPropertySetting]:
        return await self._override_repo.list_by_user(user_id)

    async def list_custom_allocations(self, user_id: UUID) -> List[DRIPCustomAllocation]:
        return await self._custom_repo.list_by_user(user_id)

    async def list_transactions(
        self, user_id: UUID, limit: Optional[int] = None
    ) -> List[DRIPTransaction]:
        return await self._transaction_repo.list_by_user(user_id, limit=limit)

    async def get_stats(self, user_id: UUID) -> DRIPStatsResponse:
        """
        Lifetime reinvestment totals plus what is still waiting in accrual buckets.

        ``current_value`` prices the tokens bought through DRIP at each
        holding's current token price; a property with no priced holding (or
        no token quantity) is carried at cost.  ``extra_earned`` is that value
        less the amount reinvested.
        """
        reinvested, tokens, count = await self._transaction_repo.totals_for_user(user_id)
        positions = await self._transaction_repo.positions_by_property(user_id)
        holdings = await self._holding_repo.get_by_property(user_id)
        accruals = await self._accrual_repo.list_by_user(user_id)

        current_value = Decimal("0")
        for property_id, (property_tokens, cost) in positions.items():
            holding = holdings.get(property_id)
            if holding is not None and property_tokens > 0:
                current_value += property_tokens * holding.token_price
            else:
                current_value += cost
        current_value = current_value.quantize(CENT, rounding=ROUND_DOWN)

        return DRIPStatsResponse(
            total_reinvested=reinvested,
            tokens_acquired=tokens,
            current_value=current_value,
            extra_earned=current_value - reinvested,
            pending_balance=sum((a.balance for a in accruals), Decimal("0")),
            reinvestment_count=count,
        )

    # ── Commands ──

    async def update_settings(
        self, user_id: UUID, update: DRIPSettingsUpdate, now: datetime
    ) -> DRIPSettings:
        """Upsert the user's settings; omitted fields keep their current value."""
        values = update.model_dump(exclude_unset=True)
        existing = await self._settings_repo.get_by_user(user_id)
        if existing is None:
            values.setdefault("minimum_reinvest_amount", app_settings.DRIP_DEFAULT_MINIMUM_REINVEST)
            values["created_at"] = now
        values["updated_at"] = now

        try:
            saved = await self._settings_repo.upsert(user_id, values)
        except IntegrityError as exc:
            await self._settings_repo.db.rollback()
            logger.warning("IntegrityError saving DRIP settings for user %s: %s", user_id, exc)
            raise ValidationError("DRIP settings violate a database constraint. Check all fields.")

        logger.info(
            "Saved DRIP settings for user %s (enabled=%s, type=%s)",
            user_id,
            saved.is_enabled,
            DripType(saved.drip_type).value,
            extra={"user_id": str(user_id)},
        )
        return saved

    async def update_property_override(
        self, user_id: UUID, property_id: str, update: PropertyOverrideUpdate
    ) -> DRIPPropertySetting:
        """Upsert the override for one holding."""
        values = update.model_dump(exclude_unset=True)
        if "reinvest_to" in values:
            target = (values["reinvest_to"] or "").strip()
            if not target:
                raise ValidationError("reinvest_to must not be empty", field="reinvest_to")
            values["reinvest_to"] = SAME_PROPERTY if target == property_id else target

        saved = await self._override_repo.upsert(user_id, property_id, values)
        logger.info(
            "Saved DRIP override for user %s property %s (enabled=%s, reinvest_to=%s)",
            user_id,
            property_id,
            saved.is_enabled,
            saved.reinvest_to,
            extra={"user_id": str(user_id)},
        )
        return saved

    async def set_custom_allocations(
        self, user_id: UUID, allocations: Sequence[CustomAllocationIn]
    ) -> List[DRIPCustomAllocation]:
        """Replace the user's custom allocation list.  Weights must sum to 100."""
        seen = set()
        for index, allocation in enumerate(allocations):
            if allocation.target_id in seen:
                raise ValidationError(
                    f"Duplicate allocation target '{allocation.target_id}'",
                    field=f"allocations[{index}]",
                )
            seen.add(allocation.target_id)
        validate_percentages([a.allocation_percent for a in allocations])

        rows = [
            DRIPCustomAllocation(
                user_id=user_id,
                target_id=a.target_id,
                allocation_percent=a.allocation_percent,
            )
            for a in allocations
        ]
        saved = await self._custom_repo.replace(user_id, rows)
        logger.info(
            "Saved %d custom DRIP allocation(s) for user %s",
            len(saved),
            user_id,
            extra={"user_id": str(user_id)},
        )
        return saved

    async def process_distribution(
        self, event: DistributionEvent, now: datetime
    ) -> DistributionOutcome:
        """
        Route one distribution through DRIP.

        Returns the decision, the reinvestments released by this event and
        the buckets still below the minimum.  Raises
        :class:`ConfigurationError` when the custom strategy applies without
        saved allocations.
        """
        settings = await self._settings_repo.get_by_user(event.user_id)
        overrides = await self._override_repo.list_by_user(event.user_id)
        custom: List[DRIPCustomAllocation] = []
        if settings is not None and settings.drip_type == DripType.CUSTOM:
            custom = await self._custom_repo.list_by_user(event.user_id)

        decision = resolve_reinvest_target(event, settings, overrides, custom)
        if not decision.reinvest:
            logger.info(
                "Distribution of $%s from %s paid as cash (%s)",
                event.amount,
                event.source_id,
                decision.reason,
                extra={"user_id": str(event.user_id)},
            )
            return DistributionOutcome(
                reinvest=False, strategy=decision.strategy.value, reason=decision.reason
            )

        holdings = await self._holding_repo.get_by_property(event.user_id)
        shares = _split(event, decision, holdings, custom)
        minimum = settings.minimum_reinvest_amount

        reinvestments: List[DRIPTransactionResponse] = []
        pending: List[AccrualResponse] = []
        for target_id, amount in shares:
            if amount <= 0:
                continue
            balance = await self._accrual_repo.add(event.user_id, target_id, amount, now)
            if balance < minimum:
                pending.append(
                    AccrualResponse(
                        target_id=target_id, balance=balance, minimum_reinvest_amount=minimum
                    )
                )
                continue

            holding = holdings.get(target_id)
            price = holding.token_price if holding is not None else None
            transaction = DRIPTransaction(
                user_id=event.user_id,
                source_type=event.category,
                source_id=event.source_id,
                source_amount=event.amount,
                reinvest_property_id=target_id,
                reinvest_amount=balance,
                tokens_purchased=tokens_for(balance, price),
                token_price=price,
                status=TRANSACTION_COMPLETED,
                executed_at=now,
                created_at=now,
            )
            released = await self._accrual_repo.release(
                event.user_id, target_id, balance, transaction, now
            )
            reinvestments.append(DRIPTransactionResponse.model_validate(released))
            logger.info(
                "Reinvested $%s into %s for user %s",
                balance,
                target_id,
                event.user_id,
                extra={"user_id": str(event.user_id)},
            )

        return DistributionOutcome(
            reinvest=True,
            strategy=decision.strategy.value,
            reason=decision.reason,
            reinvestments=reinvestments,
            pending=pending,
        )


def _split(
    event: DistributionEvent,
    decision: ReinvestDecision,
    holdings: Dict[str, Holding],
    custom: Sequence[DRIPCustomAllocation],
) -> List[Tuple[str, Decimal]]:
    """``(target_id, amount)`` pairs for a reinvesting decision."""
    if decision.strategy == ReinvestStrategy.SINGLE:
        return [(decision.target_id, event.amount)]

    if decision.strategy == ReinvestStrategy.SPREAD_PORTFOLIO:
        weights = weights_from_values((h.property_id, h.current_value) for h in holdings.values())
        if not weights:
            # Nothing valued yet: keep the money in the holding that paid it.
            weights = [AllocationTarget(key=event.source_id, percent=HUNDRED)]
    else:
        weights = [
            AllocationTarget(key=c.target_id, percent=c.allocation_percent) for c in custom
        ]
    return [(s.key, s.amount) for s in allocate(event.amount, weights)]
