"""
DRIP resolver — decides whether a distribution is reinvested and where.

Resolution order:

1. Global switch and per-category switches (``reinvest_equity_dividends``
   etc.).  Off → paid out as cash.
2. Per-holding override for the holding that produced the distribution:
   disabled → cash; ``reinvest_to`` naming a holding → that holding.
3. The user's ``drip_type``: the source holding, the whole portfolio by
   value share, or the saved custom allocation list.

Pure: settings, overrides and custom allocations are passed in.  Spreading
across holdings and the minimum-threshold accrual happen in
:class:`autoinvest.services.drip_service.DripService`.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence

from autoinvest.core.exceptions import ConfigurationError
from autoinvest.models.drip import (
    SAME_PROPERTY,
    DistributionCategory,
    DripType,
    DRIPCustomAllocation,
    DRIPPropertySetting,
    DRIPSettings,
)


class Distribution(Protocol):
    """What the resolver needs to know about a distribution event."""

    source_id: str
    category: DistributionCategory


class ReinvestStrategy(str, Enum):
    CASH = "cash"
    SINGLE = "single"
    SPREAD_PORTFOLIO = "spread_portfolio"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ReinvestDecision:
    """
    Outcome of resolution.

    ``target_id`` is set only for :attr:`ReinvestStrategy.SINGLE`; spread and
    custom decisions name several targets that are worked out later.
    """

    reinvest: bool
    strategy: ReinvestStrategy
    target_id: Optional[str] = None
    reason: str = ""


def _cash(reason: str) -> ReinvestDecision:
    return ReinvestDecision(reinvest=False, strategy=ReinvestStrategy.CASH, reason=reason)


def resolve_reinvest_target(
    event: Distribution,
    settings: Optional[DRIPSettings],
    property_overrides: Iterable[DRIPPropertySetting],
    custom_allocations: Optional[Sequence[DRIPCustomAllocation]] = None,
) -> ReinvestDecision:
    """
    Resolve the reinvestment decision for ``event``.

    Raises :class:`ConfigurationError` when the ``custom`` strategy applies
    but no custom allocation list has been saved.
    """
    if settings is None or not settings.is_enabled:
        return _cash("drip_disabled")

    category = DistributionCategory(event.category)
    if not settings.reinvests(category):
        return _cash(f"{category.value}_not_reinvested")

    override = next(
        (o for o in property_overrides if o.property_id == event.source_id), None
    )
    if override is not None:
        if not override.is_enabled:
            return _cash("holding_disabled")
        if override.reinvest_to and override.reinvest_to != SAME_PROPERTY:
            return ReinvestDecision(
                reinvest=True,
                strategy=ReinvestStrategy.SINGLE,
                target_id=override.reinvest_to,
                reason="holding_override",
            )

    drip_type = DripType(settings.drip_type)
    if drip_type == DripType.SAME_PROPERTY:
        return ReinvestDecision(
            reinvest=True,
            strategy=ReinvestStrategy.SINGLE,
            target_id=event.source_id,
            reason="same_property",
        )
    if drip_type == DripType.SPREAD_PORTFOLIO:
        return ReinvestDecision(
            reinvest=True, strategy=ReinvestStrategy.SPREAD_PORTFOLIO, reason="spread_portfolio"
        )

    if not custom_allocations:
        raise ConfigurationError(
            "DRIP is set to a custom allocation but no custom allocations are saved; "
            "add allocations or choose another reinvestment strategy"
        )
    return ReinvestDecision(reinvest=True, strategy=ReinvestStrategy.CUSTOM, reason="custom")
