"""
Allocation engine — splits a contribution across weighted targets.

Amounts are ``Decimal`` throughout.  Each bucket is rounded down to the cent
and the rounding remainder is added to the bucket with the largest weight
(the first one on ties), so the shares always add up to the input total
exactly.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from autoinvest.core.exceptions import InvalidAllocationError

HUNDRED = Decimal("100")
PERCENT_TOLERANCE = Decimal("0.01")
CENT = Decimal("0.01")
TOKEN_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class AllocationTarget:
    """A target key with its weight in percent."""

    key: str
    percent: Decimal


@dataclass(frozen=True)
class AllocationShare:
    key: str
    percent: Decimal
    amount: Decimal


def validate_percentages(percents: Iterable[Decimal], field: str = "allocations") -> Decimal:
    """
    Check that each weight is in ``(0, 100]`` and that they sum to 100 ± 0.01.

    Returns the sum.  Raises :class:`InvalidAllocationError` otherwise; an
    off-total set is rejected, never normalised.
    """
    values = [Decimal(str(p)) for p in percents]
    if not values:
        raise InvalidAllocationError("At least one allocation is required", field=field)
    for value in values:
        if value <= 0 or value > HUNDRED:
            raise InvalidAllocationError(
                f"Allocation percent must be greater than 0 and at most 100 (got {value})",
                field=field,
            )
    total = sum(values, Decimal("0"))
    if abs(total - HUNDRED) > PERCENT_TOLERANCE:
        raise InvalidAllocationError(
            f"Allocation percentages must sum to 100 (got {total})", field=field
        )
    return total


def allocate(total_amount: Decimal, allocations: Sequence[AllocationTarget]) -> List[AllocationShare]:
    """
    Split ``total_amount`` across ``allocations`` by percent, preserving order.

    Raises :class:`InvalidAllocationError` for a negative total or an invalid
    weight set.
    """
    total = Decimal(str(total_amount))
    if total < 0:
        raise InvalidAllocationError("Amount to allocate must not be negative", field="amount")
    validate_percentages([a.percent for a in allocations])

    amounts = [
        (total * Decimal(str(a.percent)) / HUNDRED).quantize(CENT, rounding=ROUND_DOWN)
        for a in allocations
    ]
    remainder = total - sum(amounts, Decimal("0"))
    if remainder:
        largest = max(range(len(allocations)), key=lambda i: Decimal(str(allocations[i].percent)))
        amounts[largest] += remainder

    return [
        AllocationShare(key=a.key, percent=Decimal(str(a.percent)), amount=amount)
        for a, amount in zip(allocations, amounts)
    ]


def tokens_for(amount: Decimal, token_price: Optional[Decimal]) -> Optional[Decimal]:
    """Token quantity bought by ``amount``, rounded down to 4 places; ``None`` without a price."""
    if token_price is None or token_price <= 0:
        return None
    return (amount / token_price).quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)


def weights_from_values(values: Iterable[Tuple[str, Decimal]]) -> List[AllocationTarget]:
    """
    Turn ``(key, value)`` pairs into percentage weights by value share.

    Non-positive values are dropped.  Returns an empty list when nothing
    has value.
    """
    positive = [(key, Decimal(str(value))) for key, value in values if value and value > 0]
    total = sum((value for _, value in positive), Decimal("0"))
    if total <= 0:
        return []
    return [AllocationTarget(key=key, percent=value * HUNDRED / total) for key, value in positive]
