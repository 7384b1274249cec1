"""
Recurrence calculator — pure scheduling arithmetic for auto-invest plans.

Nothing here reads the clock: every function takes ``now`` explicitly so the
schedule is reproducible in tests and in back-filled scheduler runs.

Month-based periods are always computed from the anchor date's
day-of-month, so a plan anchored on the 31st runs on Jan 31, Feb 29 (clamped),
Mar 31, … rather than drifting to the 29th after February.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Union

from autoinvest.models.plan import Frequency

DateLike = Union[date, datetime]

_DAY_PERIODS = {
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

_MONTH_PERIODS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
}

# Dashboard approximation of a plan's contribution per month.
_MONTHLY_MULTIPLIERS = {
    Frequency.WEEKLY: Decimal("4"),
    Frequency.BIWEEKLY: Decimal("2"),
    Frequency.MONTHLY: Decimal("1"),
    Frequency.QUARTERLY: Decimal("0.33"),
}


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def add_months(d: date, months: int) -> date:
    """Shift ``d`` by whole calendar months, clamping to the target month's last day."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def add_period(frequency: Frequency, d: date, count: int = 1) -> date:
    """Return ``d`` advanced by ``count`` periods of ``frequency``."""
    frequency = Frequency(frequency)
    if frequency in _DAY_PERIODS:
        return d + timedelta(days=_DAY_PERIODS[frequency] * count)
    return add_months(d, _MONTH_PERIODS[frequency] * count)


def compute_next_execution(frequency: Frequency, anchor_date: DateLike, now: DateLike) -> date:
    """
    Next scheduled date of a cadence anchored at ``anchor_date``.

    Returns the earliest ``anchor_date + k * period`` with ``k >= 1`` that is
    strictly after ``now``.  The result is therefore always strictly after
    the anchor, and missed cycles (a late scheduler run) are skipped rather
    than replayed.
    """
    frequency = Frequency(frequency)
    anchor = _as_date(anchor_date)
    today = _as_date(now)

    if frequency in _DAY_PERIODS:
        period = _DAY_PERIODS[frequency]
        elapsed = (today - anchor).days
        count = 1 if elapsed < 0 else elapsed // period + 1
        return anchor + timedelta(days=period * count)

    months = _MONTH_PERIODS[frequency]
    month_diff = (today.year - anchor.year) * 12 + (today.month - anchor.month)
    count = max(1, month_diff // months)
    candidate = add_months(anchor, months * count)
    while candidate <= today:
        count += 1
        candidate = add_months(anchor, months * count)
    return candidate


def compute_resume_date(frequency: Frequency, now: DateLike) -> date:
    """
    First execution date of a resumed plan: the day after ``now``.

    The historical cadence phase is not preserved; the resumed plan's
    schedule is re-anchored on this date.
    """
    Frequency(frequency)
    return _as_date(now) + timedelta(days=1)


def monthly_equivalent(frequency: Frequency, amount: Decimal) -> Decimal:
    """Approximate monthly contribution of a plan, as shown on the dashboard."""
    return amount * _MONTHLY_MULTIPLIERS[Frequency(frequency)]
