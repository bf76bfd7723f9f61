"""
Billing Cycle Dates

Resolves the bucket boundaries of a usage section from its billing period
and the subscription's bill cycle day.
"""

import calendar
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterator

from .base import BillingPeriod, CatalogError


_DAY_BASED_PERIODS = {
    BillingPeriod.DAILY: 1,
    BillingPeriod.WEEKLY: 7,
    BillingPeriod.BIWEEKLY: 14,
    BillingPeriod.THIRTY_DAYS: 30,
}

_MONTH_BASED_PERIODS = {
    BillingPeriod.MONTHLY: 1,
    BillingPeriod.QUARTERLY: 3,
    BillingPeriod.BIANNUAL: 6,
    BillingPeriod.ANNUAL: 12,
}


def to_local_date(instant: datetime, tz: tzinfo) -> date:
    """Convert an instant to the calendar date seen by the account."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(tz).date()


def _on_cycle_day(year: int, month: int, bill_cycle_day: int) -> date:
    # Short months clamp the cycle day to their last day
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(bill_cycle_day, last_day))


def _plus_months(year: int, month: int, months: int, bill_cycle_day: int) -> date:
    index = year * 12 + (month - 1) + months
    return _on_cycle_day(index // 12, index % 12 + 1, bill_cycle_day)


def first_billing_cycle_date(
    start: date,
    bill_cycle_day: int,
    billing_period: BillingPeriod,
) -> date:
    """
    First bucket boundary strictly after ``start``.

    Day-based periods count from ``start``. Month-based periods align on the
    bill cycle day, so the first bucket may be shorter than a full period.
    """
    if billing_period in _DAY_BASED_PERIODS:
        return start + timedelta(days=_DAY_BASED_PERIODS[billing_period])

    months = _MONTH_BASED_PERIODS.get(billing_period)
    if months is None:
        raise CatalogError(f"Unsupported billing period: {billing_period}")
    if not 1 <= bill_cycle_day <= 31:
        raise ValueError(f"Bill cycle day out of range: {bill_cycle_day}")

    candidate = _on_cycle_day(start.year, start.month, bill_cycle_day)
    if candidate < start:
        candidate = _plus_months(candidate.year, candidate.month, 1, bill_cycle_day)
    elif candidate == start:
        candidate = _plus_months(candidate.year, candidate.month, months, bill_cycle_day)
    return candidate


def billing_cycle_dates(
    start: date,
    bill_cycle_day: int,
    billing_period: BillingPeriod,
) -> Iterator[date]:
    """Yield every bucket boundary after ``start``, in order. Never ends."""
    first = first_billing_cycle_date(start, bill_cycle_day, billing_period)
    yield first

    step = 1
    if billing_period in _DAY_BASED_PERIODS:
        days = _DAY_BASED_PERIODS[billing_period]
        while True:
            yield first + timedelta(days=days * step)
            step += 1

    months = _MONTH_BASED_PERIODS[billing_period]
    while True:
        yield _plus_months(first.year, first.month, months * step, bill_cycle_day)
        step += 1
