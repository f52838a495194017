"""
Payout calendar: the 15th and the 30th of each month, with the 30th
falling back to the last day of shorter months.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from ledger.core.config import settings
from ledger.core.time import start_of_day


def payout_days_for_month(year: int, month: int) -> list[date]:
    last_day = calendar.monthrange(year, month)[1]
    days = sorted({min(int(day), last_day) for day in settings.PAYOUT_DAYS})
    return [date(year, month, day) for day in days]


def _shift_month(value: date, months: int) -> date:
    month_index = value.year * 12 + (value.month - 1) + months
    return date(month_index // 12, month_index % 12 + 1, 1)


def is_payout_day(value: date) -> bool:
    return value in payout_days_for_month(value.year, value.month)


def next_payout_date(today: date) -> date:
    """First payout day strictly after ``today``."""
    for candidate in payout_days_for_month(today.year, today.month):
        if candidate > today:
            return candidate
    following = _shift_month(today, 1)
    return payout_days_for_month(following.year, following.month)[0]


def previous_payout_date(value: date) -> date:
    """Last payout day strictly before ``value``."""
    for candidate in reversed(payout_days_for_month(value.year, value.month)):
        if candidate < value:
            return candidate
    preceding = _shift_month(value, -1)
    return payout_days_for_month(preceding.year, preceding.month)[-1]


def payout_period(scheduled_date: date) -> tuple[datetime, datetime]:
    """Half-open ``[previous payout day, scheduled_date)`` window."""
    return start_of_day(previous_payout_date(scheduled_date)), start_of_day(scheduled_date)


def closed_period(run_date: date) -> tuple[datetime, datetime]:
    """
    Latest calendar period that has ended by ``run_date``.

    Any run date, scheduled or manual, maps onto the same fixed windows, so
    bonus awards keyed on the window never overlap.
    """
    end = run_date if is_payout_day(run_date) else previous_payout_date(run_date)
    return payout_period(end)


def current_period(now: datetime) -> tuple[datetime, datetime]:
    return payout_period(next_payout_date(now.date()))


def days_until(today: date, target: date) -> int:
    return max(0, (target - today) // timedelta(days=1))
