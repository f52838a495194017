import os
from datetime import date, datetime

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from ledger.core.schedule import (  # noqa: E402
    closed_period,
    is_payout_day,
    next_payout_date,
    payout_days_for_month,
    payout_period,
    previous_payout_date,
)


def test_payout_days_fall_back_to_month_end():
    assert payout_days_for_month(2026, 1) == [date(2026, 1, 15), date(2026, 1, 30)]
    assert payout_days_for_month(2026, 2) == [date(2026, 2, 15), date(2026, 2, 28)]
    assert payout_days_for_month(2024, 2) == [date(2024, 2, 15), date(2024, 2, 29)]


def test_next_payout_date_is_strictly_after_today():
    assert next_payout_date(date(2026, 1, 1)) == date(2026, 1, 15)
    assert next_payout_date(date(2026, 1, 15)) == date(2026, 1, 30)
    assert next_payout_date(date(2026, 1, 30)) == date(2026, 2, 15)
    assert next_payout_date(date(2026, 1, 31)) == date(2026, 2, 15)
    assert next_payout_date(date(2026, 2, 20)) == date(2026, 2, 28)
    assert next_payout_date(date(2026, 12, 31)) == date(2027, 1, 15)


def test_previous_payout_date_wraps_months_and_years():
    assert previous_payout_date(date(2026, 3, 15)) == date(2026, 2, 28)
    assert previous_payout_date(date(2026, 1, 15)) == date(2025, 12, 30)
    assert previous_payout_date(date(2026, 1, 31)) == date(2026, 1, 30)


def test_payout_period_is_half_open_window_between_runs():
    start, end = payout_period(date(2026, 1, 30))
    assert start == datetime(2026, 1, 15)
    assert end == datetime(2026, 1, 30)


def test_is_payout_day():
    assert is_payout_day(date(2026, 2, 28))
    assert is_payout_day(date(2026, 4, 30))
    assert not is_payout_day(date(2026, 3, 31))
    assert not is_payout_day(date(2026, 1, 16))


def test_closed_period_maps_any_run_date_to_a_finished_window():
    assert closed_period(date(2026, 1, 22)) == (datetime(2025, 12, 30), datetime(2026, 1, 15))
    assert closed_period(date(2026, 1, 15)) == (datetime(2025, 12, 30), datetime(2026, 1, 15))
    assert closed_period(date(2026, 1, 30)) == (datetime(2026, 1, 15), datetime(2026, 1, 30))
    assert closed_period(date(2026, 2, 28)) == (datetime(2026, 2, 15), datetime(2026, 2, 28))
    assert closed_period(date(2026, 2, 1)) == closed_period(date(2026, 1, 30))
