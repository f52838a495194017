from __future__ import annotations

from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    # Naive UTC, matching how DateTime columns are stored.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_dt(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min)
