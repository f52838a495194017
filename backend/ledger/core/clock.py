"""
Eligibility clock.

``advance`` is a pure function of an earning's timestamps and the current
time. ``advance_ledger`` is the only place that persists its result.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ledger.core.config import settings
from ledger.core.lifecycle import transition_earning
from ledger.core.logging import get_structured_logger
from ledger.core.time import normalize_dt, utcnow
from ledger.crud.earnings import list_unlockable_earnings
from ledger.models.enums import EarningStatusEnum


logger = get_structured_logger("ledger.clock")


def schedule_for(earned_at: datetime) -> tuple[datetime, datetime]:
    """Return ``(locked_until, hard_deadline)`` for an earning timestamp."""
    earned_at = normalize_dt(earned_at)
    locked_until = earned_at + timedelta(days=settings.LOCK_PERIOD_DAYS)
    hard_deadline = earned_at + timedelta(days=settings.HARD_DEADLINE_DAYS)
    return locked_until, hard_deadline


def eligible_at(record) -> datetime:
    return min(normalize_dt(record.locked_until), normalize_dt(record.hard_deadline))


def is_force_due(record, now: datetime) -> bool:
    return normalize_dt(now) >= normalize_dt(record.hard_deadline)


def advance(record, now: datetime) -> str:
    if record.status == EarningStatusEnum.LOCKED.value and normalize_dt(now) >= eligible_at(record):
        return EarningStatusEnum.ELIGIBLE.value
    return record.status


def advance_ledger(
    db: Session,
    *,
    now: datetime | None = None,
    creator_id: int | None = None,
) -> int:
    now = normalize_dt(now) or utcnow()
    advanced = 0
    for earning in list_unlockable_earnings(db, now=now, creator_id=creator_id):
        if advance(earning, now) != EarningStatusEnum.ELIGIBLE.value:
            continue
        # A lost race means someone else already moved it.
        if transition_earning(db, earning, EarningStatusEnum.ELIGIBLE):
            advanced += 1
    db.commit()
    if advanced:
        logger.info("earning.unlocked", extra={"count": advanced, "creator_id": creator_id})
    return advanced
