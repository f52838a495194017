"""Read-only views over the ledger for creators and admins."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from ledger.core.bonus import load_tiers, next_tier, select_tier
from ledger.core.clock import advance, is_force_due
from ledger.core.config import settings
from ledger.core.errors import UnknownCreatorError
from ledger.core.money import ZERO, money_sum, to_money
from ledger.core.schedule import current_period, next_payout_date
from ledger.core.time import normalize_dt, start_of_day, utcnow
from ledger.crud.creators import get_creator
from ledger.crud.earnings import list_earnings_for_creator, sum_gross_for_period
from ledger.crud.payouts import list_batches_by_status
from ledger.models.enums import BatchStatusEnum, EarningStatusEnum
from ledger.models.payouts import PayoutBatch

PENDING_BATCH_STATUSES = (BatchStatusEnum.OPEN.value, BatchStatusEnum.SUBMITTED.value)


def _require_creator(db: Session, creator_id: int):
    creator = get_creator(db, creator_id=creator_id)
    if creator is None:
        raise UnknownCreatorError(creator_id)
    return creator


def build_payout_status(db: Session, *, creator_id: int, now: datetime | None = None) -> dict[str, Any]:
    creator = _require_creator(db, creator_id)
    now = normalize_dt(now) or utcnow()
    minimum = to_money(creator.minimum_payout if creator.minimum_payout is not None else settings.MINIMUM_PAYOUT)

    open_earnings = list_earnings_for_creator(
        db,
        creator_id=creator_id,
        statuses=[EarningStatusEnum.LOCKED.value, EarningStatusEnum.ELIGIBLE.value],
    )
    # Evaluated through the clock, so rows the worker has not advanced yet
    # still show up on the right side.
    locked = [e for e in open_earnings if advance(e, now) == EarningStatusEnum.LOCKED.value]
    eligible = [e for e in open_earnings if advance(e, now) == EarningStatusEnum.ELIGIBLE.value]
    pending = list_batches_by_status(db, statuses=PENDING_BATCH_STATUSES, creator_id=creator_id)

    next_date = next_payout_date(now.date())
    run_at = start_of_day(next_date)
    at_run = [e for e in open_earnings if advance(e, run_at) == EarningStatusEnum.ELIGIBLE.value]
    amount_at_run = money_sum(e.net_amount for e in at_run)
    force_due = any(is_force_due(e, run_at) for e in at_run)
    will_include = amount_at_run > ZERO and (force_due or amount_at_run >= minimum)

    return {
        "creator_id": creator_id,
        "locked_amount": money_sum(e.net_amount for e in locked),
        "eligible_amount": money_sum(e.net_amount for e in eligible),
        "pending_amount": money_sum(b.total_amount for b in pending),
        "next_payout_date": next_date,
        "will_include_in_next_run": will_include,
        "minimum_payout": minimum,
    }


def build_bonus_progress(db: Session, *, creator_id: int, now: datetime | None = None) -> dict[str, Any]:
    _require_creator(db, creator_id)
    now = normalize_dt(now) or utcnow()
    period_start, period_end = current_period(now)
    sales = to_money(
        sum_gross_for_period(
            db,
            creator_id=creator_id,
            period_start=period_start,
            period_end=period_end,
        )
    )
    tiers = load_tiers()
    current = select_tier(sales, tiers)
    upcoming = next_tier(sales, tiers)
    if upcoming is None:
        progress = Decimal("100.0")
    else:
        progress = min(Decimal("100.0"), (sales / upcoming.threshold * 100)).quantize(Decimal("0.1"))
        progress = max(progress, Decimal("0.0"))

    return {
        "creator_id": creator_id,
        "period_start": period_start,
        "period_end": period_end,
        "current_period_sales": sales,
        "current_tier": current.tier if current else None,
        "current_tier_bonus": current.bonus_amount if current else ZERO,
        "next_tier_threshold": upcoming.threshold if upcoming else None,
        "progress_to_next_tier": progress,
    }


def list_pending_batches(db: Session) -> list[PayoutBatch]:
    return list_batches_by_status(db, statuses=PENDING_BATCH_STATUSES)
