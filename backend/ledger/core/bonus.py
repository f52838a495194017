"""
Bonus tiers.

Bonuses are non-cumulative: a period earns the single highest tier whose
threshold its commissionable sales reach, never the sum of lower tiers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from ledger.core.config import settings
from ledger.core.errors import UnknownCreatorError, ValidationError
from ledger.core.logging import get_structured_logger
from ledger.core.money import to_money
from ledger.core.time import normalize_dt, utcnow
from ledger.crud.bonuses import (
    count_awards,
    create_award,
    get_award_for_period,
    list_recent_awards,
    sum_awards,
    sum_sales_volume,
    tier_distribution,
)
from ledger.crud.creators import get_creator
from ledger.crud.earnings import list_creator_ids_with_sales, sum_gross_for_period
from ledger.models.bonuses import BonusAward
from ledger.models.enums import BonusAwardStatusEnum


logger = get_structured_logger("ledger.bonus")


@dataclass(frozen=True)
class BonusTier:
    tier: int
    threshold: Decimal
    bonus_amount: Decimal


def load_tiers(raw: Iterable[dict] | None = None) -> list[BonusTier]:
    rows = settings.BONUS_TIERS if raw is None else raw
    tiers = []
    for row in rows:
        try:
            tiers.append(
                BonusTier(
                    tier=int(row["tier"]),
                    threshold=to_money(row["threshold"]),
                    bonus_amount=to_money(row["bonus_amount"]),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid bonus tier: {row!r}") from exc
    return sorted(tiers, key=lambda t: t.threshold)


def select_tier(amount: Decimal, tiers: list[BonusTier]) -> Optional[BonusTier]:
    selected = None
    for tier in tiers:
        if amount >= tier.threshold:
            selected = tier
    return selected


def next_tier(amount: Decimal, tiers: list[BonusTier]) -> Optional[BonusTier]:
    for tier in tiers:
        if amount < tier.threshold:
            return tier
    return None


def compute_award(
    db: Session,
    *,
    creator_id: int,
    period_start: datetime,
    period_end: datetime,
    tiers: list[BonusTier] | None = None,
    now: datetime | None = None,
) -> Optional[BonusAward]:
    """Award the period's bonus once. Returns None below the lowest tier."""
    if get_creator(db, creator_id=creator_id) is None:
        raise UnknownCreatorError(creator_id)
    existing = get_award_for_period(
        db,
        creator_id=creator_id,
        period_start=period_start,
        period_end=period_end,
    )
    if existing is not None:
        return existing

    sales = sum_gross_for_period(
        db,
        creator_id=creator_id,
        period_start=period_start,
        period_end=period_end,
    )
    tier = select_tier(sales, tiers if tiers is not None else load_tiers())
    if tier is None:
        return None

    award = create_award(
        db,
        creator_id=creator_id,
        period_start=period_start,
        period_end=period_end,
        tier=tier.tier,
        bonus_amount=tier.bonus_amount,
        sales_volume=to_money(sales),
        awarded_at=normalize_dt(now) or utcnow(),
    )
    logger.info(
        "bonus.awarded",
        extra={
            "creator_id": creator_id,
            "tier": award.tier,
            "bonus_amount": str(award.bonus_amount),
            "sales_volume": str(award.sales_volume),
        },
    )
    return award


def award_period_bonuses(
    db: Session,
    *,
    period_start: datetime,
    period_end: datetime,
    creator_ids: list[int] | None = None,
    tiers: list[BonusTier] | None = None,
    now: datetime | None = None,
) -> list[BonusAward]:
    """Award the period to every creator with sales in it, payout candidate or not."""
    awards = []
    for creator_id in list_creator_ids_with_sales(
        db,
        period_start=period_start,
        period_end=period_end,
        creator_ids=creator_ids,
    ):
        award = compute_award(
            db,
            creator_id=creator_id,
            period_start=period_start,
            period_end=period_end,
            tiers=tiers,
            now=now,
        )
        if award is not None:
            awards.append(award)
    return awards


def build_bonus_statistics(db: Session, *, recent_limit: int = 10) -> dict[str, Any]:
    distribution = tier_distribution(db)
    return {
        "total_awarded": sum_awards(db),
        "total_paid": sum_awards(db, status=BonusAwardStatusEnum.PAID.value),
        "total_outstanding": sum_awards(db, status=BonusAwardStatusEnum.EARNED.value),
        "total_sales_volume": sum_sales_volume(db),
        "award_count": count_awards(db),
        "tier_distribution": [
            {"tier": tier, "count": distribution[tier]} for tier in sorted(distribution)
        ],
        "recent_awards": list_recent_awards(db, limit=recent_limit),
    }
