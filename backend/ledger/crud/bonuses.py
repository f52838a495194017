from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger.models.bonuses import BonusAward
from ledger.models.enums import BonusAwardStatusEnum


def get_award_for_period(
    db: Session,
    *,
    creator_id: int,
    period_start: datetime,
    period_end: datetime,
) -> BonusAward | None:
    return (
        db.query(BonusAward)
        .filter(
            BonusAward.creator_id == creator_id,
            BonusAward.period_start == period_start,
            BonusAward.period_end == period_end,
        )
        .first()
    )


def create_award(
    db: Session,
    *,
    creator_id: int,
    period_start: datetime,
    period_end: datetime,
    tier: int,
    bonus_amount: Decimal,
    sales_volume: Decimal,
    awarded_at: datetime,
) -> BonusAward:
    award = BonusAward(
        creator_id=creator_id,
        period_start=period_start,
        period_end=period_end,
        tier=tier,
        bonus_amount=bonus_amount,
        sales_volume=sales_volume,
        awarded_at=awarded_at,
        status=BonusAwardStatusEnum.EARNED.value,
    )
    db.add(award)
    try:
        db.commit()
    except IntegrityError:
        # Another run awarded this period first; keep theirs.
        db.rollback()
        existing = get_award_for_period(
            db,
            creator_id=creator_id,
            period_start=period_start,
            period_end=period_end,
        )
        if existing is None:
            raise
        return existing
    db.refresh(award)
    return award


def list_unattached_awards(db: Session, *, creator_id: int) -> list[BonusAward]:
    return (
        db.query(BonusAward)
        .filter(
            BonusAward.creator_id == creator_id,
            BonusAward.status == BonusAwardStatusEnum.EARNED.value,
            BonusAward.payout_batch_id.is_(None),
        )
        .order_by(BonusAward.period_start.asc(), BonusAward.id.asc())
        .all()
    )


def list_awards_for_batch(db: Session, *, batch_id: int) -> list[BonusAward]:
    return db.query(BonusAward).filter(BonusAward.payout_batch_id == batch_id).all()


def list_awards_for_creator(db: Session, *, creator_id: int) -> list[BonusAward]:
    return (
        db.query(BonusAward)
        .filter(BonusAward.creator_id == creator_id)
        .order_by(BonusAward.period_start.desc())
        .all()
    )


def sum_awards(db: Session, *, status: str | None = None) -> float:
    query = db.query(func.coalesce(func.sum(BonusAward.bonus_amount), 0))
    if status is not None:
        query = query.filter(BonusAward.status == status)
    total = query.scalar()
    try:
        return float(total or 0)
    except (TypeError, ValueError):
        return 0.0


def tier_distribution(db: Session) -> dict[int, int]:
    rows = db.query(BonusAward.tier, func.count(BonusAward.id)).group_by(BonusAward.tier).all()
    return {int(tier): int(count) for tier, count in rows}


def sum_sales_volume(db: Session) -> float:
    total = db.query(func.coalesce(func.sum(BonusAward.sales_volume), 0)).scalar()
    return float(total or 0)


def count_awards(db: Session) -> int:
    return int(db.query(func.count(BonusAward.id)).scalar() or 0)


def list_recent_awards(db: Session, *, limit: int = 10) -> list[BonusAward]:
    return (
        db.query(BonusAward)
        .order_by(BonusAward.awarded_at.desc(), BonusAward.id.desc())
        .limit(limit)
        .all()
    )


def attach_award(db: Session, *, award_id: int, batch_id: int) -> bool:
    """Attach an unattached award to a batch. Does not commit."""
    updated = (
        db.query(BonusAward)
        .filter(
            BonusAward.id == award_id,
            BonusAward.status == BonusAwardStatusEnum.EARNED.value,
            BonusAward.payout_batch_id.is_(None),
        )
        .update({"payout_batch_id": batch_id}, synchronize_session=False)
    )
    return updated == 1


def detach_awards(db: Session, *, batch_id: int) -> int:
    return (
        db.query(BonusAward)
        .filter(
            BonusAward.payout_batch_id == batch_id,
            BonusAward.status == BonusAwardStatusEnum.EARNED.value,
        )
        .update({"payout_batch_id": None}, synchronize_session=False)
    )


def mark_awards_paid(db: Session, *, batch_id: int, paid_at: datetime) -> int:
    return (
        db.query(BonusAward)
        .filter(
            BonusAward.payout_batch_id == batch_id,
            BonusAward.status == BonusAwardStatusEnum.EARNED.value,
        )
        .update(
            {"status": BonusAwardStatusEnum.PAID.value, "paid_at": paid_at},
            synchronize_session=False,
        )
    )
