from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger.core.errors import DuplicateTransactionError
from ledger.models.earnings import EarningRecord
from ledger.models.enums import EarningStatusEnum


def create_earning(
    db: Session,
    *,
    creator_id: int,
    source_transaction_id: str,
    gross_amount: Decimal,
    commission_rate: Decimal,
    net_amount: Decimal,
    currency: str,
    earned_at: datetime,
    locked_until: datetime,
    hard_deadline: datetime,
    reverses_earning_id: int | None = None,
) -> EarningRecord:
    earning = EarningRecord(
        creator_id=creator_id,
        source_transaction_id=source_transaction_id,
        gross_amount=gross_amount,
        commission_rate=commission_rate,
        net_amount=net_amount,
        currency=currency,
        earned_at=earned_at,
        locked_until=locked_until,
        hard_deadline=hard_deadline,
        status=EarningStatusEnum.LOCKED.value,
        reverses_earning_id=reverses_earning_id,
        version=1,
    )
    db.add(earning)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if get_earning_by_source(db, source_transaction_id=source_transaction_id) is not None:
            raise DuplicateTransactionError(source_transaction_id) from exc
        raise
    db.refresh(earning)
    return earning


def get_earning(db: Session, *, earning_id: int) -> EarningRecord | None:
    return db.query(EarningRecord).filter(EarningRecord.id == earning_id).first()


def get_earning_by_source(db: Session, *, source_transaction_id: str) -> EarningRecord | None:
    return (
        db.query(EarningRecord)
        .filter(EarningRecord.source_transaction_id == source_transaction_id)
        .first()
    )


def list_earnings_for_creator(
    db: Session,
    *,
    creator_id: int,
    statuses: Iterable[str] | None = None,
) -> list[EarningRecord]:
    query = db.query(EarningRecord).filter(EarningRecord.creator_id == creator_id)
    if statuses is not None:
        query = query.filter(EarningRecord.status.in_(list(statuses)))
    return query.order_by(EarningRecord.earned_at.asc(), EarningRecord.id.asc()).all()


def list_earnings_for_batch(db: Session, *, batch_id: int) -> list[EarningRecord]:
    return (
        db.query(EarningRecord)
        .filter(EarningRecord.payout_batch_id == batch_id)
        .order_by(EarningRecord.id.asc())
        .all()
    )


def list_unlockable_earnings(
    db: Session,
    *,
    now: datetime,
    creator_id: int | None = None,
) -> list[EarningRecord]:
    query = db.query(EarningRecord).filter(
        EarningRecord.status == EarningStatusEnum.LOCKED.value,
        or_(EarningRecord.locked_until <= now, EarningRecord.hard_deadline <= now),
    )
    if creator_id is not None:
        query = query.filter(EarningRecord.creator_id == creator_id)
    return query.order_by(EarningRecord.id.asc()).all()


def list_eligible_earnings(
    db: Session,
    *,
    creator_ids: Iterable[int] | None = None,
) -> list[EarningRecord]:
    query = db.query(EarningRecord).filter(EarningRecord.status == EarningStatusEnum.ELIGIBLE.value)
    if creator_ids is not None:
        query = query.filter(EarningRecord.creator_id.in_(list(creator_ids)))
    return query.order_by(
        EarningRecord.creator_id.asc(),
        EarningRecord.earned_at.asc(),
        EarningRecord.id.asc(),
    ).all()


def compare_and_swap_earning(
    db: Session,
    *,
    earning_id: int,
    expected_version: int,
    expected_status: str,
    values: dict[str, Any],
) -> bool:
    """Versioned write. Does not commit; returns False when the row moved on."""
    updates = dict(values)
    updates["version"] = expected_version + 1
    updated = (
        db.query(EarningRecord)
        .filter(
            EarningRecord.id == earning_id,
            EarningRecord.version == expected_version,
            EarningRecord.status == expected_status,
        )
        .update(updates, synchronize_session=False)
    )
    return updated == 1


def sum_gross_for_period(
    db: Session,
    *,
    creator_id: int,
    period_start: datetime,
    period_end: datetime,
    exclude_statuses: Iterable[str] = (EarningStatusEnum.CANCELLED.value,),
) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(EarningRecord.gross_amount), 0))
        .filter(
            EarningRecord.creator_id == creator_id,
            EarningRecord.earned_at >= period_start,
            EarningRecord.earned_at < period_end,
            EarningRecord.status.notin_(list(exclude_statuses)),
        )
        .scalar()
    )
    return Decimal(str(total or 0))


def list_creator_ids_with_sales(
    db: Session,
    *,
    period_start: datetime,
    period_end: datetime,
    creator_ids: Iterable[int] | None = None,
    exclude_statuses: Iterable[str] = (EarningStatusEnum.CANCELLED.value,),
) -> list[int]:
    query = db.query(EarningRecord.creator_id).filter(
        EarningRecord.earned_at >= period_start,
        EarningRecord.earned_at < period_end,
        EarningRecord.status.notin_(list(exclude_statuses)),
    )
    if creator_ids is not None:
        query = query.filter(EarningRecord.creator_id.in_(list(creator_ids)))
    rows = query.distinct().order_by(EarningRecord.creator_id.asc()).all()
    return [row[0] for row in rows]
