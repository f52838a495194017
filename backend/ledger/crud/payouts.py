from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.orm import Session

from ledger.models.enums import BatchStatusEnum
from ledger.models.payouts import PayoutBatch


def get_batch(db: Session, *, batch_id: int) -> PayoutBatch | None:
    return db.query(PayoutBatch).filter(PayoutBatch.id == batch_id).first()


def get_batch_by_idempotency_key(db: Session, *, idempotency_key: str) -> PayoutBatch | None:
    return db.query(PayoutBatch).filter(PayoutBatch.idempotency_key == idempotency_key).first()


def get_batch_by_external_id(db: Session, *, external_payout_id: str) -> PayoutBatch | None:
    return (
        db.query(PayoutBatch)
        .filter(PayoutBatch.external_payout_id == external_payout_id)
        .first()
    )


def list_batches_for_creator(db: Session, *, creator_id: int) -> list[PayoutBatch]:
    return (
        db.query(PayoutBatch)
        .filter(PayoutBatch.creator_id == creator_id)
        .order_by(PayoutBatch.scheduled_date.desc(), PayoutBatch.id.desc())
        .all()
    )


def list_batches_by_status(
    db: Session,
    *,
    statuses: Iterable[str],
    creator_id: int | None = None,
) -> list[PayoutBatch]:
    query = db.query(PayoutBatch).filter(PayoutBatch.status.in_(list(statuses)))
    if creator_id is not None:
        query = query.filter(PayoutBatch.creator_id == creator_id)
    return query.order_by(PayoutBatch.scheduled_date.asc(), PayoutBatch.id.asc()).all()


def list_due_open_batches(db: Session, *, now: datetime, limit: int = 100) -> list[PayoutBatch]:
    return (
        db.query(PayoutBatch)
        .filter(
            PayoutBatch.status == BatchStatusEnum.OPEN.value,
            PayoutBatch.next_attempt_at.isnot(None),
            PayoutBatch.next_attempt_at <= now,
        )
        .order_by(PayoutBatch.next_attempt_at.asc(), PayoutBatch.id.asc())
        .limit(limit)
        .all()
    )


def compare_and_swap_batch(
    db: Session,
    *,
    batch_id: int,
    expected_version: int,
    expected_statuses: Iterable[str],
    values: dict[str, Any],
) -> bool:
    """Versioned write. Does not commit; returns False when the row moved on."""
    updates = dict(values)
    updates["version"] = expected_version + 1
    updated = (
        db.query(PayoutBatch)
        .filter(
            PayoutBatch.id == batch_id,
            PayoutBatch.version == expected_version,
            PayoutBatch.status.in_(list(expected_statuses)),
        )
        .update(updates, synchronize_session=False)
    )
    return updated == 1
