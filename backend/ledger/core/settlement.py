"""
Final outcomes for payout batches: confirmation and failure.

Both paths are idempotent. Repeating an outcome a batch already has is a
no-op; asking for the opposite outcome is an invariant violation.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from ledger.core.errors import ConcurrencyConflictError, InvariantViolationError
from ledger.core.lifecycle import transition_batch, transition_earning
from ledger.core.logging import get_structured_logger
from ledger.core.time import normalize_dt, utcnow
from ledger.crud.bonuses import detach_awards, mark_awards_paid
from ledger.crud.earnings import list_earnings_for_batch
from ledger.crud.payouts import get_batch
from ledger.models.enums import BatchStatusEnum, EarningStatusEnum
from ledger.models.payouts import PayoutBatch


logger = get_structured_logger("ledger.settlement")


def _claimed_earnings(db: Session, batch: PayoutBatch):
    return [
        earning
        for earning in list_earnings_for_batch(db, batch_id=batch.id)
        if earning.status == EarningStatusEnum.PENDING_PAYOUT.value
    ]


def _reload(db: Session, batch_id: int) -> PayoutBatch:
    db.expire_all()
    batch = get_batch(db, batch_id=batch_id)
    if batch is None:
        raise InvariantViolationError(f"Payout batch {batch_id} disappeared")
    return batch


def confirm_batch(
    db: Session,
    batch: PayoutBatch,
    *,
    now: datetime | None = None,
    external_payout_id: str | None = None,
) -> bool:
    """Mark the batch paid. Returns False when it already was."""
    now = normalize_dt(now) or utcnow()
    if batch.status == BatchStatusEnum.CONFIRMED.value:
        return False
    if batch.status == BatchStatusEnum.FAILED.value:
        logger.error(
            "payout.batch.confirm_after_failure",
            extra={"batch_id": batch.id, "external_payout_id": external_payout_id},
        )
        raise InvariantViolationError(f"Payout batch {batch.id} already failed; cannot confirm")

    batch_id = batch.id
    values = {"confirmed_at": now, "next_attempt_at": None}
    if external_payout_id and not batch.external_payout_id:
        values["external_payout_id"] = external_payout_id
    if not transition_batch(db, batch, BatchStatusEnum.CONFIRMED, values=values):
        db.rollback()
        current = _reload(db, batch_id)
        if current.status == BatchStatusEnum.CONFIRMED.value:
            return False
        raise ConcurrencyConflictError(f"Payout batch {batch_id} changed during confirmation")

    for earning in _claimed_earnings(db, batch):
        if not transition_earning(db, earning, EarningStatusEnum.PAID, values={"paid_at": now}):
            db.rollback()
            raise ConcurrencyConflictError(f"Earning {earning.id} changed during confirmation")
    mark_awards_paid(db, batch_id=batch_id, paid_at=now)
    db.commit()
    db.refresh(batch)
    logger.info(
        "payout.batch.confirmed",
        extra={
            "batch_id": batch_id,
            "creator_id": batch.creator_id,
            "total_amount": str(batch.total_amount),
            "external_payout_id": batch.external_payout_id,
        },
    )
    return True


def fail_batch(
    db: Session,
    batch: PayoutBatch,
    *,
    reason: str,
    release: bool = True,
    now: datetime | None = None,
) -> bool:
    """
    Mark the batch failed. With ``release`` the claimed earnings go back to
    ELIGIBLE for the next run; otherwise they are marked FAILED. Attached
    bonus awards are detached either way. Returns False when already failed.
    """
    if batch.status == BatchStatusEnum.FAILED.value:
        return False
    if batch.status == BatchStatusEnum.CONFIRMED.value:
        logger.error(
            "payout.batch.fail_after_confirm",
            extra={"batch_id": batch.id, "reason": reason},
        )
        raise InvariantViolationError(f"Payout batch {batch.id} already confirmed; cannot fail")

    batch_id = batch.id
    values = {"last_error": reason, "next_attempt_at": None}
    if not transition_batch(db, batch, BatchStatusEnum.FAILED, values=values):
        db.rollback()
        current = _reload(db, batch_id)
        if current.status == BatchStatusEnum.FAILED.value:
            return False
        raise ConcurrencyConflictError(f"Payout batch {batch_id} changed while failing")

    for earning in _claimed_earnings(db, batch):
        if release:
            swapped = transition_earning(
                db,
                earning,
                EarningStatusEnum.ELIGIBLE,
                values={"payout_batch_id": None},
            )
        else:
            swapped = transition_earning(
                db,
                earning,
                EarningStatusEnum.FAILED,
                values={"cancel_reason": reason},
            )
        if not swapped:
            db.rollback()
            raise ConcurrencyConflictError(f"Earning {earning.id} changed while failing batch")
    detach_awards(db, batch_id=batch_id)
    db.commit()
    db.refresh(batch)
    logger.warning(
        "payout.batch.failed",
        extra={
            "batch_id": batch_id,
            "creator_id": batch.creator_id,
            "reason": reason,
            "released": release,
        },
    )
    return True
