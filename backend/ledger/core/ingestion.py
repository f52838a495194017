"""
Earning ingestion and reversal.

Ingestion is idempotent on ``source_transaction_id``: a replayed event
returns the record created the first time without touching it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ledger.core.clock import schedule_for
from ledger.core.commission import resolve_commission_rate
from ledger.core.config import settings
from ledger.core.errors import ConcurrencyConflictError, DuplicateTransactionError, ValidationError
from ledger.core.lifecycle import transition_earning
from ledger.core.logging import get_structured_logger
from ledger.core.metrics import record_ingestion
from ledger.core.money import apply_rate, to_money
from ledger.core.time import normalize_dt, utcnow
from ledger.crud.earnings import create_earning, get_earning_by_source
from ledger.models.earnings import EarningRecord
from ledger.models.enums import EarningStatusEnum


logger = get_structured_logger("ledger.ingestion")

REVERSAL_SUFFIX = ":reversal"
MAX_REVERSAL_ATTEMPTS = 3


@dataclass
class TransactionEvent:
    source_transaction_id: str
    creator_id: int
    gross_amount: Decimal
    occurred_at: datetime
    currency: str = "USD"


@dataclass
class ReversalOutcome:
    earning: EarningRecord
    action: str  # cancelled|adjusted|noop
    adjustment: Optional[EarningRecord] = None


def _validate(event: TransactionEvent) -> tuple[str, Decimal, str, datetime]:
    source_id = (event.source_transaction_id or "").strip()
    if not source_id:
        raise ValidationError("source_transaction_id is required")
    try:
        gross = to_money(event.gross_amount)
    except (ArithmeticError, ValueError) as exc:
        raise ValidationError(f"Invalid gross_amount: {event.gross_amount!r}") from exc
    if not gross.is_finite() or gross <= 0:
        raise ValidationError("gross_amount must be positive")
    currency = (event.currency or "").strip().upper()
    if currency not in settings.ALLOWED_CURRENCIES:
        raise ValidationError(f"Unsupported currency: {event.currency}")
    if event.occurred_at is None:
        raise ValidationError("occurred_at is required")
    return source_id, gross, currency, normalize_dt(event.occurred_at)


def ingest_transaction(db: Session, event: TransactionEvent) -> tuple[EarningRecord, bool]:
    """Record an earning. Returns ``(record, created)``."""
    try:
        source_id, gross, currency, occurred_at = _validate(event)
    except ValidationError:
        record_ingestion("rejected")
        raise

    existing = get_earning_by_source(db, source_transaction_id=source_id)
    if existing is not None:
        record_ingestion("duplicate")
        return existing, False

    rate = resolve_commission_rate(db, creator_id=event.creator_id, at_time=occurred_at)
    locked_until, hard_deadline = schedule_for(occurred_at)
    try:
        earning = create_earning(
            db,
            creator_id=event.creator_id,
            source_transaction_id=source_id,
            gross_amount=gross,
            commission_rate=rate,
            net_amount=apply_rate(gross, rate),
            currency=currency,
            earned_at=occurred_at,
            locked_until=locked_until,
            hard_deadline=hard_deadline,
        )
    except DuplicateTransactionError:
        # Lost an insert race to a concurrent delivery of the same event.
        record_ingestion("duplicate")
        return get_earning_by_source(db, source_transaction_id=source_id), False

    record_ingestion("created")
    logger.info(
        "earning.ingested",
        extra={
            "earning_id": earning.id,
            "creator_id": earning.creator_id,
            "source_transaction_id": source_id,
            "net_amount": str(earning.net_amount),
            "commission_rate": str(rate),
        },
    )
    return earning, True


def _create_adjustment(db: Session, original: EarningRecord, now: datetime) -> EarningRecord:
    source_id = f"{original.source_transaction_id}{REVERSAL_SUFFIX}"
    existing = get_earning_by_source(db, source_transaction_id=source_id)
    if existing is not None:
        return existing
    locked_until, hard_deadline = schedule_for(now)
    try:
        return create_earning(
            db,
            creator_id=original.creator_id,
            source_transaction_id=source_id,
            gross_amount=-to_money(original.gross_amount),
            commission_rate=original.commission_rate,
            net_amount=-to_money(original.net_amount),
            currency=original.currency,
            earned_at=now,
            locked_until=locked_until,
            hard_deadline=hard_deadline,
            reverses_earning_id=original.id,
        )
    except DuplicateTransactionError:
        return get_earning_by_source(db, source_transaction_id=source_id)


def reverse_earning(
    db: Session,
    *,
    source_transaction_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> ReversalOutcome:
    """
    Undo a transaction (refund or chargeback).

    Unpaid earnings are cancelled outright. Once an earning is claimed or
    paid, it is left untouched and a negative adjustment earning is booked
    against the creator's next payout instead.
    """
    now = normalize_dt(now) or utcnow()
    for _ in range(MAX_REVERSAL_ATTEMPTS):
        earning = get_earning_by_source(db, source_transaction_id=source_transaction_id)
        if earning is None:
            raise ValidationError(f"Unknown transaction: {source_transaction_id}")
        if earning.reverses_earning_id is not None:
            raise ValidationError("Adjustment earnings cannot be reversed")

        status = earning.status
        if status in (EarningStatusEnum.CANCELLED.value, EarningStatusEnum.FAILED.value):
            return ReversalOutcome(earning=earning, action="noop")

        if status in (EarningStatusEnum.LOCKED.value, EarningStatusEnum.ELIGIBLE.value):
            cancelled = transition_earning(
                db,
                earning,
                EarningStatusEnum.CANCELLED,
                values={"cancel_reason": reason or "reversed"},
            )
            if not cancelled:
                # Claimed in the meantime; re-read and take the adjustment path.
                db.rollback()
                continue
            db.commit()
            db.refresh(earning)
            logger.info(
                "earning.reversed",
                extra={"earning_id": earning.id, "action": "cancelled", "reason": reason},
            )
            return ReversalOutcome(earning=earning, action="cancelled")

        adjustment = _create_adjustment(db, earning, now)
        logger.info(
            "earning.reversed",
            extra={
                "earning_id": earning.id,
                "action": "adjusted",
                "adjustment_id": adjustment.id,
                "reason": reason,
            },
        )
        return ReversalOutcome(earning=earning, action="adjusted", adjustment=adjustment)

    raise ConcurrencyConflictError(f"Could not reverse {source_transaction_id}; it kept changing")
