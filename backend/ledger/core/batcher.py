"""
Payout batching.

A run turns each creator's ELIGIBLE earnings into at most one payout batch
per scheduled date. Claims are committed before the provider is called, so
no database transaction or lock is held across the network.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from time import monotonic
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ledger.core.bonus import award_period_bonuses
from ledger.core.clock import advance_ledger, is_force_due
from ledger.core.config import settings
from ledger.core.errors import (
    ConcurrencyConflictError,
    ExternalProviderError,
    LedgerError,
    UnknownCreatorError,
    ValidationError,
)
from ledger.core.lifecycle import swap_earning, transition_batch, update_batch_in_place
from ledger.core.logging import get_structured_logger
from ledger.core.metrics import (
    record_batch_created,
    record_batch_run,
    record_cas_conflict,
    record_submission,
)
from ledger.core.money import ZERO, money_sum, to_money
from ledger.core.schedule import closed_period
from ledger.core.settlement import fail_batch
from ledger.core.time import normalize_dt, utcnow
from ledger.crud.bonuses import attach_award, get_award_for_period, list_unattached_awards
from ledger.crud.creators import get_creator
from ledger.crud.earnings import list_eligible_earnings
from ledger.crud.payouts import get_batch, get_batch_by_idempotency_key, list_due_open_batches
from ledger.disbursement.base import PayoutDisbursementAdapter, PayoutInstruction
from ledger.models.creators import Creator
from ledger.models.earnings import EarningRecord
from ledger.models.enums import BatchStatusEnum, CreatorStatusEnum, EarningStatusEnum, PayoutReasonEnum
from ledger.models.payouts import PayoutBatch


logger = get_structured_logger("ledger.batcher")


@dataclass
class PayoutCandidate:
    creator_id: int
    earnings: list[EarningRecord]
    eligible_amount: Decimal
    minimum_payout: Decimal
    force_due: bool
    # Versions read at selection time; the claim only succeeds against these.
    versions: dict[int, int] = field(default_factory=dict)
    reason: Optional[str] = None
    skip_reason: Optional[str] = None


@dataclass
class BatchRunReport:
    scheduled_date: date
    batches: list[int] = field(default_factory=list)
    total_amount: Decimal = ZERO
    skipped: dict[int, str] = field(default_factory=dict)
    duplicates: list[int] = field(default_factory=list)
    conflicts: list[int] = field(default_factory=list)
    failures: dict[int, str] = field(default_factory=dict)
    submitted: list[int] = field(default_factory=list)
    retry_scheduled: list[int] = field(default_factory=list)
    failed_batches: list[int] = field(default_factory=list)

    def to_payload(self) -> dict:
        return {
            "scheduled_date": self.scheduled_date.isoformat(),
            "batches": list(self.batches),
            "total_amount": str(to_money(self.total_amount)),
            "skipped": {str(k): v for k, v in self.skipped.items()},
            "duplicates": list(self.duplicates),
            "conflicts": list(self.conflicts),
            "failures": {str(k): v for k, v in self.failures.items()},
            "submitted": list(self.submitted),
            "retry_scheduled": list(self.retry_scheduled),
            "failed_batches": list(self.failed_batches),
        }


def build_idempotency_key(creator_id: int, scheduled_date: date) -> str:
    raw = f"{creator_id}:{scheduled_date.isoformat()}"
    return "payout_" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _minimum_for(creator: Creator | None) -> Decimal:
    if creator is not None and creator.minimum_payout is not None:
        return to_money(creator.minimum_payout)
    return to_money(settings.MINIMUM_PAYOUT)


def _evaluate(candidate: PayoutCandidate, reason: str | None) -> PayoutCandidate:
    if candidate.eligible_amount <= ZERO:
        # Negative balances carry forward until later earnings cover them.
        candidate.skip_reason = "non_positive_balance"
    elif reason is not None:
        candidate.reason = reason
    elif candidate.force_due:
        candidate.reason = PayoutReasonEnum.FORCED_45_DAY.value
    elif candidate.eligible_amount >= candidate.minimum_payout:
        candidate.reason = PayoutReasonEnum.MINIMUM_THRESHOLD.value
    else:
        candidate.skip_reason = "below_minimum"
    return candidate


def select_payout_candidates(
    db: Session,
    *,
    now: datetime,
    creator_ids: list[int] | None = None,
    reason: str | None = None,
) -> list[PayoutCandidate]:
    """Group ELIGIBLE earnings by creator and decide who gets paid."""
    grouped: dict[int, list[EarningRecord]] = {}
    for earning in list_eligible_earnings(db, creator_ids=creator_ids):
        grouped.setdefault(earning.creator_id, []).append(earning)

    candidates = []
    for creator_id, earnings in grouped.items():
        creator = get_creator(db, creator_id=creator_id)
        candidate = PayoutCandidate(
            creator_id=creator_id,
            earnings=earnings,
            eligible_amount=money_sum(e.net_amount for e in earnings),
            minimum_payout=_minimum_for(creator),
            force_due=any(is_force_due(e, now) for e in earnings),
            versions={e.id: int(e.version) for e in earnings},
        )
        if creator is not None and creator.status == CreatorStatusEnum.PAUSED.value:
            candidate.skip_reason = "creator_paused"
        else:
            _evaluate(candidate, reason)
        candidates.append(candidate)
    return candidates


def _claim(
    db: Session,
    candidate: PayoutCandidate,
    *,
    scheduled_date: date,
    idempotency_key: str,
    current_award_id: int | None,
    now: datetime,
) -> PayoutBatch:
    """Insert the batch and claim every earning in one transaction."""
    period_start, period_end = closed_period(scheduled_date)
    batch = PayoutBatch(
        creator_id=candidate.creator_id,
        scheduled_date=scheduled_date,
        period_start=period_start,
        period_end=period_end,
        idempotency_key=idempotency_key,
        reason=candidate.reason,
        earning_ids_json=list(candidate.versions),
        earnings_amount=candidate.eligible_amount,
        bonus_amount=ZERO,
        total_amount=candidate.eligible_amount,
        currency=settings.PAYOUT_CURRENCY,
        status=BatchStatusEnum.OPEN.value,
        attempt_count=0,
        # Due immediately, so a crash before submission is picked up by the worker.
        next_attempt_at=now,
        version=1,
    )
    db.add(batch)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        record_cas_conflict("payout_batch")
        raise ConcurrencyConflictError(f"Batch {idempotency_key} was created concurrently") from exc

    batch_id = batch.id
    for earning_id, version in candidate.versions.items():
        claimed = swap_earning(
            db,
            earning_id=earning_id,
            expected_version=version,
            current=EarningStatusEnum.ELIGIBLE,
            target=EarningStatusEnum.PENDING_PAYOUT,
            values={"payout_batch_id": batch_id},
        )
        if not claimed:
            db.rollback()
            raise ConcurrencyConflictError(
                f"Earning {earning_id} for creator {candidate.creator_id} was claimed concurrently"
            )

    bonus_total = ZERO
    attached_current = None
    for award in list_unattached_awards(db, creator_id=candidate.creator_id):
        if attach_award(db, award_id=award.id, batch_id=batch_id):
            bonus_total += to_money(award.bonus_amount)
            if award.id == current_award_id:
                attached_current = award.id

    batch.bonus_amount = to_money(bonus_total)
    batch.total_amount = to_money(candidate.eligible_amount + bonus_total)
    batch.bonus_award_id = attached_current
    db.commit()
    db.refresh(batch)
    return batch


def _record_submit_success(db: Session, batch: PayoutBatch, result, now: datetime) -> None:
    batch_id = batch.id
    values = {
        "external_payout_id": result.external_payout_id,
        "dispatched_at": now,
        "attempt_count": int(batch.attempt_count or 0) + 1,
        "next_attempt_at": None,
        "last_error": None,
    }
    still_open = batch.status == BatchStatusEnum.OPEN.value
    if still_open and transition_batch(db, batch, BatchStatusEnum.SUBMITTED, values=values):
        db.commit()
        record_submission("submitted")
        logger.info(
            "payout.submit.succeeded",
            extra={
                "batch_id": batch_id,
                "external_payout_id": result.external_payout_id,
                "provider_status": result.status,
            },
        )
        return

    # A webhook got here first; never move the batch backwards.
    db.rollback()
    current = get_batch(db, batch_id=batch_id)
    if current is not None and not current.external_payout_id:
        update_batch_in_place(
            db,
            current,
            values={"external_payout_id": result.external_payout_id, "dispatched_at": now},
        )
        db.commit()
    record_submission("late_response")
    logger.info(
        "payout.submit.late_response",
        extra={
            "batch_id": batch_id,
            "status": current.status if current is not None else None,
            "external_payout_id": result.external_payout_id,
        },
    )


def _record_submit_failure(
    db: Session,
    batch: PayoutBatch,
    exc: ExternalProviderError,
    adapter: PayoutDisbursementAdapter,
    now: datetime,
) -> str:
    if batch.status != BatchStatusEnum.OPEN.value:
        # Settled by a webhook while the call was in flight.
        logger.info(
            "payout.submit.stale_failure",
            extra={"batch_id": batch.id, "status": batch.status, "error": exc.message},
        )
        return "stale"
    policy = adapter.retry_policy
    attempts = int(batch.attempt_count or 0) + 1
    if policy.should_retry(exc, attempts):
        delay = policy.backoff_seconds(attempts)
        scheduled = update_batch_in_place(
            db,
            batch,
            values={
                "attempt_count": attempts,
                "next_attempt_at": now + timedelta(seconds=delay),
                "last_error": exc.message,
            },
        )
        if not scheduled:
            db.rollback()
            raise ConcurrencyConflictError(f"Payout batch {batch.id} changed during retry scheduling")
        db.commit()
        record_submission("retry")
        logger.warning(
            "payout.submit.retry",
            extra={
                "batch_id": batch.id,
                "attempt": attempts,
                "delay_seconds": delay,
                "error": exc.message,
            },
        )
        return "retry"

    fail_batch(db, batch, reason=exc.message, release=True, now=now)
    record_submission("failed")
    logger.error(
        "payout.submit.failed",
        extra={"batch_id": batch.id, "attempt": attempts, "error": exc.message},
    )
    return "failed"


def submit_batch(
    db: Session,
    batch: PayoutBatch,
    adapter: PayoutDisbursementAdapter,
    *,
    now: datetime | None = None,
    report: BatchRunReport | None = None,
) -> PayoutBatch:
    """Hand an OPEN batch to the provider and record the outcome."""
    now = normalize_dt(now) or utcnow()
    if batch.status != BatchStatusEnum.OPEN.value:
        return batch
    instruction = PayoutInstruction.from_batch(batch)
    # End the read transaction before going to the network.
    db.commit()
    try:
        result = adapter.submit(instruction)
    except ExternalProviderError as exc:
        outcome = _record_submit_failure(db, batch, exc, adapter, now)
        if report is not None:
            if outcome == "retry":
                report.retry_scheduled.append(instruction.batch_id)
            elif outcome == "failed":
                report.failed_batches.append(instruction.batch_id)
        return batch
    _record_submit_success(db, batch, result, now)
    if report is not None:
        report.submitted.append(instruction.batch_id)
    return batch


def _is_due(batch: PayoutBatch, now: datetime) -> bool:
    return batch.next_attempt_at is None or normalize_dt(batch.next_attempt_at) <= now


def process_candidate(
    db: Session,
    candidate: PayoutCandidate,
    *,
    scheduled_date: date,
    adapter: PayoutDisbursementAdapter,
    now: datetime,
    report: BatchRunReport,
) -> Optional[PayoutBatch]:
    key = build_idempotency_key(candidate.creator_id, scheduled_date)
    existing = get_batch_by_idempotency_key(db, idempotency_key=key)
    if existing is not None:
        report.duplicates.append(candidate.creator_id)
        if existing.status == BatchStatusEnum.OPEN.value and _is_due(existing, now):
            submit_batch(db, existing, adapter, now=now, report=report)
        return None

    period_start, period_end = closed_period(scheduled_date)
    award = get_award_for_period(
        db,
        creator_id=candidate.creator_id,
        period_start=period_start,
        period_end=period_end,
    )
    try:
        batch = _claim(
            db,
            candidate,
            scheduled_date=scheduled_date,
            idempotency_key=key,
            current_award_id=award.id if award is not None else None,
            now=now,
        )
    except ConcurrencyConflictError as exc:
        report.conflicts.append(candidate.creator_id)
        logger.warning(
            "payout.batch.claim_conflict",
            extra={"creator_id": candidate.creator_id, "error": exc.message},
        )
        return None

    record_batch_created(batch.reason)
    report.batches.append(batch.id)
    report.total_amount = to_money(report.total_amount + to_money(batch.total_amount))
    logger.info(
        "payout.batch.created",
        extra={
            "batch_id": batch.id,
            "creator_id": batch.creator_id,
            "reason": batch.reason,
            "earnings_amount": str(batch.earnings_amount),
            "bonus_amount": str(batch.bonus_amount),
            "total_amount": str(batch.total_amount),
            "earning_count": len(batch.earning_ids),
        },
    )
    submit_batch(db, batch, adapter, now=now, report=report)
    return batch


def run_batch(
    db: Session,
    scheduled_date: date,
    adapter: PayoutDisbursementAdapter,
    *,
    now: datetime | None = None,
    creator_ids: list[int] | None = None,
    reason: str | None = None,
) -> BatchRunReport:
    """Create and submit payout batches for ``scheduled_date``. Safe to re-run."""
    started = monotonic()
    now = normalize_dt(now) or utcnow()
    report = BatchRunReport(scheduled_date=scheduled_date)

    advance_ledger(db, now=now)
    period_start, period_end = closed_period(scheduled_date)
    # A period still in progress is awarded by a later run.
    if period_end <= now:
        award_period_bonuses(
            db,
            period_start=period_start,
            period_end=period_end,
            creator_ids=creator_ids,
            now=now,
        )
    candidates = select_payout_candidates(db, now=now, creator_ids=creator_ids, reason=reason)
    for candidate in candidates:
        if candidate.skip_reason is not None:
            report.skipped[candidate.creator_id] = candidate.skip_reason
            continue
        try:
            process_candidate(
                db,
                candidate,
                scheduled_date=scheduled_date,
                adapter=adapter,
                now=now,
                report=report,
            )
        except LedgerError as exc:
            db.rollback()
            report.failures[candidate.creator_id] = exc.message
            logger.error(
                "payout.batch.creator_failed",
                extra={"creator_id": candidate.creator_id, "error_code": exc.code, "error": exc.message},
            )
        except SQLAlchemyError as exc:
            db.rollback()
            report.failures[candidate.creator_id] = str(exc)
            logger.exception(
                "payout.batch.creator_failed",
                extra={"creator_id": candidate.creator_id, "error_code": "database_error"},
            )

    elapsed = monotonic() - started
    record_batch_run(elapsed)
    logger.info(
        "payout.run.completed",
        extra={
            "scheduled_date": scheduled_date.isoformat(),
            "batch_count": len(report.batches),
            "total_amount": str(report.total_amount),
            "skipped": len(report.skipped),
            "duplicates": len(report.duplicates),
            "conflicts": len(report.conflicts),
            "failures": len(report.failures),
            "duration_ms": round(elapsed * 1000.0, 2),
        },
    )
    return report


def run_creator_payout(
    db: Session,
    *,
    creator_id: int,
    scheduled_date: date,
    adapter: PayoutDisbursementAdapter,
    now: datetime | None = None,
) -> BatchRunReport:
    """Manual payout for one creator, bypassing the minimum."""
    if get_creator(db, creator_id=creator_id) is None:
        raise UnknownCreatorError(creator_id)
    report = run_batch(
        db,
        scheduled_date,
        adapter,
        now=now,
        creator_ids=[creator_id],
        reason=PayoutReasonEnum.MANUAL_ADMIN.value,
    )
    if creator_id in report.skipped:
        raise ValidationError(f"Nothing to pay out for creator {creator_id}: {report.skipped[creator_id]}")
    if creator_id in report.failures:
        raise ValidationError(report.failures[creator_id])
    if not report.batches and creator_id not in report.duplicates and creator_id not in report.conflicts:
        raise ValidationError(f"Creator {creator_id} has no eligible earnings")
    return report


def retry_open_batches(
    db: Session,
    adapter: PayoutDisbursementAdapter,
    *,
    now: datetime | None = None,
    limit: int = 100,
) -> int:
    """Resubmit due OPEN batches with their original idempotency key."""
    now = normalize_dt(now) or utcnow()
    attempted = 0
    for batch in list_due_open_batches(db, now=now, limit=limit):
        try:
            submit_batch(db, batch, adapter, now=now)
        except LedgerError as exc:
            db.rollback()
            logger.error(
                "payout.retry.failed",
                extra={"batch_id": batch.id, "error_code": exc.code, "error": exc.message},
            )
            continue
        attempted += 1
    return attempted
