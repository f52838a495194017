"""
Earning and payout-batch state machines.

Transitions are fail-closed: anything not listed below raises
``InvariantViolationError``. Every persisted move goes through a versioned
compare-and-swap, so a stale in-memory row can never move a record backwards.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ledger.core.errors import InvariantViolationError
from ledger.core.logging import get_structured_logger
from ledger.core.metrics import record_cas_conflict, record_earning_transition
from ledger.crud.earnings import compare_and_swap_earning
from ledger.crud.payouts import compare_and_swap_batch
from ledger.models.earnings import EarningRecord
from ledger.models.enums import BatchStatusEnum, EarningStatusEnum
from ledger.models.payouts import PayoutBatch


logger = get_structured_logger("ledger.lifecycle")

E = EarningStatusEnum
B = BatchStatusEnum

EARNING_TRANSITIONS: set[tuple[str, str]] = {
    (E.LOCKED.value, E.ELIGIBLE.value),
    (E.ELIGIBLE.value, E.PENDING_PAYOUT.value),
    (E.PENDING_PAYOUT.value, E.PAID.value),
    # Claim release after a failed disbursement.
    (E.PENDING_PAYOUT.value, E.ELIGIBLE.value),
    (E.LOCKED.value, E.CANCELLED.value),
    (E.ELIGIBLE.value, E.CANCELLED.value),
    (E.LOCKED.value, E.FAILED.value),
    (E.ELIGIBLE.value, E.FAILED.value),
    (E.PENDING_PAYOUT.value, E.FAILED.value),
}
EARNING_TERMINAL: frozenset[str] = frozenset({E.PAID.value, E.CANCELLED.value, E.FAILED.value})

BATCH_TRANSITIONS: set[tuple[str, str]] = {
    (B.OPEN.value, B.SUBMITTED.value),
    # Webhook may beat the synchronous submit response.
    (B.OPEN.value, B.CONFIRMED.value),
    (B.OPEN.value, B.FAILED.value),
    (B.SUBMITTED.value, B.CONFIRMED.value),
    (B.SUBMITTED.value, B.FAILED.value),
}
BATCH_TERMINAL: frozenset[str] = frozenset({B.CONFIRMED.value, B.FAILED.value})


def _value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


def _sync(instance, values: dict[str, Any]) -> None:
    # Bulk UPDATEs bypass the identity map; mirror the row onto the instance.
    for key, value in values.items():
        set_committed_value(instance, key, value)


def can_transition_earning(current, target) -> bool:
    return (_value(current), _value(target)) in EARNING_TRANSITIONS


def ensure_earning_transition(current, target) -> None:
    current, target = _value(current), _value(target)
    if (current, target) not in EARNING_TRANSITIONS:
        logger.error(
            "earning.illegal_transition",
            extra={"from_status": current, "to_status": target},
        )
        raise InvariantViolationError(f"Illegal earning transition {current} -> {target}")


def ensure_batch_transition(current, target) -> None:
    current, target = _value(current), _value(target)
    if (current, target) not in BATCH_TRANSITIONS:
        logger.error(
            "payout.batch.illegal_transition",
            extra={"from_status": current, "to_status": target},
        )
        raise InvariantViolationError(f"Illegal batch transition {current} -> {target}")


def transition_earning(
    db: Session,
    earning: EarningRecord,
    target,
    *,
    values: dict[str, Any] | None = None,
) -> bool:
    """Move ``earning`` to ``target`` if nobody else touched it. Does not commit."""
    target = _value(target)
    ensure_earning_transition(earning.status, target)
    updates = dict(values or {})
    updates["status"] = target
    swapped = compare_and_swap_earning(
        db,
        earning_id=earning.id,
        expected_version=int(earning.version),
        expected_status=earning.status,
        values=updates,
    )
    if swapped:
        record_earning_transition(earning.status, target)
        updates["version"] = int(earning.version) + 1
        _sync(earning, updates)
    else:
        record_cas_conflict("earning")
    return swapped


def transition_batch(
    db: Session,
    batch: PayoutBatch,
    target,
    *,
    values: dict[str, Any] | None = None,
) -> bool:
    target = _value(target)
    ensure_batch_transition(batch.status, target)
    updates = dict(values or {})
    updates["status"] = target
    swapped = compare_and_swap_batch(
        db,
        batch_id=batch.id,
        expected_version=int(batch.version),
        expected_statuses=[batch.status],
        values=updates,
    )
    if swapped:
        updates["version"] = int(batch.version) + 1
        _sync(batch, updates)
    else:
        record_cas_conflict("payout_batch")
    return swapped


def update_batch_in_place(db: Session, batch: PayoutBatch, *, values: dict[str, Any]) -> bool:
    """Versioned bookkeeping write that keeps the current status."""
    swapped = compare_and_swap_batch(
        db,
        batch_id=batch.id,
        expected_version=int(batch.version),
        expected_statuses=[batch.status],
        values=values,
    )
    if swapped:
        _sync(batch, {**values, "version": int(batch.version) + 1})
    else:
        record_cas_conflict("payout_batch")
    return swapped


def swap_earning(
    db: Session,
    *,
    earning_id: int,
    expected_version: int,
    current,
    target,
    values: dict[str, Any] | None = None,
) -> bool:
    """Like ``transition_earning`` but against a version read earlier."""
    current, target = _value(current), _value(target)
    ensure_earning_transition(current, target)
    updates = dict(values or {})
    updates["status"] = target
    swapped = compare_and_swap_earning(
        db,
        earning_id=earning_id,
        expected_version=expected_version,
        expected_status=current,
        values=updates,
    )
    if swapped:
        record_earning_transition(current, target)
    else:
        record_cas_conflict("earning")
    return swapped
