"""
Inbound provider webhooks and status polling.

Events are parsed into one dataclass per event type and handled
explicitly; an event type we do not recognise is rejected rather than
silently acknowledged.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from ledger.core.config import settings
from ledger.core.errors import ExternalProviderError, InvariantViolationError, LedgerError, ValidationError
from ledger.core.logging import get_structured_logger
from ledger.core.metrics import record_webhook_event
from ledger.core.settlement import confirm_batch, fail_batch
from ledger.core.time import normalize_dt, utcnow
from ledger.crud.creators import get_creator, get_creator_by_payee_id, mark_payee_onboarded
from ledger.crud.payouts import (
    get_batch_by_external_id,
    get_batch_by_idempotency_key,
    list_batches_by_status,
)
from ledger.disbursement.base import PayoutDisbursementAdapter
from ledger.models.enums import BatchStatusEnum
from ledger.models.payouts import PayoutBatch


logger = get_structured_logger("ledger.webhooks")


@dataclass(frozen=True)
class PaymentCompleted:
    external_payout_id: Optional[str]
    reference: Optional[str]
    event_type: str = "payment.completed"


@dataclass(frozen=True)
class PaymentFailed:
    external_payout_id: Optional[str]
    reference: Optional[str]
    reason: str
    retryable: bool = False
    event_type: str = "payment.failed"


@dataclass(frozen=True)
class PayeeOnboarded:
    payee_id: Optional[str]
    creator_reference: Optional[str]
    event_type: str = "payee.onboarded"


@dataclass(frozen=True)
class UnknownEvent:
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)


WebhookEvent = Union[PaymentCompleted, PaymentFailed, PayeeOnboarded, UnknownEvent]


def _str_or_none(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_webhook_event(payload: dict[str, Any]) -> WebhookEvent:
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object")
    event_type = _str_or_none(payload.get("eventType") or payload.get("event_type")) or ""
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationError("Webhook data must be a JSON object")

    payment_id = _str_or_none(data.get("paymentId"))
    reference = _str_or_none(data.get("refCode") or data.get("externalReferenceId"))
    if event_type == "payment.completed":
        return PaymentCompleted(external_payout_id=payment_id, reference=reference)
    if event_type == "payment.failed":
        return PaymentFailed(
            external_payout_id=payment_id,
            reference=reference,
            reason=_str_or_none(data.get("reason") or data.get("errorMessage")) or "payment_failed",
            retryable=bool(data.get("retryable", False)),
        )
    if event_type == "payee.onboarded":
        return PayeeOnboarded(
            payee_id=_str_or_none(data.get("payeeId")),
            creator_reference=_str_or_none(data.get("payeeEntityId")),
        )
    return UnknownEvent(event_type=event_type or "unknown", payload=payload)


def sign_webhook_payload(secret: str, timestamp: str, body: bytes) -> str:
    message = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    body: bytes,
    header: str | None,
    *,
    secret: str | None = None,
    tolerance_seconds: int | None = None,
    now: float | None = None,
) -> None:
    """Check a ``t=<unix>,v1=<hex>`` signature header. Raises ValidationError."""
    secret = secret if secret is not None else settings.PAYOUT_WEBHOOK_SECRET
    if not secret:
        raise ValidationError("Webhook secret is not configured")
    if not header:
        raise ValidationError("Missing webhook signature")

    parts = {}
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key and value:
            parts.setdefault(key, value)
    timestamp = parts.get("t")
    signature = parts.get("v1")
    if not timestamp or not signature:
        raise ValidationError("Malformed webhook signature")
    try:
        issued_at = int(timestamp)
    except ValueError as exc:
        raise ValidationError("Malformed webhook signature timestamp") from exc

    tolerance = tolerance_seconds if tolerance_seconds is not None else settings.PAYOUT_WEBHOOK_TOLERANCE_SECONDS
    current = now if now is not None else time.time()
    if tolerance and abs(current - issued_at) > tolerance:
        raise ValidationError("Webhook signature timestamp outside tolerance")

    expected = sign_webhook_payload(secret, timestamp, body)
    if not hmac.compare_digest(expected, signature):
        raise ValidationError("Invalid webhook signature")


def _locate_batch(db: Session, external_payout_id: str | None, reference: str | None) -> PayoutBatch:
    batch = None
    if external_payout_id:
        batch = get_batch_by_external_id(db, external_payout_id=external_payout_id)
    if batch is None and reference:
        batch = get_batch_by_idempotency_key(db, idempotency_key=reference)
    if batch is None:
        raise ValidationError(
            f"No payout batch for payment {external_payout_id or '-'} / reference {reference or '-'}"
        )
    return batch


def _handle_completed(db: Session, event: PaymentCompleted, now: datetime) -> dict[str, Any]:
    batch = _locate_batch(db, event.external_payout_id, event.reference)
    changed = confirm_batch(db, batch, now=now, external_payout_id=event.external_payout_id)
    return {"batch_id": batch.id, "status": batch.status, "changed": changed}


def _handle_failed(db: Session, event: PaymentFailed, now: datetime) -> dict[str, Any]:
    batch = _locate_batch(db, event.external_payout_id, event.reference)
    changed = fail_batch(db, batch, reason=event.reason, release=event.retryable, now=now)
    return {"batch_id": batch.id, "status": batch.status, "changed": changed}


def _handle_onboarded(db: Session, event: PayeeOnboarded) -> dict[str, Any]:
    creator = None
    if event.payee_id:
        creator = get_creator_by_payee_id(db, payee_id=event.payee_id)
    if creator is None and event.creator_reference and event.creator_reference.isdigit():
        creator = get_creator(db, creator_id=int(event.creator_reference))
    if creator is None:
        raise ValidationError(f"No creator for payee {event.payee_id or event.creator_reference}")
    mark_payee_onboarded(db, creator=creator)
    logger.info("payee.onboarded", extra={"creator_id": creator.id, "payee_id": creator.payee_id})
    return {"creator_id": creator.id, "payee_status": creator.payee_status, "changed": True}


def handle_webhook_event(db: Session, event: WebhookEvent, *, now: datetime | None = None) -> dict[str, Any]:
    now = normalize_dt(now) or utcnow()
    try:
        if isinstance(event, PaymentCompleted):
            result = _handle_completed(db, event, now)
        elif isinstance(event, PaymentFailed):
            result = _handle_failed(db, event, now)
        elif isinstance(event, PayeeOnboarded):
            result = _handle_onboarded(db, event)
        elif isinstance(event, UnknownEvent):
            logger.warning("webhook.unknown_event", extra={"event_type": event.event_type})
            raise ValidationError(f"Unknown webhook event type: {event.event_type}")
        else:
            raise ValidationError(f"Unsupported webhook event: {event!r}")
    except InvariantViolationError:
        record_webhook_event(event.event_type, "invariant_violation")
        raise
    except LedgerError:
        record_webhook_event(event.event_type, "rejected")
        raise

    outcome = "applied" if result.get("changed") else "duplicate"
    record_webhook_event(event.event_type, outcome)
    logger.info("webhook.processed", extra={"event_type": event.event_type, "outcome": outcome, **result})
    return {"event_type": event.event_type, "outcome": outcome, **result}


def poll_submitted_batches(
    db: Session,
    adapter: PayoutDisbursementAdapter,
    *,
    now: datetime | None = None,
) -> dict[str, int]:
    """Reconcile SUBMITTED batches with the provider, for missed webhooks."""
    now = normalize_dt(now) or utcnow()
    counts = {"confirmed": 0, "failed": 0, "released": 0, "pending": 0, "errors": 0}
    batches = list_batches_by_status(db, statuses=[BatchStatusEnum.SUBMITTED.value])
    targets = [(b.id, b.external_payout_id) for b in batches if b.external_payout_id]
    db.commit()
    for batch_id, external_id in targets:
        try:
            status = adapter.query_status(external_id)
        except ExternalProviderError as exc:
            counts["errors"] += 1
            logger.warning(
                "payout.poll.failed",
                extra={"batch_id": batch_id, "external_payout_id": external_id, "error": exc.message},
            )
            continue

        batch = get_batch_by_external_id(db, external_payout_id=external_id)
        if batch is None or batch.status != BatchStatusEnum.SUBMITTED.value:
            continue
        try:
            if status == "COMPLETED":
                confirm_batch(db, batch, now=now)
                counts["confirmed"] += 1
            elif status == "CANCELLED":
                fail_batch(db, batch, reason="cancelled_by_provider", release=True, now=now)
                counts["released"] += 1
            elif status == "FAILED":
                fail_batch(db, batch, reason="failed_at_provider", release=False, now=now)
                counts["failed"] += 1
            else:
                counts["pending"] += 1
        except LedgerError as exc:
            db.rollback()
            counts["errors"] += 1
            logger.error(
                "payout.poll.apply_failed",
                extra={"batch_id": batch_id, "error_code": exc.code, "error": exc.message},
            )
    return counts
