from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from ledger.disbursement.retry import RetryPolicy


@dataclass(frozen=True)
class PayoutInstruction:
    """Detached snapshot of a batch, safe to use outside a DB session."""

    batch_id: int
    creator_id: int
    idempotency_key: str
    amount: Decimal
    currency: str
    scheduled_date: date
    payee_id: Optional[str]
    payee_status: Optional[str]
    payment_method: Optional[str]
    description: str

    @classmethod
    def from_batch(cls, batch) -> "PayoutInstruction":
        creator = batch.creator
        return cls(
            batch_id=batch.id,
            creator_id=batch.creator_id,
            idempotency_key=batch.idempotency_key,
            amount=Decimal(str(batch.total_amount)),
            currency=batch.currency,
            scheduled_date=batch.scheduled_date,
            payee_id=getattr(creator, "payee_id", None),
            payee_status=getattr(creator, "payee_status", None),
            payment_method=getattr(creator, "payment_method", None),
            description=f"Creator payout {batch.scheduled_date.isoformat()} ({batch.reason})",
        )


@dataclass(frozen=True)
class SubmissionResult:
    external_payout_id: str
    status: str


class PayoutDisbursementAdapter:
    """Outbound port to the payout provider."""

    def __init__(self, retry_policy: RetryPolicy | None = None):
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    def register_payee(self, creator, bank_details: dict[str, Any]) -> str:
        raise NotImplementedError

    def submit(self, instruction: PayoutInstruction) -> SubmissionResult:
        raise NotImplementedError

    def query_status(self, external_payout_id: str) -> str:
        raise NotImplementedError
