from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class PayoutRunRequest(BaseModel):
    scheduled_date: Optional[date] = None
    creator_ids: Optional[list[int]] = None


class CreatorPayoutRequest(BaseModel):
    scheduled_date: Optional[date] = None


class PayoutRunReport(BaseModel):
    scheduled_date: date
    batches: list[int]
    total_amount: float
    skipped: dict[int, str]
    duplicates: list[int]
    conflicts: list[int]
    failures: dict[int, str]
    submitted: list[int]
    retry_scheduled: list[int]
    failed_batches: list[int]


class PayoutBatchRead(BaseModel):
    id: int
    creator_id: int
    scheduled_date: date
    reason: str
    status: str
    earning_ids: list[int]
    earnings_amount: float
    bonus_amount: float
    total_amount: float
    currency: str
    external_payout_id: str | None = None
    attempt_count: int
    next_attempt_at: datetime | None = None
    dispatched_at: datetime | None = None
    confirmed_at: datetime | None = None
    last_error: str | None = None


class WebhookAck(BaseModel):
    event_type: str
    outcome: str
    batch_id: int | None = None
    creator_id: int | None = None
    status: str | None = None
