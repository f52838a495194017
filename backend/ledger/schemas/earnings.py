from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class TransactionIngest(BaseModel):
    source_transaction_id: str = Field(min_length=1)
    creator_id: int
    gross_amount: Decimal
    currency: str = "USD"
    occurred_at: datetime


class TransactionReversal(BaseModel):
    source_transaction_id: str = Field(min_length=1)
    reason: Optional[str] = None


class EarningRead(BaseModel):
    id: int
    creator_id: int
    source_transaction_id: str
    gross_amount: float
    commission_rate: float
    net_amount: float
    currency: str
    earned_at: datetime
    locked_until: datetime
    hard_deadline: datetime
    status: str
    payout_batch_id: int | None = None
    reverses_earning_id: int | None = None


class IngestResult(BaseModel):
    created: bool
    earning: EarningRead


class ReversalResult(BaseModel):
    action: str
    earning: EarningRead
    adjustment: EarningRead | None = None


class CommissionOverrideCreate(BaseModel):
    rate: Decimal
    reason: Optional[str] = None
    effective_from: Optional[datetime] = None
    set_by: Optional[str] = None


class CommissionOverrideBulkCreate(CommissionOverrideCreate):
    creator_ids: list[int] = Field(min_length=1)


class CommissionOverrideRead(BaseModel):
    id: int
    creator_id: int
    rate: float
    effective_from: datetime
    reason: str | None = None
    set_by: str | None = None
