from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class BonusAwardRead(BaseModel):
    id: int
    creator_id: int
    period_start: datetime
    period_end: datetime
    tier: int
    bonus_amount: float
    sales_volume: float
    status: str
    awarded_at: datetime
    payout_batch_id: int | None = None


class TierCount(BaseModel):
    tier: int
    count: int


class BonusStatistics(BaseModel):
    total_awarded: float
    total_paid: float
    total_outstanding: float
    total_sales_volume: float
    award_count: int
    tier_distribution: list[TierCount]
    recent_awards: list[BonusAwardRead]
