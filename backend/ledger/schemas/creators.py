from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class CreatorCreate(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    payment_method: Optional[str] = None
    minimum_payout: Optional[Decimal] = Field(default=None, ge=0)


class CreatorRead(BaseModel):
    id: int
    name: str
    email: str
    status: str
    payee_id: str | None = None
    payee_status: str
    payment_method: str
    minimum_payout: float | None = None
    created_at: datetime


class PayeeRegistration(BaseModel):
    preferred_method: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    tax_id: Optional[str] = None


class PayoutStatusRead(BaseModel):
    creator_id: int
    locked_amount: float
    eligible_amount: float
    pending_amount: float
    next_payout_date: date
    will_include_in_next_run: bool
    minimum_payout: float


class BonusProgressRead(BaseModel):
    creator_id: int
    period_start: datetime
    period_end: datetime
    current_period_sales: float
    current_tier: int | None = None
    current_tier_bonus: float
    next_tier_threshold: float | None = None
    progress_to_next_tier: float
