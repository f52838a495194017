from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from ledger.models.earnings import CommissionRateOverride


def build_override(
    *,
    creator_id: int,
    rate: Decimal,
    effective_from: datetime,
    reason: str | None,
    set_by: str | None,
) -> CommissionRateOverride:
    return CommissionRateOverride(
        creator_id=creator_id,
        rate=rate,
        effective_from=effective_from,
        reason=reason,
        set_by=set_by,
    )


def create_override(
    db: Session,
    *,
    creator_id: int,
    rate: Decimal,
    effective_from: datetime,
    reason: str | None,
    set_by: str | None,
) -> CommissionRateOverride:
    override = build_override(
        creator_id=creator_id,
        rate=rate,
        effective_from=effective_from,
        reason=reason,
        set_by=set_by,
    )
    db.add(override)
    db.commit()
    db.refresh(override)
    return override


def get_active_override(
    db: Session,
    *,
    creator_id: int,
    at_time: datetime,
) -> CommissionRateOverride | None:
    return (
        db.query(CommissionRateOverride)
        .filter(
            CommissionRateOverride.creator_id == creator_id,
            CommissionRateOverride.effective_from <= at_time,
        )
        .order_by(CommissionRateOverride.effective_from.desc(), CommissionRateOverride.id.desc())
        .first()
    )


def list_overrides_for_creator(db: Session, *, creator_id: int) -> list[CommissionRateOverride]:
    return (
        db.query(CommissionRateOverride)
        .filter(CommissionRateOverride.creator_id == creator_id)
        .order_by(CommissionRateOverride.effective_from.asc(), CommissionRateOverride.id.asc())
        .all()
    )
