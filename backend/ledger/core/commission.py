"""
Commission rate resolution.

The rate that applies to an earning is fixed the moment it is ingested.
Overrides only ever affect earnings ingested after their ``effective_from``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from ledger.core.config import settings
from ledger.core.errors import UnknownCreatorError, ValidationError
from ledger.core.logging import get_structured_logger
from ledger.core.time import normalize_dt, utcnow
from ledger.crud.commission_overrides import (
    build_override,
    create_override,
    get_active_override,
    list_overrides_for_creator,
)
from ledger.crud.creators import get_creator, list_creator_ids
from ledger.models.earnings import CommissionRateOverride


logger = get_structured_logger("ledger.commission")

RATE_QUANT = Decimal("0.01")


def _coerce_rate(rate) -> Decimal:
    try:
        value = Decimal(str(rate))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid commission rate: {rate!r}") from exc
    if not value.is_finite() or value < 0 or value > 100:
        raise ValidationError("Commission rate must be between 0 and 100")
    return value.quantize(RATE_QUANT)


def default_commission_rate() -> Decimal:
    return Decimal(str(settings.DEFAULT_COMMISSION_RATE)).quantize(RATE_QUANT)


def resolve_commission_rate(db: Session, *, creator_id: int, at_time: datetime) -> Decimal:
    if get_creator(db, creator_id=creator_id) is None:
        raise UnknownCreatorError(creator_id)
    override = get_active_override(db, creator_id=creator_id, at_time=normalize_dt(at_time))
    if override is None:
        return default_commission_rate()
    return Decimal(str(override.rate)).quantize(RATE_QUANT)


def set_commission_override(
    db: Session,
    *,
    creator_id: int,
    rate,
    reason: str | None = None,
    effective_from: datetime | None = None,
    set_by: str | None = None,
) -> CommissionRateOverride:
    value = _coerce_rate(rate)
    if get_creator(db, creator_id=creator_id) is None:
        raise UnknownCreatorError(creator_id)
    override = create_override(
        db,
        creator_id=creator_id,
        rate=value,
        effective_from=normalize_dt(effective_from) or utcnow(),
        reason=reason,
        set_by=set_by,
    )
    logger.info(
        "commission.override_set",
        extra={"creator_id": creator_id, "rate": str(value), "set_by": set_by},
    )
    return override


def set_commission_overrides_bulk(
    db: Session,
    *,
    creator_ids: list[int],
    rate,
    reason: str | None = None,
    effective_from: datetime | None = None,
    set_by: str | None = None,
) -> list[CommissionRateOverride]:
    """Apply one rate to many creators. Either every creator gets it or none do."""
    value = _coerce_rate(rate)
    unique_ids = list(dict.fromkeys(int(cid) for cid in creator_ids))
    if not unique_ids:
        raise ValidationError("creator_ids must not be empty")
    missing = set(unique_ids) - list_creator_ids(db, creator_ids=unique_ids)
    if missing:
        raise UnknownCreatorError(min(missing))

    effective = normalize_dt(effective_from) or utcnow()
    overrides = [
        build_override(
            creator_id=cid,
            rate=value,
            effective_from=effective,
            reason=reason,
            set_by=set_by,
        )
        for cid in unique_ids
    ]
    db.add_all(overrides)
    db.commit()
    for override in overrides:
        db.refresh(override)
    logger.info(
        "commission.override_bulk_set",
        extra={"creator_count": len(overrides), "rate": str(value), "set_by": set_by},
    )
    return overrides


def list_commission_overrides(db: Session, *, creator_id: int) -> list[CommissionRateOverride]:
    if get_creator(db, creator_id=creator_id) is None:
        raise UnknownCreatorError(creator_id)
    return list_overrides_for_creator(db, creator_id=creator_id)
