from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger.api.serializers import creator_read
from ledger.core.db import get_db
from ledger.core.errors import UnknownCreatorError, ValidationError
from ledger.core.projections import build_bonus_progress, build_payout_status
from ledger.crud.creators import create_creator, get_creator, set_payee
from ledger.disbursement.base import PayoutDisbursementAdapter
from ledger.disbursement.http import get_disbursement_adapter
from ledger.models.enums import PayeeStatusEnum, PaymentMethodEnum
from ledger.schemas.creators import (
    BonusProgressRead,
    CreatorCreate,
    CreatorRead,
    PayeeRegistration,
    PayoutStatusRead,
)


router = APIRouter(prefix="/creators", tags=["creators"])

PAYMENT_METHODS = {member.value for member in PaymentMethodEnum}


@router.post("", response_model=CreatorRead, status_code=status.HTTP_201_CREATED)
def register_creator(payload: CreatorCreate, db: Session = Depends(get_db)):
    method = (payload.payment_method or PaymentMethodEnum.BANK_TRANSFER.value).upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method: {payload.payment_method}")
    try:
        creator = create_creator(
            db,
            name=payload.name.strip(),
            email=payload.email,
            payment_method=method,
            minimum_payout=payload.minimum_payout,
        )
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered") from exc
    return creator_read(creator)


@router.get("/{creator_id}", response_model=CreatorRead)
def read_creator(creator_id: int, db: Session = Depends(get_db)):
    creator = get_creator(db, creator_id=creator_id)
    if creator is None:
        raise UnknownCreatorError(creator_id)
    return creator_read(creator)


@router.post("/{creator_id}/payee", response_model=CreatorRead)
def register_payee(
    creator_id: int,
    payload: PayeeRegistration,
    db: Session = Depends(get_db),
    adapter: PayoutDisbursementAdapter = Depends(get_disbursement_adapter),
):
    creator = get_creator(db, creator_id=creator_id)
    if creator is None:
        raise UnknownCreatorError(creator_id)
    payee_id = adapter.register_payee(creator, payload.model_dump())
    creator = set_payee(db, creator=creator, payee_id=payee_id, payee_status=PayeeStatusEnum.PENDING.value)
    return creator_read(creator)


@router.get("/{creator_id}/payout-status", response_model=PayoutStatusRead)
def payout_status(creator_id: int, db: Session = Depends(get_db)):
    return PayoutStatusRead(**build_payout_status(db, creator_id=creator_id))


@router.get("/{creator_id}/bonus-progress", response_model=BonusProgressRead)
def bonus_progress(creator_id: int, db: Session = Depends(get_db)):
    return BonusProgressRead(**build_bonus_progress(db, creator_id=creator_id))
