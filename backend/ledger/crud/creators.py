from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from ledger.models.creators import Creator
from ledger.models.enums import CreatorStatusEnum, PayeeStatusEnum, PaymentMethodEnum


def create_creator(
    db: Session,
    *,
    name: str,
    email: str,
    payment_method: str = PaymentMethodEnum.BANK_TRANSFER.value,
    minimum_payout: Decimal | None = None,
    status: str = CreatorStatusEnum.ACTIVE.value,
) -> Creator:
    creator = Creator(
        name=name,
        email=email.strip().lower(),
        payment_method=payment_method,
        minimum_payout=minimum_payout,
        status=status,
        payee_status=PayeeStatusEnum.NOT_REGISTERED.value,
    )
    db.add(creator)
    db.commit()
    db.refresh(creator)
    return creator


def get_creator(db: Session, *, creator_id: int) -> Creator | None:
    return db.query(Creator).filter(Creator.id == creator_id).first()


def get_creator_by_payee_id(db: Session, *, payee_id: str) -> Creator | None:
    return db.query(Creator).filter(Creator.payee_id == payee_id).first()


def list_creator_ids(db: Session, *, creator_ids: list[int]) -> set[int]:
    if not creator_ids:
        return set()
    rows = db.query(Creator.id).filter(Creator.id.in_(creator_ids)).all()
    return {row[0] for row in rows}


def set_payee(db: Session, *, creator: Creator, payee_id: str, payee_status: str) -> Creator:
    creator.payee_id = payee_id
    creator.payee_status = payee_status
    db.commit()
    db.refresh(creator)
    return creator


def mark_payee_onboarded(db: Session, *, creator: Creator) -> Creator:
    creator.payee_status = PayeeStatusEnum.ONBOARDED.value
    db.commit()
    db.refresh(creator)
    return creator
