"""
Deterministic seed script for dev/demo environments.

Creates a handful of creators and tracking transactions spread over the
last two months so every earning state shows up after a batch run.
"""

from __future__ import annotations

import os
import sys
from datetime import timedelta
from decimal import Decimal

from ledger.core.db import Base, SessionLocal, engine
from ledger.core.ingestion import TransactionEvent, ingest_transaction
from ledger.core.time import utcnow
from ledger.crud.creators import create_creator
from ledger.models.creators import Creator
import ledger.models  # noqa: F401


DEMO_CREATORS = [
    ("Ada Reyes", "ada@example.com", "BANK_TRANSFER", None),
    ("Ben Ortiz", "ben@example.com", "PAYPAL", Decimal("100.00")),
    ("Cleo Park", "cleo@example.com", "PAYONEER", None),
]

# (creator email, days ago, gross)
DEMO_TRANSACTIONS = [
    ("ada@example.com", 50, Decimal("30.00")),
    ("ada@example.com", 20, Decimal("120.00")),
    ("ada@example.com", 3, Decimal("6200.00")),
    ("ben@example.com", 18, Decimal("40.00")),
    ("ben@example.com", 10, Decimal("75.00")),
    ("cleo@example.com", 25, Decimal("21000.00")),
]


def ensure_not_production():
    env = os.getenv("ENV", "").lower()
    allow_prod = os.getenv("ALLOW_SEED_PROD", "0").lower() in {"1", "true", "yes"}
    if env == "production" and not allow_prod:
        print("Refusing to seed in production. Set ALLOW_SEED_PROD=1 to override.", file=sys.stderr)
        sys.exit(1)


def get_or_create_creator(db, name, email, payment_method, minimum_payout):
    creator = db.query(Creator).filter(Creator.email == email).first()
    if creator is not None:
        return creator
    return create_creator(
        db,
        name=name,
        email=email,
        payment_method=payment_method,
        minimum_payout=minimum_payout,
    )


def seed():
    ensure_not_production()
    Base.metadata.create_all(bind=engine)
    today = utcnow().replace(hour=12, minute=0, second=0, microsecond=0)

    with SessionLocal() as db:
        creators = {
            email: get_or_create_creator(db, name, email, method, minimum)
            for name, email, method, minimum in DEMO_CREATORS
        }
        created = 0
        for index, (email, days_ago, gross) in enumerate(DEMO_TRANSACTIONS):
            _earning, was_created = ingest_transaction(
                db,
                TransactionEvent(
                    source_transaction_id=f"seed-{index:03d}",
                    creator_id=creators[email].id,
                    gross_amount=gross,
                    occurred_at=today - timedelta(days=days_ago),
                ),
            )
            created += int(was_created)
    print(f"Seed complete. {created} new earnings.")


if __name__ == "__main__":
    seed()
