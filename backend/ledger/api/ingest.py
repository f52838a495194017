from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from ledger.api.serializers import earning_read
from ledger.core.db import get_db
from ledger.core.ingestion import TransactionEvent, ingest_transaction, reverse_earning
from ledger.schemas.earnings import IngestResult, ReversalResult, TransactionIngest, TransactionReversal


router = APIRouter(prefix="/tracking", tags=["tracking"])


@router.post("/transactions", response_model=IngestResult, status_code=status.HTTP_201_CREATED)
def ingest(payload: TransactionIngest, response: Response, db: Session = Depends(get_db)):
    earning, created = ingest_transaction(
        db,
        TransactionEvent(
            source_transaction_id=payload.source_transaction_id,
            creator_id=payload.creator_id,
            gross_amount=payload.gross_amount,
            currency=payload.currency,
            occurred_at=payload.occurred_at,
        ),
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return IngestResult(created=created, earning=earning_read(earning))


@router.post("/reversals", response_model=ReversalResult)
def reverse(payload: TransactionReversal, db: Session = Depends(get_db)):
    outcome = reverse_earning(
        db,
        source_transaction_id=payload.source_transaction_id,
        reason=payload.reason,
    )
    return ReversalResult(
        action=outcome.action,
        earning=earning_read(outcome.earning),
        adjustment=earning_read(outcome.adjustment) if outcome.adjustment is not None else None,
    )
