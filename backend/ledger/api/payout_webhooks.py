from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ledger.core.config import settings
from ledger.core.db import get_db
from ledger.core.errors import ValidationError
from ledger.disbursement.webhooks import handle_webhook_event, parse_webhook_event, verify_webhook_signature
from ledger.schemas.payouts import WebhookAck


router = APIRouter(prefix="/payouts", tags=["payouts"])

SIGNATURE_HEADER = "X-Payout-Signature"


def _require_webhook_secret() -> None:
    if not settings.PAYOUT_WEBHOOK_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payout webhook secret is not configured",
        )


@router.post("/webhook", response_model=WebhookAck)
async def payout_webhook(request: Request, db: Session = Depends(get_db)):
    _require_webhook_secret()
    body = await request.body()
    verify_webhook_signature(body, request.headers.get(SIGNATURE_HEADER))
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise ValidationError("Invalid webhook payload") from exc

    result = handle_webhook_event(db, parse_webhook_event(payload))
    return WebhookAck(
        event_type=result["event_type"],
        outcome=result["outcome"],
        batch_id=result.get("batch_id"),
        creator_id=result.get("creator_id"),
        status=result.get("status") or result.get("payee_status"),
    )
