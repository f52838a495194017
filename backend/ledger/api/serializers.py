from __future__ import annotations

from ledger.schemas.bonuses import BonusAwardRead
from ledger.schemas.creators import CreatorRead
from ledger.schemas.earnings import CommissionOverrideRead, EarningRead
from ledger.schemas.payouts import PayoutBatchRead


def _money(value) -> float:
    return float(value or 0)


def creator_read(creator) -> CreatorRead:
    return CreatorRead(
        id=creator.id,
        name=creator.name,
        email=creator.email,
        status=creator.status,
        payee_id=creator.payee_id,
        payee_status=creator.payee_status,
        payment_method=creator.payment_method,
        minimum_payout=float(creator.minimum_payout) if creator.minimum_payout is not None else None,
        created_at=creator.created_at,
    )


def earning_read(earning) -> EarningRead:
    return EarningRead(
        id=earning.id,
        creator_id=earning.creator_id,
        source_transaction_id=earning.source_transaction_id,
        gross_amount=_money(earning.gross_amount),
        commission_rate=_money(earning.commission_rate),
        net_amount=_money(earning.net_amount),
        currency=earning.currency,
        earned_at=earning.earned_at,
        locked_until=earning.locked_until,
        hard_deadline=earning.hard_deadline,
        status=earning.status,
        payout_batch_id=earning.payout_batch_id,
        reverses_earning_id=earning.reverses_earning_id,
    )


def override_read(override) -> CommissionOverrideRead:
    return CommissionOverrideRead(
        id=override.id,
        creator_id=override.creator_id,
        rate=_money(override.rate),
        effective_from=override.effective_from,
        reason=override.reason,
        set_by=override.set_by,
    )


def batch_read(batch) -> PayoutBatchRead:
    return PayoutBatchRead(
        id=batch.id,
        creator_id=batch.creator_id,
        scheduled_date=batch.scheduled_date,
        reason=batch.reason,
        status=batch.status,
        earning_ids=sorted(batch.earning_ids),
        earnings_amount=_money(batch.earnings_amount),
        bonus_amount=_money(batch.bonus_amount),
        total_amount=_money(batch.total_amount),
        currency=batch.currency,
        external_payout_id=batch.external_payout_id,
        attempt_count=int(batch.attempt_count or 0),
        next_attempt_at=batch.next_attempt_at,
        dispatched_at=batch.dispatched_at,
        confirmed_at=batch.confirmed_at,
        last_error=batch.last_error,
    )


def award_read(award) -> BonusAwardRead:
    return BonusAwardRead(
        id=award.id,
        creator_id=award.creator_id,
        period_start=award.period_start,
        period_end=award.period_end,
        tier=award.tier,
        bonus_amount=_money(award.bonus_amount),
        sales_volume=_money(award.sales_volume),
        status=award.status,
        awarded_at=award.awarded_at,
        payout_batch_id=award.payout_batch_id,
    )
