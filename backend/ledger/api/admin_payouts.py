from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ledger.api.serializers import award_read, batch_read, override_read
from ledger.core.batcher import BatchRunReport, run_batch, run_creator_payout
from ledger.core.bonus import build_bonus_statistics
from ledger.core.commission import (
    list_commission_overrides,
    set_commission_override,
    set_commission_overrides_bulk,
)
from ledger.core.db import get_db
from ledger.core.money import to_money
from ledger.core.projections import list_pending_batches
from ledger.core.time import utcnow
from ledger.disbursement.base import PayoutDisbursementAdapter
from ledger.disbursement.http import get_disbursement_adapter
from ledger.schemas.bonuses import BonusStatistics, TierCount
from ledger.schemas.earnings import (
    CommissionOverrideBulkCreate,
    CommissionOverrideCreate,
    CommissionOverrideRead,
)
from ledger.schemas.payouts import (
    CreatorPayoutRequest,
    PayoutBatchRead,
    PayoutRunReport,
    PayoutRunRequest,
)


router = APIRouter(prefix="/admin", tags=["admin"])


def _report_read(report: BatchRunReport) -> PayoutRunReport:
    return PayoutRunReport(
        scheduled_date=report.scheduled_date,
        batches=report.batches,
        total_amount=float(to_money(report.total_amount)),
        skipped=report.skipped,
        duplicates=report.duplicates,
        conflicts=report.conflicts,
        failures=report.failures,
        submitted=report.submitted,
        retry_scheduled=report.retry_scheduled,
        failed_batches=report.failed_batches,
    )


@router.post(
    "/creators/{creator_id}/commission-overrides",
    response_model=CommissionOverrideRead,
    status_code=status.HTTP_201_CREATED,
)
def create_commission_override(
    creator_id: int,
    payload: CommissionOverrideCreate,
    db: Session = Depends(get_db),
):
    override = set_commission_override(
        db,
        creator_id=creator_id,
        rate=payload.rate,
        reason=payload.reason,
        effective_from=payload.effective_from,
        set_by=payload.set_by,
    )
    return override_read(override)


@router.get("/creators/{creator_id}/commission-overrides", response_model=list[CommissionOverrideRead])
def get_commission_overrides(creator_id: int, db: Session = Depends(get_db)):
    return [override_read(o) for o in list_commission_overrides(db, creator_id=creator_id)]


@router.post(
    "/commission-overrides/bulk",
    response_model=list[CommissionOverrideRead],
    status_code=status.HTTP_201_CREATED,
)
def bulk_commission_overrides(payload: CommissionOverrideBulkCreate, db: Session = Depends(get_db)):
    overrides = set_commission_overrides_bulk(
        db,
        creator_ids=payload.creator_ids,
        rate=payload.rate,
        reason=payload.reason,
        effective_from=payload.effective_from,
        set_by=payload.set_by,
    )
    return [override_read(o) for o in overrides]


@router.post("/payouts/run", response_model=PayoutRunReport)
def trigger_batch_run(
    payload: PayoutRunRequest,
    db: Session = Depends(get_db),
    adapter: PayoutDisbursementAdapter = Depends(get_disbursement_adapter),
):
    now = utcnow()
    report = run_batch(
        db,
        payload.scheduled_date or now.date(),
        adapter,
        now=now,
        creator_ids=payload.creator_ids,
    )
    return _report_read(report)


@router.post("/payouts/creators/{creator_id}", response_model=PayoutRunReport)
def trigger_creator_payout(
    creator_id: int,
    payload: CreatorPayoutRequest,
    db: Session = Depends(get_db),
    adapter: PayoutDisbursementAdapter = Depends(get_disbursement_adapter),
):
    now = utcnow()
    report = run_creator_payout(
        db,
        creator_id=creator_id,
        scheduled_date=payload.scheduled_date or now.date(),
        adapter=adapter,
        now=now,
    )
    return _report_read(report)


@router.get("/payouts/pending", response_model=list[PayoutBatchRead])
def pending_batches(db: Session = Depends(get_db)):
    return [batch_read(batch) for batch in list_pending_batches(db)]


@router.get("/bonuses/statistics", response_model=BonusStatistics)
def bonus_statistics(db: Session = Depends(get_db)):
    stats = build_bonus_statistics(db)
    return BonusStatistics(
        total_awarded=stats["total_awarded"],
        total_paid=stats["total_paid"],
        total_outstanding=stats["total_outstanding"],
        total_sales_volume=stats["total_sales_volume"],
        award_count=stats["award_count"],
        tier_distribution=[TierCount(**row) for row in stats["tier_distribution"]],
        recent_awards=[award_read(award) for award in stats["recent_awards"]],
    )
