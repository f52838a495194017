from __future__ import annotations

import argparse
import logging
from datetime import date, datetime

from sqlalchemy.orm import Session

from ledger.core.batcher import BatchRunReport, run_batch
from ledger.core.db import SessionLocal
from ledger.core.metrics import record_job_run
from ledger.core.schedule import is_payout_day, next_payout_date
from ledger.core.time import utcnow
from ledger.disbursement.base import PayoutDisbursementAdapter
from ledger.disbursement.http import get_disbursement_adapter


logger = logging.getLogger(__name__)


def run_scheduled_payouts(
    db: Session,
    adapter: PayoutDisbursementAdapter,
    *,
    run_date: date | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> BatchRunReport | None:
    """Run the payout batch if ``run_date`` is a payout day (or forced)."""
    now = now or utcnow()
    run_date = run_date or now.date()
    if not force and not is_payout_day(run_date):
        logger.info(
            "Not a payout day (%s); next payout date is %s",
            run_date.isoformat(),
            next_payout_date(run_date).isoformat(),
        )
        return None

    try:
        report = run_batch(db, run_date, adapter, now=now)
    except Exception:
        record_job_run(job_name="payout_scheduler", success=False)
        raise
    record_job_run(job_name="payout_scheduler", success=True)
    logger.info(
        "Payout run for %s: %d batches, total %s, %d skipped, %d failures",
        run_date.isoformat(),
        len(report.batches),
        report.total_amount,
        len(report.skipped),
        len(report.failures),
    )
    return report


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run scheduled creator payouts.")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="Run date (YYYY-MM-DD).")
    parser.add_argument("--force", action="store_true", help="Run even if it is not a payout day.")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    adapter = get_disbursement_adapter()
    with SessionLocal() as db:
        run_scheduled_payouts(db, adapter, run_date=args.date, force=args.force)


if __name__ == "__main__":
    main()
