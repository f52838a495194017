from __future__ import annotations

import argparse
import logging
from datetime import datetime
from time import sleep

from sqlalchemy.orm import Session

from ledger.core.batcher import retry_open_batches
from ledger.core.clock import advance_ledger
from ledger.core.config import settings
from ledger.core.db import SessionLocal
from ledger.core.metrics import record_job_run
from ledger.core.time import utcnow
from ledger.disbursement.base import PayoutDisbursementAdapter
from ledger.disbursement.http import get_disbursement_adapter
from ledger.disbursement.webhooks import poll_submitted_batches


logger = logging.getLogger(__name__)


def run_tick(
    db: Session,
    adapter: PayoutDisbursementAdapter,
    *,
    now: datetime | None = None,
) -> dict[str, int]:
    """Advance the clock, retry due submissions, reconcile submitted batches."""
    now = now or utcnow()
    try:
        unlocked = advance_ledger(db, now=now)
        retried = retry_open_batches(db, adapter, now=now)
        polled = poll_submitted_batches(db, adapter, now=now)
    except Exception as exc:
        logger.exception("Payout worker tick failed: %s", exc)
        db.rollback()
        record_job_run(job_name="payout_worker", success=False)
        return {"unlocked": 0, "retried": 0, "confirmed": 0, "failed": 0}
    record_job_run(job_name="payout_worker", success=True)
    summary = {
        "unlocked": unlocked,
        "retried": retried,
        "confirmed": polled["confirmed"],
        "failed": polled["failed"] + polled["released"],
    }
    if any(summary.values()):
        logger.info("Payout worker tick: %s", summary)
    return summary


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run payout worker.")
    parser.add_argument("--once", action="store_true", help="Run once and exit.")
    parser.add_argument("--poll-interval", type=float, default=None)
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    poll_interval = (
        float(args.poll_interval)
        if args.poll_interval is not None
        else float(settings.WORKER_POLL_INTERVAL_SECONDS)
    )
    adapter = get_disbursement_adapter()

    while True:
        with SessionLocal() as db:
            run_tick(db, adapter)
        if args.once:
            break
        sleep(max(0.1, poll_interval))


if __name__ == "__main__":
    main()
