import os
from datetime import date, datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from ledger.jobs.payout_scheduler import run_scheduled_payouts  # noqa: E402
from ledger.jobs.payout_worker import run_tick  # noqa: E402
from ledger.models.payouts import PayoutBatch  # noqa: E402

from tests.factories import FakeAdapter, make_creator, make_earning, retryable_error, setup_db  # noqa: E402


def test_scheduler_only_runs_on_payout_days():
    SessionLocal = setup_db("jobs_scheduler")
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="50.00", earned_at=datetime(2026, 1, 2))

        skipped = run_scheduled_payouts(
            db,
            FakeAdapter(),
            run_date=date(2026, 1, 29),
            now=datetime(2026, 1, 29, 6, 0),
        )
        assert skipped is None
        assert db.query(PayoutBatch).count() == 0

        forced = run_scheduled_payouts(
            db,
            FakeAdapter(),
            run_date=date(2026, 1, 29),
            force=True,
            now=datetime(2026, 1, 29, 6, 0),
        )
        assert len(forced.batches) == 1


def test_scheduler_treats_last_day_of_short_month_as_payout_day():
    SessionLocal = setup_db("jobs_february")
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="50.00", earned_at=datetime(2026, 2, 1))

        report = run_scheduled_payouts(
            db,
            FakeAdapter(),
            run_date=date(2026, 2, 28),
            now=datetime(2026, 2, 28, 6, 0),
        )
        assert report is not None
        assert len(report.batches) == 1


def test_worker_tick_unlocks_retries_and_reconciles():
    SessionLocal = setup_db("jobs_worker")
    now = datetime(2026, 1, 30, 9, 0)
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="50.00", earned_at=datetime(2026, 1, 2))
        late = make_earning(db, creator=creator, gross="10.00", earned_at=datetime(2026, 1, 20))

        adapter = FakeAdapter(outcomes=[retryable_error()])
        report = run_scheduled_payouts(db, adapter, run_date=date(2026, 1, 30), now=now)
        batch_id = report.batches[0]

        later = now + timedelta(days=10)
        adapter.statuses[f"pay_{batch_id}_2"] = "COMPLETED"
        first = run_tick(db, adapter, now=later)
        assert first == {"unlocked": 1, "retried": 1, "confirmed": 1, "failed": 0}

        db.expire_all()
        assert db.get(PayoutBatch, batch_id).status == "CONFIRMED"
        db.refresh(late)
        assert late.status == "ELIGIBLE"
