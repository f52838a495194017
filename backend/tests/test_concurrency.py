import os
from datetime import date, datetime

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from ledger.core.batcher import (  # noqa: E402
    BatchRunReport,
    process_candidate,
    run_batch,
    run_creator_payout,
    select_payout_candidates,
)
from ledger.core.clock import advance_ledger  # noqa: E402
from ledger.models.earnings import EarningRecord  # noqa: E402
from ledger.models.payouts import PayoutBatch  # noqa: E402

from tests.factories import FakeAdapter, make_creator, make_earning, setup_db  # noqa: E402


NOW = datetime(2026, 1, 30, 9, 0)
RUN_DATE = date(2026, 1, 30)


def _seed(db, creators=1):
    created = []
    for _ in range(creators):
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="50.00", earned_at=datetime(2026, 1, 2))
        make_earning(db, creator=creator, gross="20.00", earned_at=datetime(2026, 1, 5))
        created.append(creator)
    advance_ledger(db, now=NOW)
    return created


def _assert_claims_disjoint(db):
    db.expire_all()
    batches = db.query(PayoutBatch).all()
    seen = set()
    for batch in batches:
        assert not (batch.earning_ids & seen)
        seen |= batch.earning_ids
    for earning in db.query(EarningRecord).all():
        owners = [b.id for b in batches if earning.id in b.earning_ids]
        assert len(owners) <= 1
        if earning.status == "PENDING_PAYOUT":
            assert owners == [earning.payout_batch_id]


def test_stale_selection_loses_claim_to_concurrent_run():
    SessionLocal = setup_db("concurrency_conflict")
    with SessionLocal() as seed:
        creator = _seed(seed)[0]
        creator_id = creator.id

    with SessionLocal() as db_a, SessionLocal() as db_b:
        candidates = select_payout_candidates(db_a, now=NOW)
        assert [c.creator_id for c in candidates] == [creator_id]

        # Another worker pays the creator out manually first.
        manual = run_creator_payout(
            db_b,
            creator_id=creator_id,
            scheduled_date=date(2026, 1, 29),
            adapter=FakeAdapter(),
            now=NOW,
        )
        assert len(manual.batches) == 1

        report = BatchRunReport(scheduled_date=RUN_DATE)
        adapter = FakeAdapter()
        batch = process_candidate(
            db_a,
            candidates[0],
            scheduled_date=RUN_DATE,
            adapter=adapter,
            now=NOW,
            report=report,
        )

        assert batch is None
        assert report.conflicts == [creator_id]
        assert adapter.submissions == []
        assert db_a.query(PayoutBatch).count() == 1
        _assert_claims_disjoint(db_a)


def test_same_date_run_in_two_sessions_produces_one_batch():
    SessionLocal = setup_db("concurrency_duplicate")
    with SessionLocal() as seed:
        creator_id = _seed(seed)[0].id

    with SessionLocal() as db_a, SessionLocal() as db_b:
        candidates = select_payout_candidates(db_a, now=NOW)
        adapter_b = FakeAdapter()
        run_batch(db_b, RUN_DATE, adapter_b, now=NOW)

        report = BatchRunReport(scheduled_date=RUN_DATE)
        adapter_a = FakeAdapter()
        process_candidate(
            db_a,
            candidates[0],
            scheduled_date=RUN_DATE,
            adapter=adapter_a,
            now=NOW,
            report=report,
        )

        assert report.duplicates == [creator_id]
        assert adapter_a.submissions == []
        assert len(adapter_b.submissions) == 1
        assert db_a.query(PayoutBatch).count() == 1


def test_partial_overlap_keeps_claims_disjoint():
    SessionLocal = setup_db("concurrency_partial")
    with SessionLocal() as seed:
        first, second = _seed(seed, creators=2)
        first_id, second_id = first.id, second.id

    with SessionLocal() as db_a, SessionLocal() as db_b:
        candidates = select_payout_candidates(db_a, now=NOW)
        assert {c.creator_id for c in candidates} == {first_id, second_id}

        run_creator_payout(
            db_b,
            creator_id=first_id,
            scheduled_date=date(2026, 1, 29),
            adapter=FakeAdapter(),
            now=NOW,
        )

        report = BatchRunReport(scheduled_date=RUN_DATE)
        for candidate in candidates:
            process_candidate(
                db_a,
                candidate,
                scheduled_date=RUN_DATE,
                adapter=FakeAdapter(),
                now=NOW,
                report=report,
            )

        assert report.conflicts == [first_id]
        assert len(report.batches) == 1
        db_a.expire_all()
        assert db_a.get(PayoutBatch, report.batches[0]).creator_id == second_id
        assert db_a.query(PayoutBatch).count() == 2
        _assert_claims_disjoint(db_a)
