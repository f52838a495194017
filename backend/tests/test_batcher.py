import os
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from ledger.core.batcher import (  # noqa: E402
    build_idempotency_key,
    retry_open_batches,
    run_batch,
    run_creator_payout,
)
from ledger.core.errors import ValidationError  # noqa: E402
from ledger.core.ingestion import reverse_earning  # noqa: E402
from ledger.core.settlement import confirm_batch  # noqa: E402
from ledger.disbursement.retry import RetryPolicy  # noqa: E402
from ledger.models.bonuses import BonusAward  # noqa: E402
from ledger.models.earnings import EarningRecord  # noqa: E402
from ledger.models.payouts import PayoutBatch  # noqa: E402

from tests.factories import (  # noqa: E402
    FakeAdapter,
    make_creator,
    make_earning,
    retryable_error,
    setup_db,
    terminal_error,
)


def _earnings(db, creator_id):
    db.expire_all()
    return db.query(EarningRecord).filter(EarningRecord.creator_id == creator_id).order_by(EarningRecord.id).all()


def test_end_to_end_small_earning_waits_for_forty_five_day_deadline():
    SessionLocal = setup_db("batch_e2e")
    day0 = datetime(2026, 1, 13, 10, 0)
    adapter = FakeAdapter()
    with SessionLocal() as db:
        creator = make_creator(db)
        earning = make_earning(db, creator=creator, gross="30.00", earned_at=day0)
        assert earning.status == "LOCKED"

        report = run_batch(db, date(2026, 1, 30), adapter, now=day0 + timedelta(days=17))
        assert report.batches == []
        assert report.skipped == {creator.id: "below_minimum"}
        assert _earnings(db, creator.id)[0].status == "ELIGIBLE"

        report = run_batch(db, date(2026, 2, 15), adapter, now=day0 + timedelta(days=33))
        assert report.skipped == {creator.id: "below_minimum"}

        report = run_batch(db, date(2026, 2, 28), adapter, now=day0 + timedelta(days=46))
        assert len(report.batches) == 1
        batch = db.get(PayoutBatch, report.batches[0])
        assert batch.reason == "FORCED_45_DAY"
        assert Decimal(batch.total_amount) == Decimal("21.00")
        assert batch.status == "SUBMITTED"
        assert batch.earning_ids == {earning.id}
        assert _earnings(db, creator.id)[0].status == "PENDING_PAYOUT"
        assert len(adapter.submissions) == 1
        assert adapter.submissions[0].idempotency_key == build_idempotency_key(creator.id, date(2026, 2, 28))


def test_minimum_threshold_and_per_creator_minimum():
    SessionLocal = setup_db("batch_minimum")
    earned = datetime(2026, 1, 1, 8, 0)
    now = datetime(2026, 1, 30, 9, 0)
    with SessionLocal() as db:
        regular = make_creator(db)
        picky = make_creator(db, minimum_payout="100.00")
        make_earning(db, creator=regular, gross="40.00", earned_at=earned)
        make_earning(db, creator=picky, gross="40.00", earned_at=earned)

        report = run_batch(db, date(2026, 1, 30), FakeAdapter(), now=now)

        assert report.skipped == {picky.id: "below_minimum"}
        batch = db.query(PayoutBatch).filter(PayoutBatch.creator_id == regular.id).one()
        assert batch.reason == "MINIMUM_THRESHOLD"
        assert Decimal(batch.total_amount) == Decimal("28.00")
        assert report.total_amount == Decimal("28.00")


def test_rerun_for_same_date_creates_no_second_batch():
    SessionLocal = setup_db("batch_idempotent")
    now = datetime(2026, 1, 30, 9, 0)
    adapter = FakeAdapter()
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="50.00", earned_at=datetime(2026, 1, 2))
        first = run_batch(db, date(2026, 1, 30), adapter, now=now)
        # More earnings became eligible since, but the date already has a batch.
        make_earning(db, creator=creator, gross="50.00", earned_at=datetime(2026, 1, 3))
        second = run_batch(db, date(2026, 1, 30), adapter, now=now)

        assert len(first.batches) == 1
        assert second.batches == []
        assert second.duplicates == [creator.id]
        assert db.query(PayoutBatch).count() == 1
        assert len(adapter.submissions) == 1


def test_paused_creator_and_negative_balance_are_skipped():
    SessionLocal = setup_db("batch_skips")
    with SessionLocal() as db:
        paused = make_creator(db, status="paused")
        make_earning(db, creator=paused, gross="100.00", earned_at=datetime(2026, 1, 1))

        owing = make_creator(db)
        paid = make_earning(db, creator=owing, gross="100.00", earned_at=datetime(2026, 1, 1), source_transaction_id="big")
        first = run_batch(db, date(2026, 1, 30), FakeAdapter(), now=datetime(2026, 1, 30, 9, 0), creator_ids=[owing.id])
        confirm_batch(db, db.get(PayoutBatch, first.batches[0]), now=datetime(2026, 1, 31))
        db.refresh(paid)
        assert paid.status == "PAID"

        reverse_earning(db, source_transaction_id="big", now=datetime(2026, 2, 1))
        make_earning(db, creator=owing, gross="20.00", earned_at=datetime(2026, 2, 1))

        report = run_batch(db, date(2026, 3, 15), FakeAdapter(), now=datetime(2026, 3, 15, 9, 0))
        assert report.skipped[paused.id] == "creator_paused"
        assert report.skipped[owing.id] == "non_positive_balance"
        assert report.batches == []


def test_bonus_is_added_as_separate_line_item():
    SessionLocal = setup_db("batch_bonus")
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="100.00", earned_at=datetime(2026, 1, 1, 8, 0))
        make_earning(db, creator=creator, gross="20400.00", earned_at=datetime(2026, 1, 20, 8, 0))

        report = run_batch(db, date(2026, 1, 30), FakeAdapter(), now=datetime(2026, 1, 30, 9, 0))

        batch = db.get(PayoutBatch, report.batches[0])
        award = db.query(BonusAward).one()
        assert award.tier == 3
        assert batch.bonus_award_id == award.id
        assert award.payout_batch_id == batch.id
        assert Decimal(batch.earnings_amount) == Decimal("70.00")
        assert Decimal(batch.bonus_amount) == Decimal("200.00")
        assert Decimal(batch.total_amount) == Decimal("270.00")

        confirm_batch(db, batch, now=datetime(2026, 2, 2))
        db.refresh(award)
        assert award.status == "PAID"


def test_retryable_failure_backs_off_and_reuses_key():
    SessionLocal = setup_db("batch_retry")
    now = datetime(2026, 1, 30, 9, 0)
    adapter = FakeAdapter(outcomes=[retryable_error(), None])
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="50.00", earned_at=datetime(2026, 1, 2))

        report = run_batch(db, date(2026, 1, 30), adapter, now=now)
        batch = db.get(PayoutBatch, report.batches[0])
        assert report.retry_scheduled == [batch.id]
        assert batch.status == "OPEN"
        assert batch.attempt_count == 1
        assert batch.next_attempt_at == now + timedelta(seconds=300)
        assert all(e.status == "PENDING_PAYOUT" for e in _earnings(db, creator.id))

        assert retry_open_batches(db, adapter, now=now + timedelta(seconds=299)) == 0
        assert retry_open_batches(db, adapter, now=now + timedelta(seconds=300)) == 1

        db.expire_all()
        batch = db.get(PayoutBatch, batch.id)
        assert batch.status == "SUBMITTED"
        assert batch.attempt_count == 2
        keys = {submission.idempotency_key for submission in adapter.submissions}
        assert keys == {batch.idempotency_key}


def test_backoff_is_exponential_and_capped():
    policy = RetryPolicy(max_attempts=10, base_delay_seconds=300, max_delay_seconds=1000)
    assert [policy.backoff_seconds(n) for n in range(1, 5)] == [300, 600, 1000, 1000]
    assert policy.should_retry(retryable_error(), 9)
    assert not policy.should_retry(retryable_error(), 10)
    assert not policy.should_retry(terminal_error(), 1)


def test_exhausted_retries_release_earnings():
    SessionLocal = setup_db("batch_exhausted")
    now = datetime(2026, 1, 30, 9, 0)
    adapter = FakeAdapter(
        outcomes=[retryable_error(), retryable_error()],
        retry_policy=RetryPolicy(max_attempts=2, base_delay_seconds=60, max_delay_seconds=600),
    )
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="50.00", earned_at=datetime(2026, 1, 2))

        report = run_batch(db, date(2026, 1, 30), adapter, now=now)
        retry_open_batches(db, adapter, now=now + timedelta(seconds=60))

        db.expire_all()
        batch = db.get(PayoutBatch, report.batches[0])
        assert batch.status == "FAILED"
        assert batch.last_error == "provider timeout"
        earnings = _earnings(db, creator.id)
        assert [e.status for e in earnings] == ["ELIGIBLE"]
        assert earnings[0].payout_batch_id is None


def test_terminal_failure_releases_earnings_and_bonus():
    SessionLocal = setup_db("batch_terminal")
    now = datetime(2026, 1, 30, 9, 0)
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="100.00", earned_at=datetime(2026, 1, 1, 8, 0))
        make_earning(db, creator=creator, gross="6000.00", earned_at=datetime(2026, 1, 20, 8, 0))

        report = run_batch(db, date(2026, 1, 30), FakeAdapter(outcomes=[terminal_error()]), now=now)
        assert report.failed_batches == report.batches

        db.expire_all()
        batch = db.get(PayoutBatch, report.batches[0])
        assert batch.status == "FAILED"
        award = db.query(BonusAward).one()
        assert award.status == "EARNED"
        assert award.payout_batch_id is None

        # The next run picks up both the released earning and the carried-over award.
        later = run_batch(db, date(2026, 2, 15), FakeAdapter(), now=datetime(2026, 2, 15, 9, 0))
        retry = db.get(PayoutBatch, later.batches[0])
        assert Decimal(retry.earnings_amount) == Decimal("4270.00")
        assert Decimal(retry.bonus_amount) == Decimal("50.00")


def test_manual_payout_ignores_minimum():
    SessionLocal = setup_db("batch_manual")
    now = datetime(2026, 1, 22, 9, 0)
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="10.00", earned_at=datetime(2026, 1, 2))

        report = run_creator_payout(db, creator_id=creator.id, scheduled_date=now.date(), adapter=FakeAdapter(), now=now)
        batch = db.get(PayoutBatch, report.batches[0])
        assert batch.reason == "MANUAL_ADMIN"
        assert Decimal(batch.total_amount) == Decimal("7.00")

        with pytest.raises(ValidationError):
            run_creator_payout(
                db,
                creator_id=creator.id,
                scheduled_date=date(2026, 1, 23),
                adapter=FakeAdapter(),
                now=now + timedelta(days=1),
            )


def test_bonus_awarded_to_creator_with_no_payable_earnings_yet():
    SessionLocal = setup_db("batch_bonus_only_sales")
    adapter = FakeAdapter()
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="20500.00", earned_at=datetime(2026, 1, 20, 10, 0))

        first = run_batch(db, date(2026, 1, 30), adapter, now=datetime(2026, 1, 30, 9, 0))
        assert first.batches == []
        award = db.query(BonusAward).one()
        assert award.tier == 3
        assert Decimal(award.bonus_amount) == Decimal("200.00")
        assert award.period_start == datetime(2026, 1, 15)
        assert award.period_end == datetime(2026, 1, 30)
        assert award.payout_batch_id is None

        second = run_batch(db, date(2026, 2, 15), adapter, now=datetime(2026, 2, 15, 9, 0))
        batch = db.get(PayoutBatch, second.batches[0])
        assert Decimal(batch.earnings_amount) == Decimal("14350.00")
        assert Decimal(batch.bonus_amount) == Decimal("200.00")
        assert Decimal(batch.total_amount) == Decimal("14550.00")

        run_batch(db, date(2026, 2, 28), adapter, now=datetime(2026, 2, 28, 9, 0))
        db.expire_all()
        awards = db.query(BonusAward).all()
        assert len(awards) == 1
        assert awards[0].payout_batch_id == batch.id


def test_skipped_creators_still_earn_their_period_bonus():
    SessionLocal = setup_db("batch_bonus_skipped")
    with SessionLocal() as db:
        paused = make_creator(db, status="paused")
        make_earning(db, creator=paused, gross="100.00", earned_at=datetime(2026, 1, 1))
        make_earning(db, creator=paused, gross="6000.00", earned_at=datetime(2026, 1, 20))
        picky = make_creator(db, minimum_payout="1000.00")
        make_earning(db, creator=picky, gross="100.00", earned_at=datetime(2026, 1, 1))
        make_earning(db, creator=picky, gross="10000.00", earned_at=datetime(2026, 1, 21))

        report = run_batch(db, date(2026, 1, 30), FakeAdapter(), now=datetime(2026, 1, 30, 9, 0))

        assert report.skipped == {paused.id: "creator_paused", picky.id: "below_minimum"}
        tiers = {award.creator_id: award.tier for award in db.query(BonusAward).all()}
        assert tiers == {paused.id: 1, picky.id: 2}


def test_manual_payout_mid_period_does_not_award_overlapping_window():
    SessionLocal = setup_db("batch_bonus_manual")
    adapter = FakeAdapter()
    with SessionLocal() as db:
        creator = make_creator(db)
        make_earning(db, creator=creator, gross="100.00", earned_at=datetime(2026, 1, 2))
        make_earning(db, creator=creator, gross="20500.00", earned_at=datetime(2026, 1, 16))

        manual = run_creator_payout(
            db,
            creator_id=creator.id,
            scheduled_date=date(2026, 1, 22),
            adapter=adapter,
            now=datetime(2026, 1, 22, 9, 0),
        )
        batch = db.get(PayoutBatch, manual.batches[0])
        assert batch.period_start == datetime(2025, 12, 30)
        assert batch.period_end == datetime(2026, 1, 15)
        assert Decimal(batch.bonus_amount) == Decimal("0.00")
        assert db.query(BonusAward).count() == 0

        run_batch(db, date(2026, 1, 30), adapter, now=datetime(2026, 1, 30, 9, 0))
        run_batch(db, date(2026, 1, 30), adapter, now=datetime(2026, 1, 30, 10, 0))

        awards = db.query(BonusAward).all()
        assert [(a.period_start, a.period_end, a.tier) for a in awards] == [
            (datetime(2026, 1, 15), datetime(2026, 1, 30), 3)
        ]
