import os
import random
from datetime import datetime
from decimal import Decimal

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from ledger.core.errors import InvariantViolationError  # noqa: E402
from ledger.core.lifecycle import (  # noqa: E402
    BATCH_TRANSITIONS,
    EARNING_TERMINAL,
    can_transition_earning,
    ensure_batch_transition,
    ensure_earning_transition,
    transition_earning,
)
from ledger.core.money import apply_rate, to_money  # noqa: E402
from ledger.models.earnings import EarningRecord  # noqa: E402
from ledger.models.enums import EarningStatusEnum  # noqa: E402

from tests.factories import make_creator, make_earning, setup_db  # noqa: E402


STATUSES = [member.value for member in EarningStatusEnum]
FORWARD_RANK = {"LOCKED": 0, "ELIGIBLE": 1, "PENDING_PAYOUT": 2, "PAID": 3}


def test_net_amount_rounds_half_up_to_cents():
    assert apply_rate(Decimal("30.00"), Decimal("70")) == Decimal("21.00")
    assert apply_rate(Decimal("0.05"), Decimal("70")) == Decimal("0.04")
    assert apply_rate(Decimal("10.01"), Decimal("50")) == Decimal("5.01")
    assert to_money("2.345") == Decimal("2.35")


@pytest.mark.parametrize("seed", range(25))
def test_random_transition_sequences_never_move_backwards(seed):
    rng = random.Random(seed)
    status = EarningStatusEnum.LOCKED.value
    for _ in range(40):
        target = rng.choice(STATUSES)
        if can_transition_earning(status, target):
            ensure_earning_transition(status, target)
            released = status == "PENDING_PAYOUT" and target == "ELIGIBLE"
            if target in FORWARD_RANK and status in FORWARD_RANK and not released:
                assert FORWARD_RANK[target] > FORWARD_RANK[status]
            status = target
        else:
            with pytest.raises(InvariantViolationError):
                ensure_earning_transition(status, target)
        if status in EARNING_TERMINAL:
            for other in STATUSES:
                assert not can_transition_earning(status, other)


def test_terminal_statuses_and_skips_are_rejected():
    with pytest.raises(InvariantViolationError):
        ensure_earning_transition("LOCKED", "PAID")
    with pytest.raises(InvariantViolationError):
        ensure_earning_transition("PAID", "ELIGIBLE")
    with pytest.raises(InvariantViolationError):
        ensure_earning_transition("CANCELLED", "LOCKED")
    with pytest.raises(InvariantViolationError):
        ensure_batch_transition("CONFIRMED", "FAILED")
    with pytest.raises(InvariantViolationError):
        ensure_batch_transition("FAILED", "SUBMITTED")
    assert ("OPEN", "CONFIRMED") in BATCH_TRANSITIONS


def test_stale_version_loses_compare_and_swap():
    SessionLocal = setup_db("lifecycle_cas")
    with SessionLocal() as db_a, SessionLocal() as db_b:
        creator = make_creator(db_a)
        earning = make_earning(db_a, creator=creator, earned_at=datetime(2026, 1, 1, 12, 0))

        fresh = db_b.get(EarningRecord, earning.id)
        assert transition_earning(db_b, fresh, EarningStatusEnum.CANCELLED)
        db_b.commit()

        # db_a still holds version 1 in memory.
        assert earning.version == 1
        assert not transition_earning(db_a, earning, EarningStatusEnum.ELIGIBLE)
        db_a.rollback()

        db_a.expire_all()
        stored = db_a.get(EarningRecord, earning.id)
        assert stored.status == "CANCELLED"
        assert stored.version == 2
