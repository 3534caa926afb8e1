import threading
from datetime import datetime, timedelta, timezone
from itertools import combinations

import pytest
from sqlmodel import Session, select

from roomcredits.booking import ledger
from roomcredits.booking.errors import (
    AlreadyCancelled,
    AlreadyCompleted,
    InsufficientCredits,
    InvalidInterval,
    MissingFields,
    NotFound,
    RoomConflict,
)
from roomcredits.booking.ledger import (
    cancel_booking,
    create_booking,
    effective_status,
    reset_all_credits,
)
from roomcredits.booking.models import ACTIVE, CANCELLED, COMPLETED, Booking, CreditTransaction, User
from roomcredits.booking.repository import UserRepository
from tests.helpers import at, balance


def transactions(session, user_id):
    session.expire_all()
    return session.exec(
        select(CreditTransaction).where(CreditTransaction.user_id == user_id).order_by(CreditTransaction.id)
    ).all()


def test_focus_45_minutes_debits_two_credits(session, seed):
    b = create_booking(session, seed.focus_a, seed.alice, at(10), at(10, 45))
    assert b.id is not None
    assert b.status == ACTIVE
    assert b.credits_spent == 2
    assert balance(session, seed.alice) == 8
    [tx] = transactions(session, seed.alice)
    assert tx.amount == -2
    assert tx.booking_id == b.id
    assert tx.reason.startswith("Booking Focus A from ")


def test_conference_30_minutes_debits_two_credits(session, seed):
    b = create_booking(session, seed.board, seed.alice, at(10), at(10, 30))
    assert b.credits_spent == 2
    assert balance(session, seed.alice) == 8


def test_touching_bookings_both_succeed(session, seed):
    create_booking(session, seed.focus_a, seed.alice, at(10), at(10, 30))
    create_booking(session, seed.focus_a, seed.bob, at(10, 30), at(11))
    assert balance(session, seed.alice) == 9
    assert balance(session, seed.bob) == 9


def test_overlapping_booking_is_rejected(session, seed):
    create_booking(session, seed.focus_a, seed.alice, at(10), at(10, 30))
    with pytest.raises(RoomConflict):
        create_booking(session, seed.focus_a, seed.bob, at(10, 15), at(10, 45))
    assert balance(session, seed.bob) == 10
    assert transactions(session, seed.bob) == []


def test_conflict_message_when_whole_category_is_full(session, seed):
    create_booking(session, seed.focus_a, seed.alice, at(10), at(11))
    create_booking(session, seed.focus_b, seed.bob, at(10), at(11))
    with pytest.raises(RoomConflict) as exc:
        create_booking(session, seed.focus_a, seed.carol, at(10), at(10, 30))
    assert "fully booked" in exc.value.message


def test_insufficient_credits_leaves_balance_unchanged(session, seed):
    with pytest.raises(InsufficientCredits):
        create_booking(session, seed.board, seed.carol, at(10), at(10, 30))
    assert balance(session, seed.carol) == 1
    assert session.exec(select(Booking)).all() == []


def test_exact_balance_is_enough(session, seed):
    create_booking(session, seed.focus_a, seed.carol, at(10), at(10, 30))
    assert balance(session, seed.carol) == 0


def test_invalid_requests(session, seed):
    with pytest.raises(MissingFields):
        create_booking(session, seed.focus_a, None, at(10), at(11))
    with pytest.raises(MissingFields):
        create_booking(session, seed.focus_a, seed.alice, at(10), None)
    with pytest.raises(InvalidInterval):
        create_booking(session, seed.focus_a, seed.alice, at(11), at(10))
    with pytest.raises(InvalidInterval):
        create_booking(session, seed.focus_a, seed.alice, at(10), at(10))
    with pytest.raises(NotFound):
        create_booking(session, 999, seed.alice, at(10), at(11))
    with pytest.raises(NotFound):
        create_booking(session, seed.focus_a, 999, at(10), at(11))
    assert balance(session, seed.alice) == 10


def test_unknown_rooms_do_not_register_locks(session, seed):
    known = set(ledger._room_locks)
    for room_id in range(1000, 1050):
        with pytest.raises(NotFound):
            create_booking(session, room_id, seed.alice, at(10), at(11))
    assert set(ledger._room_locks) == known
    assert balance(session, seed.alice) == 10


def test_aware_instants_are_stored_in_utc(session, seed):
    plus_two = timezone(timedelta(hours=2))
    b = create_booking(
        session, seed.focus_a, seed.alice,
        datetime(2031, 3, 4, 12, 0, tzinfo=plus_two),
        datetime(2031, 3, 4, 12, 30, tzinfo=plus_two),
    )
    assert b.start_time == at(10)
    assert b.end_time == at(10, 30)
    with pytest.raises(RoomConflict):
        create_booking(session, seed.focus_a, seed.bob, at(10, 15), at(10, 45))


def test_create_then_cancel_restores_balance(session, seed):
    b = create_booking(session, seed.board, seed.alice, at(10), at(11, 15))
    assert balance(session, seed.alice) == 4
    cancelled = cancel_booking(session, b.id)
    assert cancelled.status == CANCELLED
    assert balance(session, seed.alice) == 10
    debit, refund = transactions(session, seed.alice)
    assert (debit.amount, refund.amount) == (-6, 6)
    assert refund.booking_id == b.id
    assert refund.reason == "Refund for cancelled booking"


def test_second_cancel_never_refunds_twice(session, seed):
    b = create_booking(session, seed.focus_a, seed.alice, at(10), at(10, 30))
    cancel_booking(session, b.id)
    with pytest.raises(AlreadyCancelled):
        cancel_booking(session, b.id)
    assert balance(session, seed.alice) == 10
    assert len(transactions(session, seed.alice)) == 2


def test_cancel_unknown_booking(session, seed):
    with pytest.raises(NotFound):
        cancel_booking(session, 12345)


def test_completed_booking_cannot_be_cancelled(session, seed):
    b = create_booking(session, seed.focus_a, seed.alice, at(10), at(10, 30))
    later = at(12)
    assert effective_status(b, later) == COMPLETED
    assert effective_status(b, at(9)) == ACTIVE
    with pytest.raises(AlreadyCompleted):
        cancel_booking(session, b.id, now=later)
    assert balance(session, seed.alice) == 9


def test_cancel_frees_the_slot(session, seed):
    b = create_booking(session, seed.focus_a, seed.alice, at(10), at(10, 30))
    cancel_booking(session, b.id)
    again = create_booking(session, seed.focus_a, seed.bob, at(10), at(10, 30))
    assert again.status == ACTIVE


def test_guarded_debit_refuses_overdraft(session, seed):
    users = UserRepository(session)
    assert not users.debit(seed.carol, 2)
    assert users.debit(seed.carol, 1)
    session.commit()
    assert balance(session, seed.carol) == 0


def test_reset_converges_every_balance(session, seed):
    for user_id, credits in ((seed.alice, 0), (seed.bob, 5), (seed.carol, 10)):
        session.get(User, user_id).current_credits = credits
    session.commit()

    assert reset_all_credits(session) == 2
    assert [balance(session, u) for u in (seed.alice, seed.bob, seed.carol)] == [10, 10, 10]
    [alice_tx] = transactions(session, seed.alice)
    assert (alice_tx.amount, alice_tx.reason, alice_tx.booking_id) == (10, "weekly reset", None)
    assert transactions(session, seed.bob)[0].amount == 5
    assert transactions(session, seed.carol) == []

    # idempotent
    assert reset_all_credits(session) == 0
    assert len(session.exec(select(CreditTransaction)).all()) == 2


def test_reset_keeps_bookings(session, seed):
    b = create_booking(session, seed.board, seed.alice, at(10), at(11))
    reset_all_credits(session)
    assert balance(session, seed.alice) == 10
    session.expire_all()
    assert session.get(Booking, b.id).status == ACTIVE


def test_concurrent_overlapping_requests_have_a_single_winner(engine, seed):
    n = 8
    barrier = threading.Barrier(n)
    results = []
    lock = threading.Lock()

    def worker(i):
        with Session(engine) as s:
            barrier.wait()
            try:
                create_booking(s, seed.board, seed.alice, at(10, i), at(10, 30 + i))
                outcome = "ok"
            except RoomConflict:
                outcome = "conflict"
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert results.count("conflict") == n - 1
    with Session(engine) as s:
        assert len(s.exec(select(Booking)).all()) == 1
        assert s.get(User, seed.alice).current_credits == 8


def test_active_bookings_never_overlap_and_balances_stay_positive(session, seed):
    requests = [
        (seed.focus_a, seed.alice, at(9), at(10)),
        (seed.focus_a, seed.bob, at(9, 30), at(10, 30)),
        (seed.focus_a, seed.bob, at(10), at(10, 30)),
        (seed.focus_b, seed.carol, at(9), at(9, 30)),
        (seed.focus_b, seed.carol, at(10), at(10, 30)),
        (seed.board, seed.alice, at(9), at(11)),
        (seed.board, seed.bob, at(10, 45), at(11, 15)),
        (seed.board, seed.bob, at(11), at(12)),
        (seed.focus_a, seed.alice, at(10, 15), at(12)),
    ]
    for room_id, user_id, start, end in requests:
        try:
            create_booking(session, room_id, user_id, start, end)
        except (RoomConflict, InsufficientCredits):
            pass

    active = session.exec(select(Booking).where(Booking.status == ACTIVE)).all()
    for a, b in combinations(active, 2):
        if a.room_id == b.room_id:
            assert a.end_time <= b.start_time or b.end_time <= a.start_time
    for user in session.exec(select(User)).all():
        assert user.current_credits >= 0
        spent = sum(b.credits_spent for b in active if b.user_id == user.id)
        start = {seed.alice: 10, seed.bob: 10, seed.carol: 1}[user.id]
        assert user.current_credits == start - spent
