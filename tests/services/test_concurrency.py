# tests/services/test_concurrency.py
"""
Concurrent engine operations, each thread with its own database session.

SQLite runs with BEGIN IMMEDIATE, so writers serialize the same way they do
behind the session row lock on PostgreSQL.
"""
from concurrent.futures import ThreadPoolExecutor

from slotbook.constants.booking import BookingStatus
from slotbook.crud import capacity_ledger
from slotbook.crud import waitlist_entry as waitlist_crud
from slotbook.models import Booking
from slotbook.schemas.booking import RegistrationOutcomeStatus
from slotbook.services.registration_service import RegistrationService
from slotbook.services.waitlist_service import WaitlistService


def _run_in_threads(session_factory, jobs):
    """Run ``job(db)`` for every job on its own thread and session."""

    def _run(job):
        db = session_factory()
        try:
            return job(db)
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=len(jobs)) as pool:
        return list(pool.map(_run, jobs))


def test_concurrent_registrations_never_overbook(
    db_session, session_factory, make_session, make_contact, assert_invariant
):
    session_obj = make_session(max_capacity=3)
    session_id = session_obj.id
    db_session.commit()

    def _register(owner_id):
        return lambda db: RegistrationService(db).register(
            owner_id, [session_id], 0, make_contact(owner_id)
        ).outcomes[0]

    outcomes = _run_in_threads(session_factory, [_register(f"user_{i}") for i in range(8)])

    confirmed = [o for o in outcomes if o.status == RegistrationOutcomeStatus.confirmed]
    full = [o for o in outcomes if o.error_code == "SESSION_FULL"]
    assert len(confirmed) == 3
    assert len(full) == 5
    assert_invariant(session_id)


def test_concurrent_cancellations_promote_each_waiter_once(
    db_session, session_factory, make_session, fill_session, make_contact, assert_invariant
):
    session_obj = make_session(max_capacity=5)
    fillers = [(b.owner_id, b.id) for b in fill_session(session_obj)]
    waitlist = WaitlistService(db_session)
    for i in range(5):
        waitlist.join(f"waiter_{i}", session_obj.id, make_contact(f"Waiter {i}"))
    session_id = session_obj.id
    db_session.commit()

    def _cancel(owner_id, booking_id):
        return lambda db: RegistrationService(db).cancel(owner_id, booking_id)

    results = _run_in_threads(session_factory, [_cancel(o, b) for o, b in fillers])

    assert all(r.promoted for r in results)
    assert len({r.promoted_booking_id for r in results}) == 5
    db_session.expire_all()
    holds = (
        db_session.query(Booking)
        .filter(Booking.session_id == session_id, Booking.status == BookingStatus.PENDING_PAYMENT)
        .all()
    )
    assert sorted(b.owner_id for b in holds) == [f"waiter_{i}" for i in range(5)]
    assert waitlist_crud.count_for_session(db_session, session_id=session_id) == 0
    assert capacity_ledger.held_seats(db_session, session_id) == 5
    db_session.commit()
    assert_invariant(session_id)


def test_concurrent_joins_get_distinct_positions(
    db_session, session_factory, make_session, fill_session, make_contact
):
    session_obj = make_session(max_capacity=1)
    fill_session(session_obj)
    session_id = session_obj.id
    db_session.commit()

    def _join(owner_id):
        return lambda db: WaitlistService(db).join(owner_id, session_id, make_contact(owner_id))

    responses = _run_in_threads(session_factory, [_join(f"waiter_{i}") for i in range(6)])

    assert sorted(r.position for r in responses) == [1, 2, 3, 4, 5, 6]
