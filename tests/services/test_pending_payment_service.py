# tests/services/test_pending_payment_service.py
from datetime import timedelta

import pytest

from slotbook.constants.booking import (
    BookingStatus,
    CancelReason,
    NotificationKind,
    RefundSourceType,
    RefundStatus,
)
from slotbook.core.exceptions import NotFoundOrUnauthorized
from slotbook.crud import booking as booking_crud
from slotbook.crud import booking_refund as refund_crud
from slotbook.crud import notification_outbox
from slotbook.schemas.booking import PaymentConfirmationStatus
from slotbook.services.pending_payment_service import PendingPaymentService
from slotbook.services.registration_service import RegistrationService
from slotbook.services.waitlist_service import WaitlistService
from slotbook.utils.clock import as_utc, utcnow


@pytest.fixture
def seed_hold(seed_booking):
    def _seed_hold(session_obj, owner_id, expires_in=timedelta(hours=24), **fields):
        return seed_booking(
            session_obj,
            owner_id,
            status=BookingStatus.PENDING_PAYMENT,
            pending_payment_expires_at=utcnow() + expires_in,
            **fields,
        )

    return _seed_hold


def test_expire_cancels_only_elapsed_holds(db_session, make_session, seed_hold, assert_invariant):
    session_obj = make_session(max_capacity=5)
    elapsed = seed_hold(session_obj, "late", expires_in=timedelta(minutes=-5))
    running = seed_hold(session_obj, "on_time", expires_in=timedelta(hours=3))

    summary = PendingPaymentService(db_session).expire_pending_payments()

    assert summary.expired_count == 1
    assert summary.errors == []
    assert booking_crud.get(db_session, elapsed.id).status == BookingStatus.CANCELLED
    assert booking_crud.get(db_session, running.id).status == BookingStatus.PENDING_PAYMENT
    # Holds were never charged, so expiry leaves the counter alone
    assert session_obj.occupied_seats == 0
    expired = notification_outbox.get_by_kind(db_session, NotificationKind.HOLD_EXPIRED)
    assert expired[0].payload["reason"] == "payment_window_elapsed"
    assert_invariant(session_obj.id)


def test_expire_with_nothing_to_do(db_session, make_session, seed_hold):
    session_obj = make_session(max_capacity=5)
    seed_hold(session_obj, "on_time")

    summary = PendingPaymentService(db_session).expire_pending_payments()

    assert summary.processed == 0
    assert summary.expired_count == 0


def test_expire_stamps_the_sweep_time_and_reason(db_session, make_session, seed_hold):
    session_obj = make_session(max_capacity=5)
    hold = seed_hold(session_obj, "alice", expires_in=timedelta(hours=2))
    sweep_time = utcnow() + timedelta(hours=3)

    summary = PendingPaymentService(db_session).expire_pending_payments(now=sweep_time)

    assert summary.expired_count == 1
    booking = booking_crud.get(db_session, hold.id)
    assert booking.status == BookingStatus.CANCELLED
    assert as_utc(booking.cancelled_at) == sweep_time
    assert booking.cancel_reason == CancelReason.HOLD_EXPIRED


def test_confirm_payment_charges_the_held_seat(
    db_session, make_session, seed_hold, seed_booking, assert_invariant
):
    session_obj = make_session(max_capacity=3)
    hold = seed_hold(session_obj, "alice")
    seed_booking(session_obj, "filler_1")
    seed_booking(session_obj, "filler_2")

    confirmation = PendingPaymentService(db_session).confirm_payment(hold.id, payment_reference="pi_123")

    assert confirmation.status == PaymentConfirmationStatus.confirmed
    booking = booking_crud.get(db_session, hold.id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_reference == "pi_123"
    assert booking.pending_payment_expires_at is None
    assert session_obj.occupied_seats == 3
    assert notification_outbox.get_by_kind(db_session, NotificationKind.BOOKING_CONFIRMED)
    assert_invariant(session_obj.id)


def test_confirm_payment_replay_is_already_handled(db_session, make_session, seed_hold):
    session_obj = make_session(max_capacity=3)
    hold = seed_hold(session_obj, "alice")
    service = PendingPaymentService(db_session)
    service.confirm_payment(hold.id, payment_reference="pi_123")

    replay = service.confirm_payment(hold.id, payment_reference="pi_123")

    assert replay.status == PaymentConfirmationStatus.already_handled
    assert session_obj.occupied_seats == 1


def test_confirm_payment_on_overfilled_session_keeps_reference(db_session, make_session, seed_hold, seed_booking):
    session_obj = make_session(max_capacity=1)
    hold = seed_hold(session_obj, "alice")
    seed_booking(session_obj, "filler")

    confirmation = PendingPaymentService(db_session).confirm_payment(hold.id, payment_reference="pi_late")

    assert confirmation.status == PaymentConfirmationStatus.capacity_exceeded
    booking = booking_crud.get(db_session, hold.id)
    assert booking.status == BookingStatus.PENDING_PAYMENT
    assert booking.payment_reference == "pi_late"
    assert session_obj.occupied_seats == 1


def test_confirm_payment_unknown_booking(db_session):
    with pytest.raises(NotFoundOrUnauthorized):
        PendingPaymentService(db_session).confirm_payment("bkg_missing")


def test_abandoned_hold_is_cancelled_and_next_waiter_promoted(
    db_session, make_session, seed_hold, seed_booking, make_contact
):
    session_obj = make_session(max_capacity=2)
    hold = seed_hold(session_obj, "alice")
    seed_booking(session_obj, "filler")
    WaitlistService(db_session).join("bob", session_obj.id, make_contact("Bob"))
    service = PendingPaymentService(db_session)

    assert service.cancel_abandoned_hold(hold.id) is True
    assert service.cancel_abandoned_hold(hold.id) is False

    abandoned = booking_crud.get(db_session, hold.id)
    assert abandoned.status == BookingStatus.CANCELLED
    assert abandoned.cancel_reason == CancelReason.CHECKOUT_EXPIRED
    bob = booking_crud.get_for_owner(db_session, session_id=session_obj.id, owner_id="bob")
    assert bob.status == BookingStatus.PENDING_PAYMENT


def test_confirm_payment_queues_the_superseded_waitlist_payment(
    db_session, make_session, fill_session, make_contact
):
    session_obj = make_session(max_capacity=1)
    filler = fill_session(session_obj)[0]
    WaitlistService(db_session).join("walt", session_obj.id, make_contact("Walt"), payment_reference="pi_wait")
    hold_id = RegistrationService(db_session).cancel(filler.owner_id, filler.id).promoted_booking_id
    assert booking_crud.get(db_session, hold_id).payment_reference == "pi_wait"

    confirmation = PendingPaymentService(db_session).confirm_payment(hold_id, payment_reference="pi_hold")

    assert confirmation.status == PaymentConfirmationStatus.confirmed
    assert booking_crud.get(db_session, hold_id).payment_reference == "pi_hold"
    queued = refund_crud.get_by_source(db_session, source_type=RefundSourceType.PAYMENT, source_id="pi_wait")
    assert queued.status == RefundStatus.PENDING
    assert queued.payment_reference == "pi_wait"
    assert queued.session_id == session_obj.id
