# tests/services/test_booking_payments.py
"""
Tests for routing gateway events into the pending-payment engine.

The gateway is mocked; bookings live in the test database.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from slotbook.constants.booking import BookingStatus
from slotbook.core.exceptions import NotFoundOrUnauthorized
from slotbook.crud import booking as booking_crud
from slotbook.schemas.booking import PaymentConfirmationStatus
from slotbook.services.payment.booking_payments import create_booking_hold, handle_gateway_event
from slotbook.services.payment.provider_interface import (
    GatewayEvent,
    GatewayEventType,
    HoldResult,
    HoldStatusEnum,
    PaymentError,
)
from slotbook.utils.clock import utcnow


def run_async(coro):
    """Helper to run async coroutines in sync tests."""
    return asyncio.run(coro)


def _event(event_type, booking_id="bkg_missing", payment_reference="pi_123"):
    return GatewayEvent(
        event_id="evt_1",
        event_type=event_type,
        booking_id=booking_id,
        payment_reference=payment_reference,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def gateway():
    mock = MagicMock()
    mock.create_hold = AsyncMock(return_value=HoldResult(
        payment_reference="pi_123", client_secret="secret", status=HoldStatusEnum.REQUIRES_PAYMENT_METHOD
    ))
    mock.capture = AsyncMock()
    return mock


@pytest.fixture
def hold(make_session, seed_booking):
    session_obj = make_session(max_capacity=5, price_amount=1500)
    return seed_booking(
        session_obj,
        "alice",
        guest_count=1,
        status=BookingStatus.PENDING_PAYMENT,
        pending_payment_expires_at=utcnow() + timedelta(hours=24),
    )


def test_create_booking_hold_charges_every_seat(db_session, gateway, hold):
    result = run_async(create_booking_hold(db_session, "alice", hold.id, gateway=gateway))

    assert result.payment_reference == "pi_123"
    params = gateway.create_hold.await_args.args[0]
    assert params.amount == 3000
    assert params.idempotency_key == f"hold_{hold.id}"
    assert params.customer_email == "alice@example.com"


def test_create_booking_hold_requires_pending_booking_of_owner(db_session, gateway, hold):
    with pytest.raises(NotFoundOrUnauthorized):
        run_async(create_booking_hold(db_session, "mallory", hold.id, gateway=gateway))
    gateway.create_hold.assert_not_awaited()


def test_authorized_hold_is_captured_then_confirmed(db_session, gateway, hold):
    booking_id = hold.id
    db_session.commit()

    confirmation = run_async(handle_gateway_event(
        db_session, _event(GatewayEventType.HOLD_AUTHORIZED, booking_id=booking_id), gateway=gateway
    ))

    gateway.capture.assert_awaited_once_with("pi_123", idempotency_key=f"capture_{booking_id}")
    assert confirmation.status == PaymentConfirmationStatus.confirmed
    booking = booking_crud.get(db_session, booking_id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_reference == "pi_123"


def test_failed_capture_leaves_hold_pending(db_session, gateway, hold):
    gateway.capture.side_effect = PaymentError(code="CARD_ERROR", message="declined", retryable=True)

    result = run_async(handle_gateway_event(
        db_session, _event(GatewayEventType.HOLD_AUTHORIZED, booking_id=hold.id), gateway=gateway
    ))

    assert result is None
    assert booking_crud.get(db_session, hold.id).status == BookingStatus.PENDING_PAYMENT


def test_payment_succeeded_confirms_without_capture(db_session, gateway, hold):
    confirmation = run_async(handle_gateway_event(
        db_session, _event(GatewayEventType.PAYMENT_SUCCEEDED, booking_id=hold.id), gateway=gateway
    ))

    assert confirmation.status == PaymentConfirmationStatus.confirmed
    gateway.capture.assert_not_awaited()


def test_expired_checkout_cancels_hold(db_session, gateway, hold):
    result = run_async(handle_gateway_event(
        db_session, _event(GatewayEventType.CHECKOUT_EXPIRED, booking_id=hold.id), gateway=gateway
    ))

    assert result is None
    assert booking_crud.get(db_session, hold.id).status == BookingStatus.CANCELLED


def test_events_without_booking_or_of_unknown_type_are_ignored(db_session, gateway, hold):
    assert run_async(handle_gateway_event(
        db_session, _event(GatewayEventType.PAYMENT_SUCCEEDED, booking_id=None), gateway=gateway
    )) is None
    assert run_async(handle_gateway_event(
        db_session, _event(GatewayEventType.UNKNOWN, booking_id=hold.id), gateway=gateway
    )) is None
    assert booking_crud.get(db_session, hold.id).status == BookingStatus.PENDING_PAYMENT
