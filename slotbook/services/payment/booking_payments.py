# slotbook/services/payment/booking_payments.py
"""
Glue between the payment gateway and pay-first holds.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from slotbook.constants.booking import BookingStatus
from slotbook.core.exceptions import NotFoundOrUnauthorized
from slotbook.crud import booking as booking_crud
from slotbook.schemas.booking import PaymentConfirmation
from slotbook.services.pending_payment_service import PendingPaymentService
from .provider_factory import get_payment_gateway
from .provider_interface import (
    CreateHoldParams,
    GatewayEvent,
    GatewayEventType,
    HoldResult,
    PaymentError,
    PaymentGatewayInterface,
)

logger = logging.getLogger(__name__)


async def create_booking_hold(
    db: Session,
    owner_id: str,
    booking_id: str,
    gateway: Optional[PaymentGatewayInterface] = None,
) -> HoldResult:
    """
    Authorize payment for a pending-payment booking.

    The hold is only captured once the gateway reports it authorized, see
    ``handle_gateway_event``.
    """
    booking = booking_crud.get_owned(
        db, booking_id=booking_id, owner_id=owner_id, status=BookingStatus.PENDING_PAYMENT
    )
    if booking is None:
        raise NotFoundOrUnauthorized("No reserved spot awaiting payment")

    session_obj = booking.session
    gateway = gateway or get_payment_gateway()
    return await gateway.create_hold(
        CreateHoldParams(
            booking_id=booking.id,
            amount=session_obj.price_amount * booking.seats,
            currency=session_obj.currency,
            customer_email=booking.contact_email,
            customer_name=booking.contact_name,
            description=f"{session_obj.title} ({booking.seats} seat(s))",
            idempotency_key=f"hold_{booking.id}",
            metadata={"session_id": session_obj.id, "owner_id": booking.owner_id},
        )
    )


async def handle_gateway_event(
    db: Session,
    event: GatewayEvent,
    gateway: Optional[PaymentGatewayInterface] = None,
) -> Optional[PaymentConfirmation]:
    """
    Route a verified gateway event to the pending-payment engine.

    Returns the confirmation outcome for payment events, None otherwise.
    Gateway failures are logged and leave the booking pending; the expiry
    sweep cleans up holds that never complete.
    """
    if not event.booking_id:
        logger.info(f"Ignoring gateway event {event.event_id}: no booking_id in metadata")
        return None

    service = PendingPaymentService(db)

    if event.event_type == GatewayEventType.HOLD_AUTHORIZED:
        gateway = gateway or get_payment_gateway()
        try:
            await gateway.capture(
                event.payment_reference,
                idempotency_key=f"capture_{event.booking_id}",
            )
        except PaymentError as e:
            logger.error(
                f"Capture failed for booking {event.booking_id} ({e.code}): {e.message}"
            )
            return None
        return service.confirm_payment(event.booking_id, payment_reference=event.payment_reference)

    if event.event_type == GatewayEventType.PAYMENT_SUCCEEDED:
        return service.confirm_payment(event.booking_id, payment_reference=event.payment_reference)

    if event.event_type == GatewayEventType.CHECKOUT_EXPIRED:
        service.cancel_abandoned_hold(event.booking_id)
        return None

    logger.debug(f"Unhandled gateway event type for {event.event_id}")
    return None
