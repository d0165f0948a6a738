# slotbook/services/pending_payment_service.py
"""
Pay-first holds created by waitlist promotion.

A hold keeps a seat aside (counted as "held", not charged) until the user
pays or the hold runs out. Expiry never touches ``occupied_seats``: the seat
was never charged, so cancelling the hold just frees it for the next
promotion.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from slotbook.constants.booking import BookingStatus, CancelReason, NotificationKind
from slotbook.core.exceptions import BookingError, CapacityExceeded, NotFoundOrUnauthorized
from slotbook.crud import booking as booking_crud
from slotbook.crud import capacity_ledger
from slotbook.schemas.booking import PaymentConfirmation, PaymentConfirmationStatus
from slotbook.schemas.sweep import ExpirySummary
from slotbook.services.notifications import queue_notification
from slotbook.services.refund_service import replace_booking_payment
from slotbook.services.waitlist_service import WaitlistService
from slotbook.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)


class PendingPaymentService:

    def __init__(self, db: Session):
        self.db = db

    def expire_pending_payments(self, now: Optional[datetime] = None) -> ExpirySummary:
        """
        Cancel every hold whose payment window has passed, then promote the
        next person in that session's queue.

        Each hold is handled in its own transaction. Failures are collected
        in the summary and the sweep moves on.
        """
        now = now or utcnow()
        summary = ExpirySummary()

        expired = [
            (b.id, b.session_id)
            for b in booking_crud.list_expired_holds(self.db, now=now)
        ]
        # End the read transaction before taking per-session locks
        self.db.commit()

        waitlist = WaitlistService(self.db)
        for booking_id, session_id in expired:
            summary.processed += 1
            try:
                if not self._expire_one(booking_id, session_id, now):
                    continue
                summary.expired_count += 1
                summary.succeeded += 1
            except Exception as e:
                logger.error(f"Failed to expire hold {booking_id}: {e}", exc_info=True)
                self.db.rollback()
                summary.errors.append(f"Booking {booking_id}: {e}")
                continue

            try:
                if waitlist.promote(session_id, now=now).promoted:
                    summary.promoted_count += 1
            except Exception as e:
                summary.errors.append(f"Promotion for session {session_id} after {booking_id}: {e}")

        if expired:
            logger.info(
                f"Expiry sweep: {summary.expired_count} hold(s) expired, "
                f"{summary.promoted_count} promotion(s), {len(summary.errors)} error(s)"
            )
        return summary

    def _expire_one(self, booking_id: str, session_id: str, now: datetime) -> bool:
        session_obj = capacity_ledger.lock(self.db, session_id)
        booking = booking_crud.get(self.db, booking_id, for_update=True)

        # Paid or cancelled while the sweep was running
        if (
            booking is None
            or booking.status != BookingStatus.PENDING_PAYMENT
            or as_utc(booking.pending_payment_expires_at) >= now
        ):
            self.db.rollback()
            return False

        booking_crud.transition(
            self.db,
            booking=booking,
            status=BookingStatus.CANCELLED,
            cancel_reason=CancelReason.HOLD_EXPIRED,
            now=now,
        )
        queue_notification(
            self.db,
            kind=NotificationKind.HOLD_EXPIRED,
            booking=booking,
            session_obj=session_obj,
            reason="payment_window_elapsed",
        )
        self.db.commit()
        logger.info(f"Hold {booking_id} on session {session_id} expired")
        return True

    def confirm_payment(
        self, booking_id: str, payment_reference: Optional[str] = None
    ) -> PaymentConfirmation:
        """
        Turn a paid hold into a confirmed booking and charge its seats.

        Safe to replay: a booking that is no longer pending is reported as
        already handled. When the seat cannot be charged any more the payment
        reference is still recorded (so the refund sweep can return the
        money) and the booking stays pending until it expires. An earlier
        payment carried over from the waitlist is queued for refund.
        """
        existing = booking_crud.get(self.db, booking_id)
        if existing is None:
            raise NotFoundOrUnauthorized(f"Booking {booking_id} not found")
        session_id = existing.session_id

        try:
            session_obj = capacity_ledger.lock(self.db, session_id)
            booking = booking_crud.get(self.db, booking_id, for_update=True)

            if booking.status != BookingStatus.PENDING_PAYMENT:
                self.db.rollback()
                logger.info(f"Payment for booking {booking_id} already handled ({booking.status})")
                return PaymentConfirmation(
                    booking_id=booking_id,
                    status=PaymentConfirmationStatus.already_handled,
                    message=f"Booking is {booking.status}",
                )

            if payment_reference:
                # An up-front waitlist payment on the hold is superseded by this one
                replace_booking_payment(
                    self.db, booking=booking, session_obj=session_obj, payment_reference=payment_reference
                )

            try:
                # The hold being confirmed is itself part of the held seats
                capacity_ledger.reserve(self.db, session_id, booking.seats)
            except CapacityExceeded:
                self.db.commit()
                logger.warning(
                    f"Payment {payment_reference} received for booking {booking_id} "
                    f"but session {session_id} has no seat left"
                )
                return PaymentConfirmation(
                    booking_id=booking_id,
                    status=PaymentConfirmationStatus.capacity_exceeded,
                    message="The session filled up before payment completed.",
                )

            booking_crud.transition(self.db, booking=booking, status=BookingStatus.CONFIRMED)
            queue_notification(
                self.db,
                kind=NotificationKind.BOOKING_CONFIRMED,
                booking=booking,
                session_obj=session_obj,
            )
            self.db.commit()

        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error confirming payment for booking {booking_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.info(f"Booking {booking_id} confirmed after payment")
        return PaymentConfirmation(booking_id=booking_id, status=PaymentConfirmationStatus.confirmed)

    def cancel_abandoned_hold(self, booking_id: str) -> bool:
        """
        Cancel a hold early because its checkout expired at the gateway.

        Returns True when a hold was cancelled (and a promotion attempted).
        """
        existing = booking_crud.get(self.db, booking_id)
        if existing is None:
            raise NotFoundOrUnauthorized(f"Booking {booking_id} not found")
        session_id = existing.session_id

        try:
            session_obj = capacity_ledger.lock(self.db, session_id)
            booking = booking_crud.get(self.db, booking_id, for_update=True)
            if booking.status != BookingStatus.PENDING_PAYMENT:
                self.db.rollback()
                return False

            booking_crud.transition(
                self.db,
                booking=booking,
                status=BookingStatus.CANCELLED,
                cancel_reason=CancelReason.CHECKOUT_EXPIRED,
            )
            queue_notification(
                self.db,
                kind=NotificationKind.HOLD_EXPIRED,
                booking=booking,
                session_obj=session_obj,
                reason="checkout_expired",
            )
            self.db.commit()
        except Exception as e:
            logger.error(f"Error cancelling abandoned hold {booking_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.info(f"Abandoned hold {booking_id} cancelled")
        try:
            WaitlistService(self.db).promote(session_id)
        except Exception as e:
            logger.error(f"Promotion after abandoned hold {booking_id} failed: {e}", exc_info=True)
        return True
