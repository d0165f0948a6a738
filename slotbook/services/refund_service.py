# slotbook/services/refund_service.py
"""
Post-session refund sweep.

Once a session is over, anyone who paid but never ended up with a seat gets
their money back:
- cancelled bookings with a payment, unless the owner cancelled within
  REFUND_GRACE_WINDOW_HOURS of the start (expired or abandoned holds are
  always refunded, and no cancellation time recorded means refund)
- waitlist entries still queued with an up-front payment
- payments detached from their booking or waitlist row before the session
  ended, queued in ``booking_refunds`` when the row moved on

Every gateway call is recorded in ``booking_refunds``. Successes are never
repeated; failures are retried on later runs until REFUND_MAX_ATTEMPTS.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from slotbook.constants.booking import BookingStatus, CancelReason, RefundSourceType, RefundStatus
from slotbook.core.config import settings
from slotbook.crud import booking as booking_crud
from slotbook.crud import booking_refund as refund_crud
from slotbook.crud import capacity_ledger
from slotbook.crud import waitlist_entry as waitlist_crud
from slotbook.models.booking import Booking
from slotbook.models.session import Session as SessionModel
from slotbook.schemas.sweep import RefundSummary
from slotbook.services.payment.provider_factory import get_payment_gateway
from slotbook.services.payment.provider_interface import (
    CreateRefundParams,
    PaymentError,
    PaymentGatewayInterface,
    RefundStatusEnum,
)
from slotbook.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)

# (source_type, source_id, payment_reference)
RefundCandidate = Tuple[str, str, str]


def forfeits_payment(booking: Booking, session_obj: SessionModel) -> bool:
    """True when the owner cancelled inside the grace window before the start."""
    if booking.cancel_reason != CancelReason.OWNER:
        return False
    cancelled_at = as_utc(booking.cancelled_at)
    if cancelled_at is None:
        return False
    cutoff = as_utc(session_obj.starts_at) - timedelta(hours=settings.REFUND_GRACE_WINDOW_HOURS)
    return cancelled_at > cutoff


def queue_payment_refund(db: Session, *, session_id: str, payment_reference: str) -> None:
    """
    Queue a payment whose booking or waitlist row no longer tracks it.

    Runs inside the caller's transaction; the refund itself is issued by the
    post-session sweep.
    """
    refund_crud.queue(
        db,
        session_id=session_id,
        source_type=RefundSourceType.PAYMENT,
        source_id=payment_reference,
        payment_reference=payment_reference,
    )
    logger.info(f"Queued payment {payment_reference} on session {session_id} for refund")


def replace_booking_payment(
    db: Session,
    *,
    booking: Booking,
    session_obj: SessionModel,
    payment_reference: Optional[str],
) -> None:
    """
    Point ``booking`` at ``payment_reference``.

    The payment it carried before is queued for refund, unless a late owner
    cancellation forfeited it. Call this before the booking leaves
    ``cancelled``, while the cancellation is still on the row.
    """
    previous = booking.payment_reference
    if previous and previous != payment_reference:
        if booking.status == BookingStatus.CANCELLED and forfeits_payment(booking, session_obj):
            logger.info(f"Payment {previous} on booking {booking.id} forfeited by late cancellation")
        else:
            queue_payment_refund(db, session_id=booking.session_id, payment_reference=previous)
    booking.payment_reference = payment_reference


class RefundService:

    def __init__(self, db: Session, gateway: Optional[PaymentGatewayInterface] = None):
        self.db = db
        self._gateway = gateway

    @property
    def gateway(self) -> PaymentGatewayInterface:
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    def _refund_candidates(self, session_obj: SessionModel, summary: RefundSummary) -> List[RefundCandidate]:
        candidates: List[RefundCandidate] = []

        for booking in booking_crud.list_cancelled_with_payment(self.db, session_id=session_obj.id):
            if forfeits_payment(booking, session_obj):
                summary.skipped += 1
                continue
            candidates.append((RefundSourceType.BOOKING, booking.id, booking.payment_reference))

        for entry in waitlist_crud.list_with_payment(self.db, session_id=session_obj.id):
            candidates.append((RefundSourceType.WAITLIST_ENTRY, entry.id, entry.payment_reference))

        for record in refund_crud.list_queued_payments(self.db, session_id=session_obj.id):
            candidates.append((RefundSourceType.PAYMENT, record.source_id, record.payment_reference))

        return candidates

    async def process_refunds_for_completed_sessions(
        self, now: Optional[datetime] = None
    ) -> RefundSummary:
        now = now or utcnow()
        summary = RefundSummary()

        for session_obj in capacity_ledger.list_ended(self.db, now=now):
            session_id = session_obj.id
            for source_type, source_id, payment_reference in self._refund_candidates(session_obj, summary):
                record = refund_crud.get_by_source(self.db, source_type=source_type, source_id=source_id)
                if record is not None and (
                    record.status == RefundStatus.SUCCEEDED
                    or record.attempts >= settings.REFUND_MAX_ATTEMPTS
                ):
                    summary.skipped += 1
                    continue

                try:
                    self.gateway
                except PaymentError as e:
                    logger.error(f"Refund sweep aborted: {e.message}")
                    summary.errors.append(e.message)
                    self.db.rollback()
                    return summary

                summary.processed += 1
                if await self._refund_one(session_id, source_type, source_id, payment_reference, summary):
                    summary.refunded += 1
                    summary.succeeded += 1

        # Close the read transaction left open by the queries above
        self.db.commit()

        if summary.processed:
            logger.info(
                f"Refund sweep: {summary.refunded} refunded, {summary.skipped} skipped, "
                f"{len(summary.errors)} error(s)"
            )
        return summary

    async def _refund_one(
        self,
        session_id: str,
        source_type: str,
        source_id: str,
        payment_reference: str,
        summary: RefundSummary,
    ) -> bool:
        try:
            result = await self.gateway.refund(
                CreateRefundParams(
                    payment_reference=payment_reference,
                    idempotency_key=f"refund_{source_type}_{source_id}",
                    metadata={"session_id": session_id, "source_type": source_type, "source_id": source_id},
                )
            )
            if result.status in (RefundStatusEnum.FAILED, RefundStatusEnum.CANCELLED):
                raise PaymentError(
                    code="REFUND_FAILED",
                    message=f"Gateway reported refund {result.refund_id} as {result.status.value}",
                    retryable=True,
                )
        except Exception as e:
            logger.error(f"Refund of {source_type} {source_id} ({payment_reference}) failed: {e}")
            summary.errors.append(f"{source_type} {source_id}: {e}")
            try:
                refund_crud.record_attempt(
                    self.db,
                    session_id=session_id,
                    source_type=source_type,
                    source_id=source_id,
                    payment_reference=payment_reference,
                    status=RefundStatus.FAILED,
                    failure_message=str(e),
                )
            except Exception as record_error:
                logger.error(f"Could not record failed refund for {source_id}: {record_error}", exc_info=True)
                self.db.rollback()
            return False

        try:
            refund_crud.record_attempt(
                self.db,
                session_id=session_id,
                source_type=source_type,
                source_id=source_id,
                payment_reference=payment_reference,
                status=RefundStatus.SUCCEEDED,
                provider_refund_id=result.refund_id,
            )
        except Exception as e:
            # The idempotency key keeps a retried refund from paying out twice
            logger.error(f"Refund {result.refund_id} issued but not recorded: {e}", exc_info=True)
            self.db.rollback()
            summary.errors.append(f"{source_type} {source_id}: refund not recorded: {e}")
            return False

        logger.info(f"Refunded {source_type} {source_id} ({payment_reference}): {result.refund_id}")
        return True
