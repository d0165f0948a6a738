# slotbook/crud/crud_booking_refund.py
from typing import List, Optional
from sqlalchemy.orm import Session

from slotbook.constants.booking import RefundSourceType, RefundStatus
from slotbook.models.booking_refund import BookingRefund


class CRUDBookingRefund:
    """CRUD operations for BookingRefund."""

    def get_by_source(
        self, db: Session, *, source_type: str, source_id: str
    ) -> Optional[BookingRefund]:
        """Get the refund record for a booking or waitlist entry."""
        return (
            db.query(BookingRefund)
            .filter(
                BookingRefund.source_type == source_type,
                BookingRefund.source_id == source_id,
            )
            .first()
        )

    def queue(
        self,
        db: Session,
        *,
        session_id: str,
        source_type: str,
        source_id: str,
        payment_reference: str,
    ) -> BookingRefund:
        """
        Set a refund aside for the post-session sweep.

        Flushes only; the row commits with the caller's transaction. Queuing
        the same source twice returns the existing row.
        """
        record = self.get_by_source(db, source_type=source_type, source_id=source_id)
        if record is not None:
            return record

        record = BookingRefund(
            session_id=session_id,
            source_type=source_type,
            source_id=source_id,
            payment_reference=payment_reference,
            status=RefundStatus.PENDING,
            attempts=0,
        )
        db.add(record)
        db.flush()
        return record

    def list_queued_payments(self, db: Session, *, session_id: str) -> List[BookingRefund]:
        """Detached payments for a session that have not been refunded yet."""
        return (
            db.query(BookingRefund)
            .filter(
                BookingRefund.session_id == session_id,
                BookingRefund.source_type == RefundSourceType.PAYMENT,
                BookingRefund.status != RefundStatus.SUCCEEDED,
            )
            .order_by(BookingRefund.created_at.asc())
            .all()
        )

    def record_attempt(
        self,
        db: Session,
        *,
        session_id: str,
        source_type: str,
        source_id: str,
        payment_reference: str,
        status: str,
        provider_refund_id: Optional[str] = None,
        failure_message: Optional[str] = None,
    ) -> BookingRefund:
        """Create or update the refund record with the outcome of one gateway call."""
        record = self.get_by_source(db, source_type=source_type, source_id=source_id)
        if record is None:
            record = BookingRefund(
                session_id=session_id,
                source_type=source_type,
                source_id=source_id,
                payment_reference=payment_reference,
                attempts=0,
            )
            db.add(record)

        record.status = status
        record.attempts = (record.attempts or 0) + 1
        record.payment_reference = payment_reference
        if status == RefundStatus.SUCCEEDED:
            record.provider_refund_id = provider_refund_id
            record.failure_message = None
        else:
            record.failure_message = failure_message

        db.commit()
        db.refresh(record)
        return record


booking_refund = CRUDBookingRefund()
