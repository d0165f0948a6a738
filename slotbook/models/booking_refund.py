# slotbook/models/booking_refund.py
import uuid
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, UniqueConstraint, func
from slotbook.db.base_class import Base


class BookingRefund(Base):
    """
    Refund of a cancelled booking, an unpromoted waitlist entry, or a payment
    detached from either before the session ended.

    One row per refundable source; it makes the post-event sweep idempotent
    and keeps the retry count for failed gateway calls.
    """
    __tablename__ = "booking_refunds"

    id = Column(String, primary_key=True, default=lambda: f"brf_{uuid.uuid4().hex[:12]}")
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)

    source_type = Column(String(20), nullable=False)  # booking, waitlist_entry
    source_id = Column(String, nullable=False)
    payment_reference = Column(String(255), nullable=False)

    status = Column(String(20), nullable=False)  # pending, succeeded, failed
    provider_refund_id = Column(String(255), nullable=True)
    attempts = Column(Integer, nullable=False, server_default="0", default=0)
    failure_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('source_type', 'source_id', name='unique_booking_refund_source'),
    )

    @property
    def is_successful(self) -> bool:
        return self.status == "succeeded"
