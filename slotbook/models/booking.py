# slotbook/models/booking.py
import uuid
from sqlalchemy import (
    Column, String, DateTime, Integer, ForeignKey, CheckConstraint, UniqueConstraint, Index, func,
)
from sqlalchemy.orm import relationship
from slotbook.db.base_class import Base
from slotbook.constants.booking import BookingStatus


class Booking(Base):
    """
    One owner's reservation for a session, covering themselves plus 0-10 guests.

    There is a single row per (session, owner): cancelling and registering
    again, or being promoted from the waitlist after a cancellation, reuses it.
    """
    __tablename__ = "bookings"

    id = Column(String, primary_key=True, default=lambda: f"bkg_{uuid.uuid4().hex[:12]}")
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)  # No FK - users live in the identity service

    # Contact snapshot taken at booking time
    contact_name = Column(String, nullable=False)
    contact_email = Column(String, nullable=False)
    contact_phone = Column(String, nullable=True)

    guest_count = Column(Integer, nullable=False, server_default="0", default=0)
    status = Column(String(20), nullable=False, server_default=BookingStatus.CONFIRMED)  # pending_payment, confirmed, cancelled
    pending_payment_expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    payment_reference = Column(String(255), nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(20), nullable=True)  # owner, hold_expired, checkout_expired
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    session = relationship("Session", back_populates="bookings")

    __table_args__ = (
        UniqueConstraint('session_id', 'owner_id', name='unique_booking_session_owner'),
        CheckConstraint('guest_count >= 0 AND guest_count <= 10', name='check_booking_guest_count'),
        Index('ix_bookings_session_status', 'session_id', 'status'),
    )

    @property
    def seats(self) -> int:
        """Seats this booking occupies once confirmed (owner + guests)."""
        return 1 + (self.guest_count or 0)
