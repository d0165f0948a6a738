# slotbook/models/waitlist_entry.py
import uuid
from sqlalchemy import (
    Column, String, DateTime, Integer, ForeignKey, CheckConstraint, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from slotbook.db.base_class import Base
from slotbook.constants.booking import WaitlistKind
from slotbook.utils.clock import utcnow


class WaitlistEntry(Base):
    """
    Queued demand for a session.

    Two kinds share one queue:
    - new_spot (booking_id is NULL): the owner has no booking yet and wants a seat
    - add_guest (booking_id set): the owner holds a confirmed booking and waits
      for extra guest seats to attach to it
    """
    __tablename__ = "waitlist_entries"

    id = Column(String, primary_key=True, default=lambda: f"wle_{uuid.uuid4().hex[:12]}")
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)

    kind = Column(String(20), nullable=False, server_default=WaitlistKind.NEW_SPOT)
    booking_id = Column(String, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=True, index=True)

    # Queue length + 1 at insertion; ordering uses created_at
    position = Column(Integer, nullable=False)
    guest_count = Column(Integer, nullable=False, server_default="1", default=1)

    contact_name = Column(String, nullable=False)
    contact_email = Column(String, nullable=False)
    contact_phone = Column(String, nullable=True)

    # Up-front payment for pay-first joins, refunded if never promoted
    payment_reference = Column(String(255), nullable=True)

    # Set in Python so entries created in one transaction still order by insertion
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    session = relationship("Session", back_populates="waitlist_entries")
    booking = relationship("Booking")

    __table_args__ = (
        UniqueConstraint('session_id', 'owner_id', 'kind', name='unique_waitlist_session_owner_kind'),
        CheckConstraint('guest_count >= 1', name='check_waitlist_guest_count_positive'),
        Index('ix_waitlist_entries_session_kind_created', 'session_id', 'kind', 'created_at'),
    )

    @property
    def is_new_spot(self) -> bool:
        return self.booking_id is None
