# slotbook/models/session.py
import uuid
from sqlalchemy import Column, String, DateTime, Integer, CheckConstraint, func
from sqlalchemy.orm import relationship
from slotbook.db.base_class import Base


class Session(Base):
    """
    A bookable, capacity-limited timed session.

    ``occupied_seats`` is a maintained counter of the seats charged by
    confirmed bookings (owner + guests). It is only ever changed through the
    capacity ledger, inside the transaction that changes the booking state.
    """
    __tablename__ = "sessions"

    id = Column(
        String, primary_key=True, default=lambda: f"ses_{uuid.uuid4().hex[:12]}"
    )
    title = Column(String, nullable=False)
    starts_at = Column(DateTime(timezone=True), nullable=False, index=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)

    max_capacity = Column(Integer, nullable=False, server_default="20")
    occupied_seats = Column(Integer, nullable=False, server_default="0", default=0)

    # Price of one seat in the smallest currency unit
    price_amount = Column(Integer, nullable=False, server_default="0", default=0)
    currency = Column(String(3), nullable=False, server_default="EUR", default="EUR")

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    bookings = relationship("Booking", back_populates="session", lazy="dynamic")
    waitlist_entries = relationship("WaitlistEntry", back_populates="session", lazy="dynamic")

    __table_args__ = (
        CheckConstraint('max_capacity >= 0', name='check_session_capacity_positive'),
        CheckConstraint('occupied_seats >= 0', name='check_session_occupied_positive'),
        CheckConstraint('occupied_seats <= max_capacity', name='check_session_occupied_lte_capacity'),
    )

    @property
    def free_seats(self) -> int:
        return max(0, self.max_capacity - self.occupied_seats)

    @property
    def status(self) -> str:
        return "full" if self.occupied_seats >= self.max_capacity else "available"
