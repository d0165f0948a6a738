# slotbook/crud/crud_booking.py
"""
CRUD operations for bookings.

Status changes go through ``transition`` so every write respects the booking
state machine. Methods flush but never commit; the calling service owns the
transaction.
"""
import logging
from datetime import datetime
from typing import Optional, List

from sqlalchemy import and_
from sqlalchemy.orm import Session

from slotbook.constants.booking import BookingStatus
from slotbook.models.booking import Booking
from slotbook.schemas.booking import ContactDetails
from slotbook.utils.clock import utcnow

logger = logging.getLogger(__name__)


class CRUDBooking:
    """CRUD operations for Booking."""

    def get(self, db: Session, booking_id: str, *, for_update: bool = False) -> Optional[Booking]:
        query = db.query(Booking).filter(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def get_for_owner(self, db: Session, *, session_id: str, owner_id: str) -> Optional[Booking]:
        """Get the owner's booking row for a session (any status)."""
        return db.query(Booking).filter(
            and_(
                Booking.session_id == session_id,
                Booking.owner_id == owner_id,
            )
        ).first()

    def get_owned(
        self,
        db: Session,
        *,
        booking_id: str,
        owner_id: str,
        status: Optional[str] = BookingStatus.CONFIRMED,
        for_update: bool = False,
    ) -> Optional[Booking]:
        """Get a booking only if it belongs to ``owner_id`` (and has ``status``)."""
        query = db.query(Booking).filter(
            and_(Booking.id == booking_id, Booking.owner_id == owner_id)
        )
        if status:
            query = query.filter(Booking.status == status)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def create(
        self,
        db: Session,
        *,
        session_id: str,
        owner_id: str,
        contact: ContactDetails,
        status: str,
        guest_count: int = 0,
        pending_payment_expires_at: Optional[datetime] = None,
        payment_reference: Optional[str] = None,
    ) -> Booking:
        now = utcnow()
        booking = Booking(
            session_id=session_id,
            owner_id=owner_id,
            contact_name=contact.name,
            contact_email=contact.email,
            contact_phone=contact.phone,
            guest_count=guest_count,
            status=status,
            pending_payment_expires_at=pending_payment_expires_at,
            payment_reference=payment_reference,
            confirmed_at=now if status == BookingStatus.CONFIRMED else None,
        )
        db.add(booking)
        db.flush()
        return booking

    def transition(
        self,
        db: Session,
        *,
        booking: Booking,
        status: str,
        pending_payment_expires_at: Optional[datetime] = None,
        cancel_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Move a booking to ``status``, stamping the matching timestamps.

        ``cancel_reason`` is recorded on cancellation and cleared when the row
        becomes live again. ``now`` defaults to the current time.
        """
        BookingStatus.validate_transition(booking.status, status)

        now = now or utcnow()
        booking.status = status
        if status == BookingStatus.CONFIRMED:
            booking.confirmed_at = now
            booking.cancelled_at = None
            booking.cancel_reason = None
            booking.pending_payment_expires_at = None
        elif status == BookingStatus.CANCELLED:
            booking.cancelled_at = now
            booking.cancel_reason = cancel_reason
            booking.pending_payment_expires_at = None
        elif status == BookingStatus.PENDING_PAYMENT:
            booking.cancelled_at = None
            booking.cancel_reason = None
            booking.confirmed_at = None
            booking.pending_payment_expires_at = pending_payment_expires_at

        db.flush()
        return booking

    def reuse(
        self,
        db: Session,
        *,
        booking: Booking,
        contact: ContactDetails,
        status: str,
        guest_count: int = 0,
        pending_payment_expires_at: Optional[datetime] = None,
    ) -> Booking:
        """Bring a cancelled row back for re-registration or promotion."""
        booking.contact_name = contact.name
        booking.contact_email = contact.email
        booking.contact_phone = contact.phone
        booking.guest_count = guest_count
        return self.transition(
            db, booking=booking, status=status,
            pending_payment_expires_at=pending_payment_expires_at,
        )

    def list_for_owner(self, db: Session, *, owner_id: str) -> List[Booking]:
        """All non-cancelled bookings for an owner."""
        return db.query(Booking).filter(
            and_(
                Booking.owner_id == owner_id,
                Booking.status != BookingStatus.CANCELLED,
            )
        ).order_by(Booking.created_at.asc()).all()

    def list_pending_for_owner(self, db: Session, *, owner_id: str) -> List[Booking]:
        return db.query(Booking).filter(
            and_(
                Booking.owner_id == owner_id,
                Booking.status == BookingStatus.PENDING_PAYMENT,
            )
        ).order_by(Booking.pending_payment_expires_at.asc()).all()

    def list_expired_holds(self, db: Session, *, now: datetime, limit: int = 500) -> List[Booking]:
        """Pending-payment bookings whose hold ran out before ``now``."""
        return db.query(Booking).filter(
            and_(
                Booking.status == BookingStatus.PENDING_PAYMENT,
                Booking.pending_payment_expires_at < now,
            )
        ).order_by(Booking.pending_payment_expires_at.asc()).limit(limit).all()

    def list_cancelled_with_payment(self, db: Session, *, session_id: str) -> List[Booking]:
        return db.query(Booking).filter(
            and_(
                Booking.session_id == session_id,
                Booking.status == BookingStatus.CANCELLED,
                Booking.payment_reference.isnot(None),
                Booking.payment_reference != "",
            )
        ).all()

    def confirmed_seat_total(self, db: Session, *, session_id: str) -> int:
        """Recount Σ(1 + guest_count) over confirmed bookings (audit only)."""
        bookings = db.query(Booking.guest_count).filter(
            and_(
                Booking.session_id == session_id,
                Booking.status == BookingStatus.CONFIRMED,
            )
        ).all()
        return sum(1 + (row.guest_count or 0) for row in bookings)


booking = CRUDBooking()
