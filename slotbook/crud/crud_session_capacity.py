# slotbook/crud/crud_session_capacity.py
"""
Capacity ledger for sessions.

None of these methods commit: they run inside the caller's transaction so the
counter moves together with the booking change that justifies it.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update, case, func
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from slotbook.constants.booking import BookingStatus
from slotbook.core.exceptions import CapacityExceeded, NotFoundOrUnauthorized
from slotbook.models.booking import Booking
from slotbook.models.session import Session as SessionModel

logger = logging.getLogger(__name__)


class CapacityLedger:
    """Atomic read/adjust of a session's occupied vs. maximum seats."""

    def get(self, db: Session, session_id: str) -> Optional[SessionModel]:
        return db.query(SessionModel).filter(SessionModel.id == session_id).first()

    def list_ended(self, db: Session, *, now: datetime) -> List[SessionModel]:
        """Sessions whose end (or start, when no end is set) is before ``now``."""
        return (
            db.query(SessionModel)
            .filter(func.coalesce(SessionModel.ends_at, SessionModel.starts_at) < now)
            .order_by(SessionModel.starts_at.asc())
            .all()
        )

    def lock(self, db: Session, session_id: str) -> SessionModel:
        """
        Lock the session row for the rest of the transaction.

        Every mutating operation takes this lock first, so the booking and
        waitlist reads that follow cannot interleave with another writer.
        """
        session_obj = (
            db.query(SessionModel)
            .filter(SessionModel.id == session_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not session_obj:
            raise NotFoundOrUnauthorized(f"Session {session_id} not found")
        return session_obj

    def reserve(self, db: Session, session_id: str, seats: int, *, held_seats: int = 0) -> None:
        """
        Charge ``seats`` against the session.

        The bound check and the increment are one conditional UPDATE.
        ``held_seats`` are seats promised to pending-payment holds that new
        admissions must leave alone.

        Raises:
            CapacityExceeded: if the seats do not fit
        """
        if seats <= 0:
            return

        result = db.execute(
            update(SessionModel)
            .where(SessionModel.id == session_id)
            .where(SessionModel.occupied_seats + seats + held_seats <= SessionModel.max_capacity)
            .values(occupied_seats=SessionModel.occupied_seats + seats)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(db, session_id)

        if result.rowcount == 0:
            spots_left = max(0, self.free_seats(db, session_id) - held_seats)
            logger.info(
                f"Reserve of {seats} seat(s) rejected for session {session_id} "
                f"({spots_left} free after {held_seats} held)"
            )
            raise CapacityExceeded(spots_left=spots_left)

    def release(self, db: Session, session_id: str, seats: int) -> None:
        """Give ``seats`` back, never going below zero."""
        if seats <= 0:
            return

        db.execute(
            update(SessionModel)
            .where(SessionModel.id == session_id)
            .values(
                occupied_seats=case(
                    (SessionModel.occupied_seats > seats, SessionModel.occupied_seats - seats),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(db, session_id)

    def free_seats(self, db: Session, session_id: str) -> int:
        """
        Seats not charged to confirmed bookings.

        Advisory unless read under ``lock`` in the transaction that acts on it.
        """
        row = (
            db.query(SessionModel.max_capacity, SessionModel.occupied_seats)
            .filter(SessionModel.id == session_id)
            .first()
        )
        if not row:
            return 0
        return max(0, row.max_capacity - row.occupied_seats)

    def held_seats(self, db: Session, session_id: str) -> int:
        """Seats claimed by pending-payment holds (not yet charged)."""
        total = (
            db.query(func.coalesce(func.sum(1 + Booking.guest_count), 0))
            .filter(
                Booking.session_id == session_id,
                Booking.status == BookingStatus.PENDING_PAYMENT,
            )
            .scalar()
        )
        return int(total or 0)

    def promotable_seats(self, db: Session, session_id: str) -> int:
        """Free seats left once outstanding holds are honoured."""
        return max(0, self.free_seats(db, session_id) - self.held_seats(db, session_id))

    def update_max_capacity(self, db: Session, session_id: str, new_capacity: int) -> SessionModel:
        """
        Change the maximum capacity of a session.

        Raises:
            CapacityExceeded: if the new capacity is below the seats already
                charged plus the seats held for pending payments
        """
        session_obj = self.lock(db, session_id)
        committed = session_obj.occupied_seats + self.held_seats(db, session_id)
        if new_capacity < committed:
            logger.info(
                f"Capacity {new_capacity} rejected for session {session_id} "
                f"({committed} seat(s) charged or held)"
            )
            raise CapacityExceeded(spots_left=0)

        session_obj.max_capacity = new_capacity
        db.flush()
        return session_obj

    def _expire_cached(self, db: Session, session_id: str) -> None:
        # The conditional UPDATEs bypass the ORM; drop any stale copy.
        cached = db.identity_map.get(identity_key(SessionModel, session_id))
        if cached is not None:
            db.expire(cached)


# Singleton instance
capacity_ledger = CapacityLedger()
