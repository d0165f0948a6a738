# slotbook/crud/crud_waitlist_entry.py
from typing import Optional, List
from sqlalchemy.orm import Session
from sqlalchemy import and_, case, func

from slotbook.constants.booking import WaitlistKind
from slotbook.models.waitlist_entry import WaitlistEntry
from slotbook.schemas.booking import ContactDetails


class CRUDWaitlistEntry:
    """
    CRUD operations for WaitlistEntry with queue ordering.

    Methods flush but never commit; the calling service owns the transaction.
    """

    def get(self, db: Session, entry_id: str) -> Optional[WaitlistEntry]:
        return db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id).first()

    def get_session_id(self, db: Session, entry_id: str) -> Optional[str]:
        """Session of an entry, read without loading the row into the session."""
        return db.query(WaitlistEntry.session_id).filter(WaitlistEntry.id == entry_id).scalar()

    def get_for_owner(
        self,
        db: Session,
        *,
        session_id: str,
        owner_id: str,
        kind: str = WaitlistKind.NEW_SPOT,
    ) -> Optional[WaitlistEntry]:
        """Get the owner's entry of one kind for a session"""
        return db.query(WaitlistEntry).filter(
            and_(
                WaitlistEntry.session_id == session_id,
                WaitlistEntry.owner_id == owner_id,
                WaitlistEntry.kind == kind,
            )
        ).first()

    def get_add_guest_entry(
        self,
        db: Session,
        *,
        owner_id: str,
        booking_id: str,
    ) -> Optional[WaitlistEntry]:
        return db.query(WaitlistEntry).filter(
            and_(
                WaitlistEntry.owner_id == owner_id,
                WaitlistEntry.booking_id == booking_id,
                WaitlistEntry.kind == WaitlistKind.ADD_GUEST,
            )
        ).first()

    def queue_ordering(self):
        """
        Queue order: new-spot entries before add-guest entries, then by arrival.

        A later new-spot joiner is served before an earlier add-guest waiter.
        """
        return (
            case((WaitlistEntry.kind == WaitlistKind.NEW_SPOT, 0), else_=1),
            WaitlistEntry.created_at.asc(),
            WaitlistEntry.position.asc(),
        )

    def first_eligible(self, db: Session, *, session_id: str) -> Optional[WaitlistEntry]:
        """Head of the session's queue"""
        return (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.session_id == session_id)
            .order_by(*self.queue_ordering())
            .first()
        )

    def get_session_queue(self, db: Session, *, session_id: str) -> List[WaitlistEntry]:
        """All entries for a session in promotion order"""
        return (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.session_id == session_id)
            .order_by(*self.queue_ordering())
            .all()
        )

    def count_for_session(self, db: Session, *, session_id: str) -> int:
        return db.query(func.count(WaitlistEntry.id)).filter(
            WaitlistEntry.session_id == session_id
        ).scalar() or 0

    def count_new_spots(self, db: Session, *, session_id: str) -> int:
        return db.query(func.count(WaitlistEntry.id)).filter(
            and_(
                WaitlistEntry.session_id == session_id,
                WaitlistEntry.kind == WaitlistKind.NEW_SPOT,
            )
        ).scalar() or 0

    def waitlisted_guest_seats(self, db: Session, *, session_id: str) -> int:
        total = db.query(func.coalesce(func.sum(WaitlistEntry.guest_count), 0)).filter(
            and_(
                WaitlistEntry.session_id == session_id,
                WaitlistEntry.kind == WaitlistKind.ADD_GUEST,
            )
        ).scalar()
        return int(total or 0)

    def session_ids_with_entries(self, db: Session) -> List[str]:
        rows = db.query(WaitlistEntry.session_id).distinct().all()
        return [session_id for (session_id,) in rows]

    def list_for_owner(self, db: Session, *, owner_id: str) -> List[WaitlistEntry]:
        return (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.owner_id == owner_id)
            .order_by(WaitlistEntry.created_at.asc())
            .all()
        )

    def list_with_payment(self, db: Session, *, session_id: str) -> List[WaitlistEntry]:
        return db.query(WaitlistEntry).filter(
            and_(
                WaitlistEntry.session_id == session_id,
                WaitlistEntry.payment_reference.isnot(None),
                WaitlistEntry.payment_reference != "",
            )
        ).all()

    def create_entry(
        self,
        db: Session,
        *,
        session_id: str,
        owner_id: str,
        contact: ContactDetails,
        guest_count: int = 1,
        booking_id: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> WaitlistEntry:
        """Append an entry at the tail of the session's queue"""
        position = self.count_for_session(db, session_id=session_id) + 1

        entry = WaitlistEntry(
            session_id=session_id,
            owner_id=owner_id,
            kind=WaitlistKind.NEW_SPOT if booking_id is None else WaitlistKind.ADD_GUEST,
            booking_id=booking_id,
            position=position,
            guest_count=guest_count,
            contact_name=contact.name,
            contact_email=contact.email,
            contact_phone=contact.phone,
            payment_reference=payment_reference,
        )
        db.add(entry)
        db.flush()
        return entry

    def decrement(self, db: Session, *, entry: WaitlistEntry, count: int = 1) -> Optional[WaitlistEntry]:
        """
        Take ``count`` guest seats off an entry, deleting it at zero.

        Returns the entry if it is still queued, None if it was deleted.
        """
        remaining = entry.guest_count - count
        if remaining <= 0:
            db.delete(entry)
            db.flush()
            return None

        entry.guest_count = remaining
        db.flush()
        return entry

    def remove(self, db: Session, *, entry: WaitlistEntry) -> None:
        db.delete(entry)
        db.flush()


waitlist_entry = CRUDWaitlistEntry()
