# slotbook/services/waitlist_service.py
"""
Waitlist engine: one FIFO queue per session holding two kinds of demand.

- new_spot entries want a seat of their own. Promotion gives them a
  pending-payment hold (the seat is held, not charged, until they pay).
- add_guest entries want extra guest seats on a confirmed booking. Promotion
  attaches one guest seat at a time and charges it immediately.

Every write takes the session row lock first (``capacity_ledger.lock``) so
queue reads and capacity decisions cannot interleave with another writer.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slotbook.constants.booking import BookingStatus, NotificationKind, WaitlistKind
from slotbook.core.config import settings
from slotbook.core.exceptions import (
    AlreadyBooked,
    AlreadyOnWaitlist,
    AlreadyPending,
    BookingError,
    InvalidGuestCount,
    NotFoundOrUnauthorized,
    SeatsAvailable,
    StaleWaitlistEntry,
)
from slotbook.crud import booking as booking_crud
from slotbook.crud import capacity_ledger
from slotbook.crud import waitlist_entry as waitlist_crud
from slotbook.models.booking import Booking
from slotbook.models.session import Session as SessionModel
from slotbook.models.waitlist_entry import WaitlistEntry
from slotbook.schemas.booking import ContactDetails
from slotbook.schemas.sweep import PromotionSweepSummary
from slotbook.schemas.waitlist import (
    PromotionResult,
    PublicWaitlistEntry,
    WaitlistJoinResponse,
    WaitlistKindEnum,
    WaitlistReduction,
)
from slotbook.services.notifications import payment_link, queue_notification
from slotbook.services.refund_service import queue_payment_refund, replace_booking_payment
from slotbook.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)


class WaitlistService:
    """Queue management and promotion for one database session."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Joining
    # ------------------------------------------------------------------

    def join(
        self,
        owner_id: str,
        session_id: str,
        contact: ContactDetails,
        payment_reference: Optional[str] = None,
    ) -> WaitlistJoinResponse:
        """
        Queue the owner for a seat of their own.

        Only allowed once every seat is either charged or held for a pending
        payment; otherwise the caller should register directly.

        Raises:
            AlreadyBooked: owner already has a confirmed booking
            AlreadyPending: owner has a hold awaiting payment
            AlreadyOnWaitlist: owner is already queued for a new spot
            SeatsAvailable: the session still has room
            NotFoundOrUnauthorized: session does not exist
        """
        try:
            session_obj = capacity_ledger.lock(self.db, session_id)

            existing = booking_crud.get_for_owner(self.db, session_id=session_id, owner_id=owner_id)
            if existing and existing.status == BookingStatus.CONFIRMED:
                raise AlreadyBooked()
            if existing and existing.status == BookingStatus.PENDING_PAYMENT:
                raise AlreadyPending()

            if waitlist_crud.get_for_owner(
                self.db, session_id=session_id, owner_id=owner_id, kind=WaitlistKind.NEW_SPOT
            ):
                raise AlreadyOnWaitlist()

            held = capacity_ledger.held_seats(self.db, session_id)
            spots_left = session_obj.max_capacity - session_obj.occupied_seats - held
            if spots_left > 0:
                raise SeatsAvailable(spots_left)

            entry = waitlist_crud.create_entry(
                self.db,
                session_id=session_id,
                owner_id=owner_id,
                contact=contact,
                payment_reference=payment_reference,
            )
            queue_notification(
                self.db,
                kind=NotificationKind.WAITLIST_JOINED,
                recipient=contact.email,
                session_obj=session_obj,
                waitlistEntryId=entry.id,
                position=entry.position,
            )
            response = WaitlistJoinResponse(
                id=entry.id,
                position=entry.position,
                message=f"You are number {entry.position} on the waitlist.",
            )
            self.db.commit()

        except BookingError:
            self.db.rollback()
            raise
        except IntegrityError:
            # Lost a race on the (session, owner, kind) unique constraint
            self.db.rollback()
            raise AlreadyOnWaitlist()
        except Exception as e:
            logger.error(f"Error joining waitlist for session {session_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.info(f"User {owner_id} joined waitlist for session {session_id} at position {response.position}")
        return response

    def add_guest_waitlist(
        self,
        owner_id: str,
        session_id: str,
        booking_id: str,
        guest_count: int,
        contact: ContactDetails,
        payment_reference: Optional[str] = None,
    ) -> WaitlistEntry:
        """
        Queue extra guest seats for a confirmed booking.

        Merges into the owner's existing add-guest entry for the booking.
        """
        if guest_count < 1 or guest_count > settings.MAX_GUESTS_PER_BOOKING:
            raise InvalidGuestCount()

        try:
            capacity_ledger.lock(self.db, session_id)

            booking = booking_crud.get_owned(
                self.db, booking_id=booking_id, owner_id=owner_id, for_update=True
            )
            if not booking or booking.session_id != session_id:
                raise NotFoundOrUnauthorized()

            existing = waitlist_crud.get_add_guest_entry(self.db, owner_id=owner_id, booking_id=booking_id)
            already_waiting = existing.guest_count if existing else 0
            if booking.guest_count + already_waiting + guest_count > settings.MAX_GUESTS_PER_BOOKING:
                raise InvalidGuestCount(
                    f"A booking can have at most {settings.MAX_GUESTS_PER_BOOKING} guests "
                    f"({booking.guest_count} booked, {already_waiting} already waitlisted)."
                )

            entry = self.queue_guest_seats(
                booking=booking,
                guest_count=guest_count,
                contact=contact,
                payment_reference=payment_reference,
            )
            self.db.commit()

        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error adding guests to waitlist for booking {booking_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        return entry

    def queue_guest_seats(
        self,
        *,
        booking: Booking,
        guest_count: int,
        contact: ContactDetails,
        payment_reference: Optional[str] = None,
    ) -> WaitlistEntry:
        """
        Merge-or-append the add-guest entry for ``booking``.

        Runs inside the caller's locked transaction and does not commit.
        """
        entry = waitlist_crud.get_add_guest_entry(
            self.db, owner_id=booking.owner_id, booking_id=booking.id
        )
        if entry is None:
            entry = waitlist_crud.create_entry(
                self.db,
                session_id=booking.session_id,
                owner_id=booking.owner_id,
                contact=contact,
                guest_count=guest_count,
                booking_id=booking.id,
                payment_reference=payment_reference,
            )
            logger.info(f"Queued {guest_count} guest seat(s) for booking {booking.id}")
            return entry

        entry.guest_count += guest_count
        entry.contact_name = contact.name
        entry.contact_email = contact.email
        entry.contact_phone = contact.phone
        if payment_reference:
            if entry.payment_reference and entry.payment_reference != payment_reference:
                # The latest payment covers the merged entry
                queue_payment_refund(
                    self.db, session_id=entry.session_id, payment_reference=entry.payment_reference
                )
            entry.payment_reference = payment_reference
        self.db.flush()
        logger.info(
            f"Merged {guest_count} guest seat(s) into waitlist entry {entry.id} "
            f"(now {entry.guest_count})"
        )
        return entry

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def first_eligible_entry(self, session_id: str) -> Optional[WaitlistEntry]:
        return waitlist_crud.first_eligible(self.db, session_id=session_id)

    def promote(self, session_id: str, now: Optional[datetime] = None) -> PromotionResult:
        """
        Promote the head of the queue into one freed seat.

        Runs in its own transaction and commits before returning, so chained
        promotions each see the previous one's result. Once the session has
        started nobody is promoted; queued entries stay for the refund sweep.
        """
        now = now or utcnow()
        try:
            result = self._promote_locked(session_id, now)
            self.db.commit()
        except Exception as e:
            logger.error(f"Error promoting waitlist for session {session_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        if result.promoted:
            logger.info(
                f"Promoted {result.kind.value} waitlist entry for session {session_id} "
                f"(booking {result.booking_id})"
            )
        return result

    def _promote_locked(self, session_id: str, now: datetime) -> PromotionResult:
        session_obj = capacity_ledger.lock(self.db, session_id)
        if as_utc(session_obj.starts_at) <= now:
            return PromotionResult(promoted=False, reason="session_started")

        # Each pass either promotes, stops, or deletes one stale entry
        attempts = waitlist_crud.count_for_session(self.db, session_id=session_id)
        for _ in range(attempts):
            entry = waitlist_crud.first_eligible(self.db, session_id=session_id)
            if entry is None:
                break

            held = capacity_ledger.held_seats(self.db, session_id)
            if session_obj.max_capacity - session_obj.occupied_seats - held < 1:
                return PromotionResult(promoted=False, reason="no_capacity")

            try:
                if entry.is_new_spot:
                    return self._promote_new_spot(session_obj, entry, now)
                return self._promote_add_guest(session_obj, entry, held)
            except StaleWaitlistEntry as e:
                logger.warning(f"Dropping stale waitlist entry: {e.message}")
                self._drop_entry(entry)

        return PromotionResult(promoted=False, reason="empty")

    def _promote_new_spot(
        self, session_obj: SessionModel, entry: WaitlistEntry, now: datetime
    ) -> PromotionResult:
        existing = booking_crud.get_for_owner(
            self.db, session_id=session_obj.id, owner_id=entry.owner_id
        )
        if existing and existing.status != BookingStatus.CANCELLED:
            # Owner registered directly after joining the queue
            raise StaleWaitlistEntry(entry.id, existing.id)

        contact = ContactDetails(
            name=entry.contact_name,
            email=entry.contact_email,
            phone=entry.contact_phone,
        )
        expires_at = now + timedelta(hours=settings.PENDING_PAYMENT_HOLD_HOURS)

        if existing:
            # The up-front payment, if any, moves onto the hold
            replace_booking_payment(
                self.db,
                booking=existing,
                session_obj=session_obj,
                payment_reference=entry.payment_reference,
            )
            booking = booking_crud.reuse(
                self.db,
                booking=existing,
                contact=contact,
                status=BookingStatus.PENDING_PAYMENT,
                guest_count=0,
                pending_payment_expires_at=expires_at,
            )
        else:
            booking = booking_crud.create(
                self.db,
                session_id=session_obj.id,
                owner_id=entry.owner_id,
                contact=contact,
                status=BookingStatus.PENDING_PAYMENT,
                guest_count=0,
                pending_payment_expires_at=expires_at,
                payment_reference=entry.payment_reference,
            )

        waitlist_crud.remove(self.db, entry=entry)

        queue_notification(
            self.db,
            kind=NotificationKind.WAITLIST_PROMOTION,
            booking=booking,
            session_obj=session_obj,
            paymentLink=payment_link(booking.id),
            expiresAt=expires_at.isoformat(),
        )
        return PromotionResult(promoted=True, booking_id=booking.id, kind=WaitlistKindEnum.new_spot)

    def _promote_add_guest(
        self, session_obj: SessionModel, entry: WaitlistEntry, held: int
    ) -> PromotionResult:
        booking = booking_crud.get(self.db, entry.booking_id) if entry.booking_id else None
        if (
            booking is None
            or booking.status != BookingStatus.CONFIRMED
            or booking.guest_count >= settings.MAX_GUESTS_PER_BOOKING
        ):
            raise StaleWaitlistEntry(entry.id, entry.booking_id)

        capacity_ledger.reserve(self.db, session_obj.id, 1, held_seats=held)
        booking.guest_count += 1
        remaining = waitlist_crud.decrement(self.db, entry=entry, count=1)

        queue_notification(
            self.db,
            kind=NotificationKind.GUESTS_PROMOTED,
            booking=booking,
            session_obj=session_obj,
            guestsAdded=1,
            stillWaitlisted=remaining.guest_count if remaining else 0,
        )
        return PromotionResult(promoted=True, booking_id=booking.id, kind=WaitlistKindEnum.add_guest)

    # ------------------------------------------------------------------
    # Leaving and shrinking
    # ------------------------------------------------------------------

    def _drop_entry(self, entry: WaitlistEntry) -> None:
        """Delete an entry that will never be promoted, queuing its up-front payment for refund."""
        if entry.payment_reference:
            queue_payment_refund(
                self.db, session_id=entry.session_id, payment_reference=entry.payment_reference
            )
        waitlist_crud.remove(self.db, entry=entry)

    def withdraw(self, entry_id: str) -> None:
        """Hard-delete an entry."""
        session_id = waitlist_crud.get_session_id(self.db, entry_id)
        if session_id is None:
            raise NotFoundOrUnauthorized("Waitlist entry not found")

        try:
            capacity_ledger.lock(self.db, session_id)
            entry = waitlist_crud.get(self.db, entry_id)
            if entry is None:
                raise NotFoundOrUnauthorized("Waitlist entry not found")
            self._drop_entry(entry)
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error withdrawing waitlist entry {entry_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.info(f"Withdrew waitlist entry {entry_id}")

    def leave(self, owner_id: str, session_id: str) -> None:
        """Owner removes their own new-spot entry."""
        try:
            capacity_ledger.lock(self.db, session_id)
            entry = waitlist_crud.get_for_owner(
                self.db, session_id=session_id, owner_id=owner_id, kind=WaitlistKind.NEW_SPOT
            )
            if entry is None:
                raise NotFoundOrUnauthorized("You are not on the waitlist for this session")
            self._drop_entry(entry)
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error leaving waitlist for session {session_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.info(f"User {owner_id} left waitlist for session {session_id}")

    def reduce_waitlist(self, owner_id: str, booking_id: str, count: int) -> WaitlistReduction:
        """Take up to ``count`` guest seats off the owner's add-guest entry."""
        if count < 1 or count > settings.MAX_GUESTS_PER_BOOKING:
            raise InvalidGuestCount()

        owned = booking_crud.get_owned(self.db, booking_id=booking_id, owner_id=owner_id, status=None)
        if owned is None:
            raise NotFoundOrUnauthorized()

        try:
            capacity_ledger.lock(self.db, owned.session_id)
            entry = waitlist_crud.get_add_guest_entry(self.db, owner_id=owner_id, booking_id=booking_id)
            if entry is None:
                raise NotFoundOrUnauthorized("No guests are waitlisted for this booking")

            reduced = min(count, entry.guest_count)
            if reduced == entry.guest_count:
                self._drop_entry(entry)
                remaining_count = 0
            else:
                remaining_count = waitlist_crud.decrement(self.db, entry=entry, count=reduced).guest_count
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error reducing waitlist for booking {booking_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        return WaitlistReduction(reduced=reduced, remaining=remaining_count)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_add_guest_entry(self, owner_id: str, booking_id: str) -> Optional[WaitlistEntry]:
        return waitlist_crud.get_add_guest_entry(self.db, owner_id=owner_id, booking_id=booking_id)

    def list_public(self, session_id: str) -> List[PublicWaitlistEntry]:
        """Queue in promotion order without contact details."""
        return [
            PublicWaitlistEntry(
                name=entry.contact_name,
                guest_count=entry.guest_count,
                kind=WaitlistKindEnum(entry.kind),
            )
            for entry in waitlist_crud.get_session_queue(self.db, session_id=session_id)
        ]

    def list_user_entries(self, owner_id: str) -> List[WaitlistEntry]:
        return waitlist_crud.list_for_owner(self.db, owner_id=owner_id)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def process_waitlists_for_available_spots(self) -> PromotionSweepSummary:
        """
        Promote into room nobody claimed yet, e.g. after a capacity increase
        or a cancellation that freed several seats at once.
        """
        summary = PromotionSweepSummary()
        session_ids = waitlist_crud.session_ids_with_entries(self.db)
        self.db.commit()

        for session_id in session_ids:
            summary.processed += 1
            promoted_here = 0
            try:
                # Each promotion fills at most one seat
                for _ in range(capacity_ledger.promotable_seats(self.db, session_id)):
                    if not self.promote(session_id).promoted:
                        break
                    promoted_here += 1
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                summary.errors.append(f"Session {session_id}: {e}")
            summary.promoted += promoted_here
            if promoted_here:
                summary.succeeded += 1
                logger.info(f"Available-spots sweep promoted {promoted_here} for session {session_id}")

        return summary
