# slotbook/services/guest_service.py
import logging

from sqlalchemy.orm import Session

from slotbook.constants.booking import NotificationKind
from slotbook.core.config import settings
from slotbook.core.exceptions import BookingError, InvalidGuestCount, NotFoundOrUnauthorized
from slotbook.crud import booking as booking_crud
from slotbook.crud import capacity_ledger
from slotbook.crud import waitlist_entry as waitlist_crud
from slotbook.models.booking import Booking
from slotbook.schemas.booking import ContactDetails, GuestAdditionResult, GuestRemovalResult
from slotbook.services.notifications import queue_notification
from slotbook.services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


def _validate_count(count: int) -> None:
    if count < 1 or count > settings.MAX_GUESTS_PER_BOOKING:
        raise InvalidGuestCount(
            f"Guest count must be between 1 and {settings.MAX_GUESTS_PER_BOOKING}"
        )


class GuestService:
    """Adds and removes companions on a confirmed booking."""

    def __init__(self, db: Session):
        self.db = db

    def _lock_owned_booking(self, owner_id: str, booking_id: str) -> Booking:
        """Lock the booking's session, then load the confirmed booking."""
        owned = booking_crud.get_owned(self.db, booking_id=booking_id, owner_id=owner_id, status=None)
        if owned is None:
            raise NotFoundOrUnauthorized()

        capacity_ledger.lock(self.db, owned.session_id)
        booking = booking_crud.get_owned(
            self.db, booking_id=booking_id, owner_id=owner_id, for_update=True
        )
        if booking is None:
            raise NotFoundOrUnauthorized()
        return booking

    def add_guests(self, owner_id: str, booking_id: str, requested: int) -> GuestAdditionResult:
        """
        Attach ``requested`` guests, seating as many as fit right now.

        Seats already promised to pending-payment holds are not available.
        Whatever does not fit goes to the booking's add-guest waitlist entry;
        both parts may happen in one call.
        """
        _validate_count(requested)

        try:
            booking = self._lock_owned_booking(owner_id, booking_id)
            session_id = booking.session_id

            queued = waitlist_crud.get_add_guest_entry(self.db, owner_id=owner_id, booking_id=booking_id)
            already_waiting = queued.guest_count if queued else 0
            if booking.guest_count + already_waiting + requested > settings.MAX_GUESTS_PER_BOOKING:
                raise InvalidGuestCount(
                    f"A booking can have at most {settings.MAX_GUESTS_PER_BOOKING} guests "
                    f"({booking.guest_count} booked, {already_waiting} already waitlisted)."
                )

            held = capacity_ledger.held_seats(self.db, session_id)
            spots_left = max(0, capacity_ledger.free_seats(self.db, session_id) - held)
            to_add = min(requested, spots_left)
            to_waitlist = requested - to_add

            if to_add:
                capacity_ledger.reserve(self.db, session_id, to_add, held_seats=held)
                booking.guest_count += to_add
                self.db.flush()

            waitlist_entry_id = None
            if to_waitlist:
                entry = WaitlistService(self.db).queue_guest_seats(
                    booking=booking,
                    guest_count=to_waitlist,
                    contact=ContactDetails(
                        name=booking.contact_name,
                        email=booking.contact_email,
                        phone=booking.contact_phone,
                    ),
                )
                waitlist_entry_id = entry.id

            queue_notification(
                self.db,
                kind=NotificationKind.GUESTS_ADDED,
                booking=booking,
                session_obj=booking.session,
                guestsAdded=to_add,
                guestsWaitlisted=to_waitlist,
            )
            result = GuestAdditionResult(
                added=to_add,
                waitlisted=to_waitlist,
                guest_count=booking.guest_count,
                waitlist_entry_id=waitlist_entry_id,
            )
            self.db.commit()

        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error adding guests to booking {booking_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.info(
            f"Booking {booking_id}: {result.added} guest(s) added, {result.waitlisted} waitlisted"
        )
        return result

    def remove_guests(self, owner_id: str, booking_id: str, count: int) -> GuestRemovalResult:
        """
        Detach up to ``count`` guests and promote once per freed seat.

        Promotions run one after another and stop at the first that does
        not promote anyone.
        """
        _validate_count(count)

        try:
            booking = self._lock_owned_booking(owner_id, booking_id)
            session_id = booking.session_id

            removed = min(count, booking.guest_count)
            if removed == 0:
                self.db.rollback()
                return GuestRemovalResult(removed=0, promoted=0, guest_count=0)

            booking.guest_count -= removed
            capacity_ledger.release(self.db, session_id, removed)
            queue_notification(
                self.db,
                kind=NotificationKind.GUESTS_REMOVED,
                booking=booking,
                session_obj=booking.session,
                guestsRemoved=removed,
            )
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error removing guests from booking {booking_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.info(f"Booking {booking_id}: removed {removed} guest(s)")

        promoted = 0
        waitlist = WaitlistService(self.db)
        for _ in range(removed):
            try:
                result = waitlist.promote(session_id)
            except Exception as e:
                logger.error(f"Promotion after guest removal on {booking_id} failed: {e}", exc_info=True)
                break
            if not result.promoted:
                break
            promoted += 1

        # The owner's own add-guest entry may have been promoted back in
        guest_count = booking_crud.get(self.db, booking_id).guest_count
        self.db.commit()

        return GuestRemovalResult(removed=removed, promoted=promoted, guest_count=guest_count)
