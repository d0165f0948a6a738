# slotbook/services/registration_service.py
import logging
from typing import List

from sqlalchemy.orm import Session

from slotbook.constants.booking import BookingStatus, CancelReason, NotificationKind, WaitlistKind
from slotbook.core.config import settings
from slotbook.core.exceptions import (
    AlreadyPending,
    BookingError,
    CapacityExceeded,
    InvalidGuestCount,
    NotFoundOrUnauthorized,
    SessionFull,
)
from slotbook.crud import booking as booking_crud
from slotbook.crud import capacity_ledger
from slotbook.crud import waitlist_entry as waitlist_crud
from slotbook.models.booking import Booking
from slotbook.models.session import Session as SessionModel
from slotbook.schemas.booking import (
    CancellationResult,
    ContactDetails,
    RegistrationOutcome,
    RegistrationOutcomeStatus,
    RegistrationResult,
    SessionOccupancy,
)
from slotbook.services.notifications import queue_notification, session_details
from slotbook.services.refund_service import queue_payment_refund, replace_booking_payment
from slotbook.services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


class RegistrationService:
    """
    Registration and cancellation of bookings.

    Direct registration never falls back to the waitlist: when seats run out
    the caller gets SessionFull and decides whether to join the queue.
    """

    def __init__(self, db: Session):
        self.db = db

    def register(
        self,
        owner_id: str,
        session_ids: List[str],
        guest_count: int,
        contact: ContactDetails,
    ) -> RegistrationResult:
        """
        Register the owner (plus guests) for each session independently.

        Each session is its own transaction; a failure on one is reported in
        its outcome and does not undo the others.

        Raises:
            InvalidGuestCount: guest_count outside 0..MAX_GUESTS_PER_BOOKING
        """
        if guest_count < 0 or guest_count > settings.MAX_GUESTS_PER_BOOKING:
            raise InvalidGuestCount(
                f"Guest count must be between 0 and {settings.MAX_GUESTS_PER_BOOKING}"
            )

        outcomes: List[RegistrationOutcome] = []
        confirmed_sessions = []

        # dict.fromkeys keeps order while dropping duplicates
        for session_id in dict.fromkeys(session_ids):
            try:
                outcome, session_obj = self._register_one(owner_id, session_id, guest_count, contact)
                if outcome.status == RegistrationOutcomeStatus.confirmed:
                    confirmed_sessions.append(session_details(session_obj))
                self.db.commit()
            except BookingError as e:
                self.db.rollback()
                logger.info(f"Registration of {owner_id} for session {session_id} failed: {e.code}")
                outcome = RegistrationOutcome(
                    session_id=session_id,
                    status=RegistrationOutcomeStatus.failed,
                    error_code=e.code,
                    message=e.message,
                    spots_left=getattr(e, "spots_left", None),
                )
            except Exception as e:
                logger.error(f"Error registering {owner_id} for session {session_id}: {e}", exc_info=True)
                self.db.rollback()
                raise
            outcomes.append(outcome)

        if confirmed_sessions:
            self._queue_registration_summary(owner_id, guest_count, contact, confirmed_sessions)

        return RegistrationResult(outcomes=outcomes)

    def _register_one(
        self,
        owner_id: str,
        session_id: str,
        guest_count: int,
        contact: ContactDetails,
    ) -> tuple[RegistrationOutcome, SessionModel]:
        session_obj = capacity_ledger.lock(self.db, session_id)

        existing = booking_crud.get_for_owner(self.db, session_id=session_id, owner_id=owner_id)
        if existing and existing.status == BookingStatus.CONFIRMED:
            return RegistrationOutcome(
                session_id=session_id,
                status=RegistrationOutcomeStatus.already_confirmed,
                booking_id=existing.id,
                message="You are already registered for this session.",
            ), session_obj
        if existing and existing.status == BookingStatus.PENDING_PAYMENT:
            raise AlreadyPending()

        held = capacity_ledger.held_seats(self.db, session_id)
        try:
            capacity_ledger.reserve(self.db, session_id, 1 + guest_count, held_seats=held)
        except CapacityExceeded as e:
            raise SessionFull(spots_left=e.spots_left)

        if existing:
            replace_booking_payment(
                self.db, booking=existing, session_obj=session_obj, payment_reference=None
            )
            booking = booking_crud.reuse(
                self.db,
                booking=existing,
                contact=contact,
                status=BookingStatus.CONFIRMED,
                guest_count=guest_count,
            )
            logger.info(f"Re-activated cancelled booking {booking.id} for session {session_id}")
        else:
            booking = booking_crud.create(
                self.db,
                session_id=session_id,
                owner_id=owner_id,
                contact=contact,
                status=BookingStatus.CONFIRMED,
                guest_count=guest_count,
            )

        # A direct registration supersedes any queued new-spot request
        queued = waitlist_crud.get_for_owner(
            self.db, session_id=session_id, owner_id=owner_id, kind=WaitlistKind.NEW_SPOT
        )
        if queued:
            if queued.payment_reference:
                queue_payment_refund(
                    self.db, session_id=session_id, payment_reference=queued.payment_reference
                )
            waitlist_crud.remove(self.db, entry=queued)

        return RegistrationOutcome(
            session_id=session_id,
            status=RegistrationOutcomeStatus.confirmed,
            booking_id=booking.id,
        ), session_obj

    def _queue_registration_summary(
        self,
        owner_id: str,
        guest_count: int,
        contact: ContactDetails,
        sessions: list,
    ) -> None:
        """One confirmation covering every session booked in the batch."""
        try:
            queue_notification(
                self.db,
                kind=NotificationKind.REGISTRATION_CONFIRMED,
                recipient=contact.email,
                ownerId=owner_id,
                name=contact.name,
                guestCount=guest_count,
                sessions=sessions,
            )
            self.db.commit()
        except Exception as e:
            # Bookings are already committed; losing the summary is not fatal
            logger.error(f"Failed to queue registration summary for {owner_id}: {e}", exc_info=True)
            self.db.rollback()

    def cancel(self, owner_id: str, booking_id: str) -> CancellationResult:
        """
        Cancel a confirmed booking and offer the freed seat to the waitlist.

        The cancellation commits first; the promotion runs exactly once in
        its own transaction afterwards.
        """
        owned = booking_crud.get_owned(self.db, booking_id=booking_id, owner_id=owner_id, status=None)
        if owned is None:
            raise NotFoundOrUnauthorized()
        session_id = owned.session_id

        try:
            session_obj = capacity_ledger.lock(self.db, session_id)
            booking = booking_crud.get_owned(
                self.db, booking_id=booking_id, owner_id=owner_id, for_update=True
            )
            if booking is None:
                raise NotFoundOrUnauthorized()

            seats = booking.seats
            booking_crud.transition(
                self.db, booking=booking, status=BookingStatus.CANCELLED, cancel_reason=CancelReason.OWNER
            )
            capacity_ledger.release(self.db, session_id, seats)
            queue_notification(
                self.db,
                kind=NotificationKind.BOOKING_CANCELLED,
                booking=booking,
                session_obj=session_obj,
                releasedSeats=seats,
            )
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error cancelling booking {booking_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.info(f"Booking {booking_id} cancelled, released {seats} seat(s) on session {session_id}")

        promoted = False
        promoted_booking_id = None
        try:
            promotion = WaitlistService(self.db).promote(session_id)
            promoted = promotion.promoted
            promoted_booking_id = promotion.booking_id
        except Exception as e:
            # The periodic available-spots sweep retries
            logger.error(f"Promotion after cancelling {booking_id} failed: {e}", exc_info=True)

        return CancellationResult(
            booking_id=booking_id,
            session_id=session_id,
            released_seats=seats,
            promoted=promoted,
            promoted_booking_id=promoted_booking_id,
        )

    def get_session_occupancy(self, session_id: str) -> SessionOccupancy:
        session_obj = capacity_ledger.get(self.db, session_id)
        if session_obj is None:
            raise NotFoundOrUnauthorized(f"Session {session_id} not found")

        return SessionOccupancy(
            session_id=session_obj.id,
            max_capacity=session_obj.max_capacity,
            occupied_seats=session_obj.occupied_seats,
            held_seats=capacity_ledger.held_seats(self.db, session_id),
            free_seats=session_obj.free_seats,
            waitlisted_new_spots=waitlist_crud.count_new_spots(self.db, session_id=session_id),
            waitlisted_guest_seats=waitlist_crud.waitlisted_guest_seats(self.db, session_id=session_id),
            status=session_obj.status,
        )

    def list_user_bookings(self, owner_id: str) -> List[Booking]:
        return booking_crud.list_for_owner(self.db, owner_id=owner_id)

    def list_pending_payments(self, owner_id: str) -> List[Booking]:
        """Holds the owner still has to pay for, soonest expiry first."""
        return booking_crud.list_pending_for_owner(self.db, owner_id=owner_id)

    def update_session_capacity(self, session_id: str, new_capacity: int) -> SessionOccupancy:
        """
        Change a session's maximum capacity.

        Added room is filled by the available-spots sweep.

        Raises:
            CapacityExceeded: new capacity is below the seats already charged or held
        """
        if new_capacity < 0:
            raise CapacityExceeded(spots_left=0)

        try:
            capacity_ledger.update_max_capacity(self.db, session_id, new_capacity)
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error updating capacity of session {session_id}: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.info(f"Session {session_id} capacity set to {new_capacity}")
        return self.get_session_occupancy(session_id)
