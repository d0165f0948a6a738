# slotbook/core/exceptions.py
"""
Booking engine error taxonomy.

Every error carries a stable ``code`` for the calling layer and a message
that can be shown to the user as-is.
"""
from typing import Optional


class BookingError(Exception):
    """Base exception for booking, waitlist and guest operations."""

    code = "BOOKING_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        if code:
            self.code = code
        self.message = message
        super().__init__(message)


class SessionFull(BookingError):
    code = "SESSION_FULL"

    def __init__(self, spots_left: int = 0, message: Optional[str] = None):
        self.spots_left = max(0, spots_left)
        if message is None:
            if self.spots_left == 0:
                message = "This session is full. Join the waitlist to be notified when a spot opens."
            else:
                message = f"Only {self.spots_left} spot(s) left in this session."
        super().__init__(message)


class CapacityExceeded(BookingError):
    """Ledger-level signal; translated to SessionFull at the service boundary."""

    code = "CAPACITY_EXCEEDED"

    def __init__(self, spots_left: int = 0):
        self.spots_left = max(0, spots_left)
        super().__init__(f"Capacity exceeded ({self.spots_left} seat(s) free)")


class AlreadyPending(BookingError):
    code = "ALREADY_PENDING"

    def __init__(self, message: str = "You have a reserved spot - please complete payment first."):
        super().__init__(message)


class AlreadyBooked(BookingError):
    code = "ALREADY_BOOKED"

    def __init__(self, message: str = "You are already registered for this session."):
        super().__init__(message)


class AlreadyOnWaitlist(BookingError):
    code = "ALREADY_ON_WAITLIST"

    def __init__(self, message: str = "You are already on the waitlist for this session."):
        super().__init__(message)


class SeatsAvailable(BookingError):
    code = "SEATS_AVAILABLE"

    def __init__(self, spots_left: int):
        self.spots_left = spots_left
        super().__init__(
            f"Session has {spots_left} spot(s) available - register directly instead of joining the waitlist."
        )


class NotFoundOrUnauthorized(BookingError):
    code = "NOT_FOUND_OR_UNAUTHORIZED"

    def __init__(self, message: str = "Booking not found or unauthorized"):
        super().__init__(message)


class InvalidGuestCount(BookingError):
    code = "INVALID_GUEST_COUNT"

    def __init__(self, message: str = "Guest count must be between 1 and 10"):
        super().__init__(message)


class StaleWaitlistEntry(BookingError):
    """An add-guest entry whose booking is no longer confirmed."""

    code = "STALE_WAITLIST_ENTRY"

    def __init__(self, entry_id: str, booking_id: Optional[str]):
        self.entry_id = entry_id
        self.booking_id = booking_id
        super().__init__(
            f"Waitlist entry {entry_id} references booking {booking_id} which is no longer confirmed"
        )


class InvalidStatusTransition(BookingError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current_status: str, new_status: str):
        self.current_status = current_status
        self.new_status = new_status
        super().__init__(f"Invalid status transition: {current_status} -> {new_status}")
