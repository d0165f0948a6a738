# slotbook/constants/booking.py
"""
Constants for booking, waitlist, outbox and refund status values.

Provides type-safe constants to replace hardcoded strings throughout the codebase.
"""

from slotbook.core.exceptions import InvalidStatusTransition


class BookingStatus:
    """Booking status values."""
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    # cancelled -> confirmed is re-registration, cancelled -> pending_payment
    # is a waitlist promotion; both reuse the owner's row for the session.
    TRANSITIONS = {
        PENDING_PAYMENT: {CONFIRMED, CANCELLED},
        CONFIRMED: {CANCELLED},
        CANCELLED: {CONFIRMED, PENDING_PAYMENT},
    }

    @classmethod
    def all_values(cls) -> list[str]:
        """Return all valid status values."""
        return [cls.PENDING_PAYMENT, cls.CONFIRMED, cls.CANCELLED]

    @classmethod
    def is_valid(cls, status: str) -> bool:
        """Check if a status value is valid."""
        return status in cls.all_values()

    @classmethod
    def validate_transition(cls, current_status: str, new_status: str) -> None:
        """Raise InvalidStatusTransition unless current -> new is allowed."""
        if new_status not in cls.TRANSITIONS.get(current_status, set()):
            raise InvalidStatusTransition(current_status, new_status)


class CancelReason:
    """Why a booking was cancelled. Only owner cancellations fall under the refund grace window."""
    OWNER = "owner"
    HOLD_EXPIRED = "hold_expired"
    CHECKOUT_EXPIRED = "checkout_expired"

    @classmethod
    def all_values(cls) -> list[str]:
        return [cls.OWNER, cls.HOLD_EXPIRED, cls.CHECKOUT_EXPIRED]


class WaitlistKind:
    """Waitlist entry kinds sharing one queue."""
    NEW_SPOT = "new_spot"
    ADD_GUEST = "add_guest"

    @classmethod
    def all_values(cls) -> list[str]:
        return [cls.NEW_SPOT, cls.ADD_GUEST]


class OutboxStatus:
    """Notification outbox row status values."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationKind:
    """Notification kinds published to the dispatcher."""
    REGISTRATION_CONFIRMED = "registration_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_CONFIRMED = "booking_confirmed"
    WAITLIST_JOINED = "waitlist_joined"
    WAITLIST_PROMOTION = "waitlist_promotion"
    GUESTS_ADDED = "guests_added"
    GUESTS_REMOVED = "guests_removed"
    GUESTS_PROMOTED = "guests_promoted"
    HOLD_EXPIRED = "hold_expired"


class RefundSourceType:
    BOOKING = "booking"
    WAITLIST_ENTRY = "waitlist_entry"
    # A payment detached from its booking or waitlist row; source_id is the payment reference
    PAYMENT = "payment"


class RefundStatus:
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
