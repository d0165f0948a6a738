# tests/test_booking_status.py
import pytest

from slotbook.constants.booking import BookingStatus
from slotbook.core.exceptions import InvalidStatusTransition


@pytest.mark.parametrize(
    "current, new",
    [
        (BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED),
        (BookingStatus.PENDING_PAYMENT, BookingStatus.CANCELLED),
        (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
        (BookingStatus.CANCELLED, BookingStatus.CONFIRMED),
        (BookingStatus.CANCELLED, BookingStatus.PENDING_PAYMENT),
    ],
)
def test_allowed_transitions(current, new):
    BookingStatus.validate_transition(current, new)


def test_rejected_transition_message():
    with pytest.raises(InvalidStatusTransition) as exc_info:
        BookingStatus.validate_transition(BookingStatus.CONFIRMED, BookingStatus.PENDING_PAYMENT)

    assert exc_info.value.code == "INVALID_STATUS_TRANSITION"
    assert exc_info.value.message == "Invalid status transition: confirmed -> pending_payment"
    assert exc_info.value.message.isascii()
