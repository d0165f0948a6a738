# slotbook/crud/__init__.py

from .crud_session_capacity import capacity_ledger
from .crud_booking import booking
from .crud_waitlist_entry import waitlist_entry
from .crud_booking_refund import booking_refund
from . import crud_notification_outbox as notification_outbox
