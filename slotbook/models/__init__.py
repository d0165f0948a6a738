# slotbook/models/__init__.py
# Import all models so SQLAlchemy can resolve relationships and
# Base.metadata knows every table.

from slotbook.db.base_class import Base
from slotbook.models.session import Session
from slotbook.models.booking import Booking
from slotbook.models.waitlist_entry import WaitlistEntry
from slotbook.models.notification_outbox import OutboxMessage
from slotbook.models.booking_refund import BookingRefund
