# slotbook/schemas/booking.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from enum import Enum
from datetime import datetime


class BookingStatusEnum(str, Enum):
    pending_payment = "pending_payment"
    confirmed = "confirmed"
    cancelled = "cancelled"


class ContactDetails(BaseModel):
    name: str = Field(..., min_length=1, json_schema_extra={"example": "Jane Doe"})
    email: str = Field(..., json_schema_extra={"example": "jane@example.com"})
    phone: Optional[str] = Field(None, json_schema_extra={"example": "+31 6 1234 5678"})

    @field_validator("name", "email")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class Booking(BaseModel):
    id: str
    session_id: str
    owner_id: str
    contact_name: str
    contact_email: str
    contact_phone: Optional[str] = None
    guest_count: int
    status: BookingStatusEnum
    pending_payment_expires_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class RegistrationOutcomeStatus(str, Enum):
    confirmed = "confirmed"
    already_confirmed = "already_confirmed"
    failed = "failed"


class RegistrationOutcome(BaseModel):
    """Result of registering one session within a batch."""
    session_id: str
    status: RegistrationOutcomeStatus
    booking_id: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    spots_left: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status != RegistrationOutcomeStatus.failed


class RegistrationResult(BaseModel):
    outcomes: List[RegistrationOutcome]

    @property
    def confirmed_booking_ids(self) -> List[str]:
        return [
            o.booking_id for o in self.outcomes
            if o.status == RegistrationOutcomeStatus.confirmed and o.booking_id
        ]


class CancellationResult(BaseModel):
    booking_id: str
    session_id: str
    released_seats: int
    promoted: bool
    promoted_booking_id: Optional[str] = None


class GuestAdditionResult(BaseModel):
    added: int
    waitlisted: int
    guest_count: int
    waitlist_entry_id: Optional[str] = None


class GuestRemovalResult(BaseModel):
    removed: int
    promoted: int
    guest_count: int


class PaymentConfirmationStatus(str, Enum):
    confirmed = "confirmed"
    already_handled = "already_handled"
    capacity_exceeded = "capacity_exceeded"


class PaymentConfirmation(BaseModel):
    booking_id: str
    status: PaymentConfirmationStatus
    message: Optional[str] = None


class SessionOccupancy(BaseModel):
    session_id: str
    max_capacity: int
    occupied_seats: int
    held_seats: int
    free_seats: int
    waitlisted_new_spots: int
    waitlisted_guest_seats: int
    status: str
