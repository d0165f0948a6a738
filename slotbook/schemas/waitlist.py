# slotbook/schemas/waitlist.py
from pydantic import BaseModel
from typing import Optional
from enum import Enum
from datetime import datetime


class WaitlistKindEnum(str, Enum):
    new_spot = "new_spot"
    add_guest = "add_guest"


class WaitlistEntry(BaseModel):
    id: str
    session_id: str
    owner_id: str
    kind: WaitlistKindEnum
    booking_id: Optional[str] = None
    position: int
    guest_count: int
    created_at: datetime

    model_config = {"from_attributes": True}


class WaitlistJoinResponse(BaseModel):
    id: str
    position: int
    message: str


class PublicWaitlistEntry(BaseModel):
    """What everyone may see about the queue: no contact details."""
    name: str
    guest_count: int
    kind: WaitlistKindEnum


class WaitlistReduction(BaseModel):
    reduced: int
    remaining: int


class PromotionResult(BaseModel):
    promoted: bool
    booking_id: Optional[str] = None
    kind: Optional[WaitlistKindEnum] = None
    reason: Optional[str] = None
