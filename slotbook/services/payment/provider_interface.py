# slotbook/services/payment/provider_interface.py
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime


class HoldStatusEnum(str, Enum):
    """Standardized status of an authorization hold."""
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_ACTION = "requires_action"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RefundStatusEnum(str, Enum):
    """Standardized refund status."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class GatewayEventType(str, Enum):
    """Gateway events the booking engine reacts to."""
    HOLD_AUTHORIZED = "hold_authorized"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    CHECKOUT_EXPIRED = "checkout_expired"
    UNKNOWN = "unknown"


@dataclass
class CreateHoldParams:
    """Parameters for authorizing (not capturing) a payment for a booking."""
    booking_id: str
    amount: int  # In smallest currency unit (cents)
    currency: str  # ISO 4217
    customer_email: str
    customer_name: str
    description: str
    idempotency_key: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class HoldResult:
    payment_reference: str
    client_secret: Optional[str]
    status: HoldStatusEnum
    provider_metadata: Optional[Dict[str, Any]] = None


@dataclass
class CaptureResult:
    payment_reference: str
    status: HoldStatusEnum
    amount_captured: int


@dataclass
class CreateRefundParams:
    """Parameters for refunding a captured payment."""
    payment_reference: str
    idempotency_key: str
    amount: Optional[int] = None  # Optional for partial refund (in cents)
    metadata: Optional[Dict[str, str]] = None


@dataclass
class RefundResult:
    refund_id: str
    status: RefundStatusEnum
    amount: int
    currency: str


@dataclass
class GatewayEvent:
    """Standardized webhook event."""
    event_id: str
    event_type: GatewayEventType
    booking_id: Optional[str]
    payment_reference: Optional[str]
    created_at: datetime
    data: Dict[str, Any] = field(default_factory=dict)


class PaymentError(Exception):
    """Custom exception for payment errors."""

    def __init__(self, code: str, message: str, retryable: bool = False):
        self.code = code
        self.message = message
        self.retryable = retryable
        super().__init__(message)


class PaymentGatewayInterface(ABC):
    """
    Gateway operations the booking engine needs.

    All calls may raise PaymentError; ``retryable`` tells the caller whether
    a later attempt can succeed.
    """

    @property
    @abstractmethod
    def code(self) -> str:
        """Provider code identifier (e.g., 'stripe')."""
        pass

    @abstractmethod
    async def create_hold(self, params: CreateHoldParams) -> HoldResult:
        """Authorize the amount without capturing it."""
        pass

    @abstractmethod
    async def capture(self, payment_reference: str, idempotency_key: str) -> CaptureResult:
        """Capture a previously authorized hold."""
        pass

    @abstractmethod
    async def refund(self, params: CreateRefundParams) -> RefundResult:
        pass

    @abstractmethod
    def parse_webhook_event(self, payload: bytes, signature: str) -> GatewayEvent:
        """Verify the signature and map the provider event to a GatewayEvent."""
        pass
