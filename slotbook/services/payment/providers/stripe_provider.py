# slotbook/services/payment/providers/stripe_provider.py
import json
import stripe
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from dataclasses import dataclass

from ..provider_interface import (
    PaymentGatewayInterface,
    CreateHoldParams,
    HoldResult,
    HoldStatusEnum,
    CaptureResult,
    CreateRefundParams,
    RefundResult,
    RefundStatusEnum,
    GatewayEvent,
    GatewayEventType,
    PaymentError,
)

logger = logging.getLogger(__name__)


@dataclass
class StripeConfig:
    """Configuration for the Stripe gateway."""
    secret_key: str
    webhook_secret: str
    api_version: str = "2023-10-16"
    max_retries: int = 2


# Mapping from Stripe payment intent status to our standardized status
STRIPE_STATUS_MAP: Dict[str, HoldStatusEnum] = {
    "requires_payment_method": HoldStatusEnum.REQUIRES_PAYMENT_METHOD,
    "requires_confirmation": HoldStatusEnum.REQUIRES_PAYMENT_METHOD,
    "requires_action": HoldStatusEnum.REQUIRES_ACTION,
    "requires_capture": HoldStatusEnum.AUTHORIZED,
    "processing": HoldStatusEnum.AUTHORIZED,
    "succeeded": HoldStatusEnum.CAPTURED,
    "canceled": HoldStatusEnum.CANCELLED,
}

# Mapping from Stripe event types to the events the engine handles
STRIPE_EVENT_MAP: Dict[str, GatewayEventType] = {
    "payment_intent.amount_capturable_updated": GatewayEventType.HOLD_AUTHORIZED,
    "payment_intent.succeeded": GatewayEventType.PAYMENT_SUCCEEDED,
    "checkout.session.completed": GatewayEventType.PAYMENT_SUCCEEDED,
    "checkout.session.expired": GatewayEventType.CHECKOUT_EXPIRED,
}

REFUND_STATUS_MAP: Dict[str, RefundStatusEnum] = {
    "succeeded": RefundStatusEnum.SUCCEEDED,
    "pending": RefundStatusEnum.PENDING,
    "requires_action": RefundStatusEnum.PENDING,
    "failed": RefundStatusEnum.FAILED,
    "canceled": RefundStatusEnum.CANCELLED,
}


def _translate_stripe_error(e: Exception, action: str) -> PaymentError:
    if isinstance(e, stripe.CardError):
        return PaymentError(
            code="CARD_ERROR",
            message=e.user_message or "Card was declined",
            retryable=True,
        )
    if isinstance(e, stripe.RateLimitError):
        return PaymentError(
            code="RATE_LIMIT",
            message="Too many requests. Please try again.",
            retryable=True,
        )
    if isinstance(e, stripe.InvalidRequestError):
        return PaymentError(code="INVALID_REQUEST", message=str(e), retryable=False)
    return PaymentError(
        code="PROVIDER_ERROR",
        message=f"Could not {action}",
        retryable=True,
    )


class StripeGateway(PaymentGatewayInterface):
    """
    Stripe implementation of PaymentGatewayInterface.

    Holds are manual-capture PaymentIntents. Every mutation carries an
    idempotency key so a retried sweep never charges or refunds twice.
    """

    def __init__(self, config: StripeConfig):
        self._config = config

        # Initialize Stripe with locked API version
        stripe.api_key = config.secret_key
        stripe.api_version = config.api_version
        stripe.max_network_retries = config.max_retries

    @property
    def code(self) -> str:
        return "stripe"

    async def create_hold(self, params: CreateHoldParams) -> HoldResult:
        try:
            intent = stripe.PaymentIntent.create(
                amount=params.amount,
                currency=params.currency.lower(),
                description=params.description,
                receipt_email=params.customer_email,
                capture_method="manual",
                metadata={
                    **params.metadata,
                    "booking_id": params.booking_id,
                    "customer_name": params.customer_name,
                },
                automatic_payment_methods={"enabled": True},
                idempotency_key=params.idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating hold for booking {params.booking_id}: {e}")
            raise _translate_stripe_error(e, "create payment hold")

        return HoldResult(
            payment_reference=intent.id,
            client_secret=intent.client_secret,
            status=STRIPE_STATUS_MAP.get(intent.status, HoldStatusEnum.REQUIRES_PAYMENT_METHOD),
            provider_metadata={"livemode": intent.livemode},
        )

    async def capture(self, payment_reference: str, idempotency_key: str) -> CaptureResult:
        try:
            intent = stripe.PaymentIntent.capture(
                payment_reference,
                idempotency_key=idempotency_key,
            )
        except stripe.InvalidRequestError as e:
            # A replayed webhook finds the intent already captured
            if "already been captured" in str(e).lower():
                logger.info(f"Payment {payment_reference} was already captured")
                intent = stripe.PaymentIntent.retrieve(payment_reference)
            else:
                logger.error(f"Invalid capture request for {payment_reference}: {e}")
                raise _translate_stripe_error(e, "capture payment")
        except stripe.StripeError as e:
            logger.error(f"Stripe error capturing {payment_reference}: {e}")
            raise _translate_stripe_error(e, "capture payment")

        return CaptureResult(
            payment_reference=intent.id,
            status=STRIPE_STATUS_MAP.get(intent.status, HoldStatusEnum.FAILED),
            amount_captured=intent.amount_received or 0,
        )

    async def refund(self, params: CreateRefundParams) -> RefundResult:
        refund_params: Dict[str, Any] = {
            "payment_intent": params.payment_reference,
            "reason": "requested_by_customer",
        }
        # Partial refund
        if params.amount:
            refund_params["amount"] = params.amount
        if params.metadata:
            refund_params["metadata"] = params.metadata

        try:
            refund = stripe.Refund.create(
                **refund_params,
                idempotency_key=params.idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Error creating refund for {params.payment_reference}: {e}")
            raise _translate_stripe_error(e, "process refund")

        return RefundResult(
            refund_id=refund.id,
            status=REFUND_STATUS_MAP.get(refund.status, RefundStatusEnum.PENDING),
            amount=refund.amount,
            currency=refund.currency.upper(),
        )

    def parse_webhook_event(self, payload: bytes, signature: str) -> GatewayEvent:
        try:
            stripe.Webhook.construct_event(payload, signature, self._config.webhook_secret)
        except stripe.SignatureVerificationError:
            raise PaymentError(
                code="INVALID_SIGNATURE",
                message="Webhook signature verification failed",
                retryable=False,
            )
        except ValueError as e:
            logger.error(f"Error parsing webhook event: {e}")
            raise PaymentError(
                code="PARSE_ERROR",
                message="Could not parse webhook event",
                retryable=False,
            )

        # Signature is valid; read the plain JSON body
        event = json.loads(payload.decode("utf-8"))
        data_object: Dict[str, Any] = event.get("data", {}).get("object", {}) or {}
        metadata = data_object.get("metadata") or {}

        payment_reference: Optional[str] = None
        object_id = data_object.get("id") or ""
        if object_id.startswith("pi_"):
            payment_reference = object_id
        elif data_object.get("payment_intent"):
            # Checkout sessions point at their PaymentIntent
            payment_reference = data_object.get("payment_intent")

        return GatewayEvent(
            event_id=event.get("id", ""),
            event_type=STRIPE_EVENT_MAP.get(event.get("type", ""), GatewayEventType.UNKNOWN),
            booking_id=metadata.get("booking_id") or data_object.get("client_reference_id"),
            payment_reference=payment_reference,
            created_at=datetime.fromtimestamp(event.get("created", 0), tz=timezone.utc),
            data={
                "status": data_object.get("status"),
                "amount": data_object.get("amount") or data_object.get("amount_total"),
                "currency": (data_object.get("currency") or "").upper(),
                "metadata": metadata,
            },
        )
