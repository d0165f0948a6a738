# tests/services/test_stripe_gateway.py
"""
Tests for the Stripe gateway.

All Stripe API calls are mocked -- no real Stripe calls are ever made.
"""
import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest
import stripe

from slotbook.services.payment.provider_interface import (
    CreateHoldParams,
    CreateRefundParams,
    GatewayEventType,
    HoldStatusEnum,
    PaymentError,
    RefundStatusEnum,
)
from slotbook.services.payment.providers.stripe_provider import StripeConfig, StripeGateway


def run_async(coro):
    """Helper to run async coroutines in sync tests."""
    return asyncio.run(coro)


@pytest.fixture
def gateway():
    return StripeGateway(StripeConfig(secret_key="sk_test_123", webhook_secret="whsec_test"))


def _hold_params(**overrides):
    defaults = dict(
        booking_id="bkg_1",
        amount=3000,
        currency="EUR",
        customer_email="alice@example.com",
        customer_name="Alice",
        description="Morning Padel (2 seat(s))",
        idempotency_key="hold_bkg_1",
        metadata={"session_id": "ses_1"},
    )
    defaults.update(overrides)
    return CreateHoldParams(**defaults)


def _webhook_payload(event_type, data_object):
    return json.dumps({
        "id": "evt_1",
        "type": event_type,
        "created": 1760000000,
        "data": {"object": data_object},
    }).encode("utf-8")


class TestCreateHold:

    @patch("stripe.PaymentIntent.create")
    def test_creates_manual_capture_intent(self, mock_create, gateway):
        mock_create.return_value = MagicMock(
            id="pi_123", client_secret="pi_123_secret", status="requires_payment_method", livemode=False
        )

        result = run_async(gateway.create_hold(_hold_params()))

        assert result.payment_reference == "pi_123"
        assert result.client_secret == "pi_123_secret"
        assert result.status == HoldStatusEnum.REQUIRES_PAYMENT_METHOD
        kwargs = mock_create.call_args.kwargs
        assert kwargs["capture_method"] == "manual"
        assert kwargs["currency"] == "eur"
        assert kwargs["metadata"]["booking_id"] == "bkg_1"
        assert kwargs["idempotency_key"] == "hold_bkg_1"

    @patch("stripe.PaymentIntent.create")
    def test_card_error_is_retryable(self, mock_create, gateway):
        mock_create.side_effect = stripe.CardError("Your card was declined.", None, "card_declined")

        with pytest.raises(PaymentError) as exc_info:
            run_async(gateway.create_hold(_hold_params()))

        assert exc_info.value.code == "CARD_ERROR"
        assert exc_info.value.retryable is True


class TestCapture:

    @patch("stripe.PaymentIntent.capture")
    def test_captures_hold(self, mock_capture, gateway):
        mock_capture.return_value = MagicMock(id="pi_123", status="succeeded", amount_received=3000)

        result = run_async(gateway.capture("pi_123", idempotency_key="capture_bkg_1"))

        assert result.status == HoldStatusEnum.CAPTURED
        assert result.amount_captured == 3000
        mock_capture.assert_called_once_with("pi_123", idempotency_key="capture_bkg_1")

    @patch("stripe.PaymentIntent.retrieve")
    @patch("stripe.PaymentIntent.capture")
    def test_already_captured_intent_is_fetched(self, mock_capture, mock_retrieve, gateway):
        mock_capture.side_effect = stripe.InvalidRequestError(
            "This PaymentIntent has already been captured.", None
        )
        mock_retrieve.return_value = MagicMock(id="pi_123", status="succeeded", amount_received=3000)

        result = run_async(gateway.capture("pi_123", idempotency_key="capture_bkg_1"))

        assert result.status == HoldStatusEnum.CAPTURED
        mock_retrieve.assert_called_once_with("pi_123")

    @patch("stripe.PaymentIntent.capture")
    def test_other_invalid_request_is_not_retryable(self, mock_capture, gateway):
        mock_capture.side_effect = stripe.InvalidRequestError("No such payment_intent: 'pi_x'", None)

        with pytest.raises(PaymentError) as exc_info:
            run_async(gateway.capture("pi_x", idempotency_key="capture_bkg_1"))

        assert exc_info.value.code == "INVALID_REQUEST"
        assert exc_info.value.retryable is False


class TestRefund:

    @patch("stripe.Refund.create")
    def test_full_refund_uses_idempotency_key(self, mock_refund, gateway):
        mock_refund.return_value = MagicMock(id="re_1", status="succeeded", amount=1500, currency="eur")

        result = run_async(gateway.refund(CreateRefundParams(
            payment_reference="pi_123",
            idempotency_key="refund_booking_bkg_1",
            metadata={"session_id": "ses_1"},
        )))

        assert result.refund_id == "re_1"
        assert result.status == RefundStatusEnum.SUCCEEDED
        assert result.currency == "EUR"
        kwargs = mock_refund.call_args.kwargs
        assert kwargs["payment_intent"] == "pi_123"
        assert kwargs["idempotency_key"] == "refund_booking_bkg_1"
        assert "amount" not in kwargs

    @patch("stripe.Refund.create")
    def test_rate_limit_is_retryable(self, mock_refund, gateway):
        mock_refund.side_effect = stripe.RateLimitError("Too many requests")

        with pytest.raises(PaymentError) as exc_info:
            run_async(gateway.refund(CreateRefundParams(payment_reference="pi_123", idempotency_key="k")))

        assert exc_info.value.code == "RATE_LIMIT"
        assert exc_info.value.retryable is True


class TestParseWebhookEvent:

    @patch("stripe.Webhook.construct_event")
    def test_maps_authorized_hold(self, mock_construct, gateway):
        payload = _webhook_payload(
            "payment_intent.amount_capturable_updated",
            {"id": "pi_123", "status": "requires_capture", "amount": 3000, "currency": "eur",
             "metadata": {"booking_id": "bkg_1"}},
        )

        event = gateway.parse_webhook_event(payload, "t=1,v1=sig")

        mock_construct.assert_called_once_with(payload, "t=1,v1=sig", "whsec_test")
        assert event.event_type == GatewayEventType.HOLD_AUTHORIZED
        assert event.booking_id == "bkg_1"
        assert event.payment_reference == "pi_123"
        assert event.data["currency"] == "EUR"

    @patch("stripe.Webhook.construct_event")
    def test_expired_checkout_uses_client_reference(self, mock_construct, gateway):
        payload = _webhook_payload(
            "checkout.session.expired",
            {"id": "cs_1", "client_reference_id": "bkg_2", "payment_intent": "pi_456", "amount_total": 1500},
        )

        event = gateway.parse_webhook_event(payload, "sig")

        assert event.event_type == GatewayEventType.CHECKOUT_EXPIRED
        assert event.booking_id == "bkg_2"
        assert event.payment_reference == "pi_456"
        assert event.data["amount"] == 1500

    @patch("stripe.Webhook.construct_event")
    def test_unknown_event_type(self, mock_construct, gateway):
        event = gateway.parse_webhook_event(_webhook_payload("customer.created", {"id": "cus_1"}), "sig")

        assert event.event_type == GatewayEventType.UNKNOWN
        assert event.booking_id is None

    @patch("stripe.Webhook.construct_event")
    def test_bad_signature_is_rejected(self, mock_construct, gateway):
        mock_construct.side_effect = stripe.SignatureVerificationError("bad signature", "sig")

        with pytest.raises(PaymentError) as exc_info:
            gateway.parse_webhook_event(b"{}", "sig")

        assert exc_info.value.code == "INVALID_SIGNATURE"
