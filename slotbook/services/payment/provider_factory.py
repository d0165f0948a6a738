# slotbook/services/payment/provider_factory.py
import os
import logging
from typing import Optional

from slotbook.core.config import settings
from .provider_interface import PaymentGatewayInterface, PaymentError
from .providers.stripe_provider import StripeGateway, StripeConfig

logger = logging.getLogger(__name__)

# Global gateway instance (singleton pattern)
_gateway_instance: Optional[PaymentGatewayInterface] = None


def _build_gateway() -> PaymentGatewayInterface:
    stripe_secret_key = settings.STRIPE_SECRET_KEY
    stripe_webhook_secret = settings.STRIPE_WEBHOOK_SECRET

    if not (stripe_secret_key and stripe_webhook_secret):
        logger.warning("Stripe gateway not initialized: missing environment variables")
        raise PaymentError(
            code="GATEWAY_NOT_CONFIGURED",
            message="Payment gateway is not configured",
            retryable=False,
        )

    config = StripeConfig(
        secret_key=stripe_secret_key,
        webhook_secret=stripe_webhook_secret,
        api_version=os.getenv("STRIPE_API_VERSION", "2023-10-16"),
        max_retries=int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2")),
    )
    logger.info("Stripe payment gateway initialized")
    return StripeGateway(config)


def get_payment_gateway() -> PaymentGatewayInterface:
    """
    Get the process-wide payment gateway.

    Raises:
        PaymentError: if no gateway is configured
    """
    global _gateway_instance
    if _gateway_instance is None:
        _gateway_instance = _build_gateway()
    return _gateway_instance


def set_payment_gateway(gateway: Optional[PaymentGatewayInterface]) -> None:
    """Swap the global gateway (used by tests and alternative deployments)."""
    global _gateway_instance
    _gateway_instance = gateway
