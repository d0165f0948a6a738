# slotbook/services/payment/__init__.py
from .provider_interface import PaymentGatewayInterface, PaymentError, GatewayEvent, GatewayEventType
from .provider_factory import get_payment_gateway, set_payment_gateway

__all__ = [
    "PaymentGatewayInterface",
    "PaymentError",
    "GatewayEvent",
    "GatewayEventType",
    "get_payment_gateway",
    "set_payment_gateway",
]
