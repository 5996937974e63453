"""Pydantic schemas for request/response validation."""
from roombook.schemas.webhook import (
    CheckoutData,
    CheckoutEvent,
    EventFamily,
    EventSemantics,
    GatewayEvent,
    PaymentData,
    PaymentEvent,
    WebhookResponse,
    parse_gateway_event,
)

__all__ = [
    "CheckoutData",
    "CheckoutEvent",
    "EventFamily",
    "EventSemantics",
    "GatewayEvent",
    "PaymentData",
    "PaymentEvent",
    "WebhookResponse",
    "parse_gateway_event",
]
