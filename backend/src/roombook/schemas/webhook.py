"""Pydantic schemas for Asaas webhook payloads and responses.

Payment and checkout notifications arrive on the same route. They are
told apart by the event name (``CHECKOUT_*``) and parsed into one of two
typed models right at the boundary, so nothing downstream inspects raw
dictionaries.
"""
import enum
from decimal import Decimal
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from roombook.exceptions import MalformedPayloadError
from roombook.utils.currency import to_minor_units


class EventFamily(str, enum.Enum):
    """Gateway event family, derived from the event name."""

    PAYMENT = "payment"
    CHECKOUT = "checkout"


class EventSemantics(str, enum.Enum):
    """What a gateway event means for our resources."""

    CONFIRMATION = "confirmation"
    REFUND = "refund"
    CAPTURE_REFUSED = "capture_refused"
    IGNORED = "ignored"


PAYMENT_CONFIRMATION_EVENTS = frozenset({"PAYMENT_CONFIRMED", "PAYMENT_RECEIVED"})

PAYMENT_REFUND_EVENTS = frozenset(
    {
        "PAYMENT_REFUNDED",
        "PAYMENT_PARTIALLY_REFUNDED",
        "PAYMENT_REFUND_IN_PROGRESS",
        "PAYMENT_CHARGEBACK_REQUESTED",
        "PAYMENT_CHARGEBACK_DISPUTE",
        "PAYMENT_AWAITING_CHARGEBACK_REVERSAL",
    }
)

PAYMENT_CAPTURE_REFUSED_EVENTS = frozenset({"PAYMENT_CREDIT_CARD_CAPTURE_REFUSED"})

CHECKOUT_CONFIRMATION_EVENTS = frozenset({"CHECKOUT_PAID"})


class ChargebackData(BaseModel):
    """Chargeback block attached to a disputed payment."""

    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    reason: Optional[str] = None
    value: Optional[Decimal] = None


class PaymentData(BaseModel):
    """The ``payment`` object of a payment-family event."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1, description="Gateway payment id")
    value: Optional[Decimal] = Field(default=None, description="Charged value in reais")
    net_value: Optional[Decimal] = Field(default=None, alias="netValue")
    refunded_value: Optional[Decimal] = Field(default=None, alias="refundedValue")
    external_reference: Optional[str] = Field(default=None, alias="externalReference")
    status: Optional[str] = None
    billing_type: Optional[str] = Field(default=None, alias="billingType")
    customer: Optional[str] = None
    chargeback: Optional[ChargebackData] = None


class CheckoutData(BaseModel):
    """The ``checkout`` object of a checkout-family event."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1, description="Gateway checkout session id")
    value: Optional[Decimal] = Field(default=None, description="Checkout total in reais")
    external_reference: Optional[str] = Field(default=None, alias="externalReference")
    status: Optional[str] = None
    payment: Optional[str] = Field(default=None, description="Payment id created by the checkout, if any")


class PaymentEvent(BaseModel):
    """Payment-family notification (PAYMENT_*)."""

    model_config = ConfigDict(extra="allow")

    family: Literal[EventFamily.PAYMENT] = EventFamily.PAYMENT
    id: str = Field(..., min_length=1, description="Gateway event id")
    event: str = Field(..., min_length=1)
    payment: PaymentData

    @property
    def semantics(self) -> EventSemantics:
        """Classify the event name."""
        if self.event in PAYMENT_CONFIRMATION_EVENTS:
            return EventSemantics.CONFIRMATION
        if self.event in PAYMENT_REFUND_EVENTS:
            return EventSemantics.REFUND
        if self.event in PAYMENT_CAPTURE_REFUSED_EVENTS:
            return EventSemantics.CAPTURE_REFUSED
        return EventSemantics.IGNORED

    @property
    def external_reference(self) -> Optional[str]:
        return self.payment.external_reference

    @property
    def external_payment_id(self) -> str:
        return self.payment.id

    @property
    def billing_type(self) -> Optional[str]:
        return self.payment.billing_type

    @property
    def paid_amount(self) -> Optional[int]:
        """Charged value in centavos."""
        return to_minor_units(self.payment.value)

    def reported_refund_amount(self) -> Optional[int]:
        """
        Refunded value in centavos, by field priority.

        Explicit refunded value first, then the chargeback value, then the
        payment value. None when the payload carries none of them.
        """
        candidates = [
            self.payment.refunded_value,
            self.payment.chargeback.value if self.payment.chargeback else None,
            self.payment.value,
        ]
        for candidate in candidates:
            amount = to_minor_units(candidate)
            if amount is not None:
                return amount
        return None


class CheckoutEvent(BaseModel):
    """Checkout-family notification (CHECKOUT_*)."""

    model_config = ConfigDict(extra="allow")

    family: Literal[EventFamily.CHECKOUT] = EventFamily.CHECKOUT
    id: str = Field(..., min_length=1, description="Gateway event id")
    event: str = Field(..., min_length=1)
    checkout: CheckoutData

    @property
    def semantics(self) -> EventSemantics:
        """Classify the event name."""
        if self.event in CHECKOUT_CONFIRMATION_EVENTS:
            return EventSemantics.CONFIRMATION
        return EventSemantics.IGNORED

    @property
    def external_reference(self) -> Optional[str]:
        return self.checkout.external_reference

    @property
    def external_payment_id(self) -> str:
        return self.checkout.payment or self.checkout.id

    @property
    def billing_type(self) -> Optional[str]:
        return "CHECKOUT"

    @property
    def paid_amount(self) -> Optional[int]:
        """Checkout total in centavos."""
        return to_minor_units(self.checkout.value)

    def reported_refund_amount(self) -> Optional[int]:
        return to_minor_units(self.checkout.value)


GatewayEvent = Union[PaymentEvent, CheckoutEvent]


def detect_family(body: dict[str, Any]) -> EventFamily:
    """Pick the event family from the event name."""
    event = body.get("event")
    if isinstance(event, str) and event.startswith("CHECKOUT_"):
        return EventFamily.CHECKOUT
    return EventFamily.PAYMENT


def parse_gateway_event(body: Any) -> GatewayEvent:
    """
    Parse a raw webhook body into a typed event.

    Args:
        body: Decoded JSON body

    Returns:
        PaymentEvent or CheckoutEvent

    Raises:
        MalformedPayloadError: If the body does not match either family
    """
    if not isinstance(body, dict):
        raise MalformedPayloadError("Body must be a JSON object")

    family = detect_family(body)
    model = CheckoutEvent if family is EventFamily.CHECKOUT else PaymentEvent
    try:
        return model.model_validate({**body, "family": family})
    except ValidationError as e:
        fields = ", ".join(".".join(str(loc) for loc in err["loc"]) for err in e.errors())
        raise MalformedPayloadError(f"Invalid {family.value} payload: {fields}") from e


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the gateway."""

    model_config = ConfigDict(populate_by_name=True)

    received: bool = True
    skipped: Optional[bool] = None
    already_confirmed: Optional[bool] = Field(default=None, alias="alreadyConfirmed")
    blocked: Optional[bool] = None
    reason: Optional[str] = None
    action: Optional[str] = None
    error: Optional[str] = None
    event: Optional[str] = None

    def to_body(self) -> dict[str, Any]:
        """Wire form: camelCase keys, unset fields omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)
