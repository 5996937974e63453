"""Named state transitions for bookings and credits.

Each transition takes the current state and returns one of:

- ``Transition``: the next state plus the side effects to schedule
- ``AlreadyApplied``: the event's outcome is already in place
- ``Blocked``: a guard refused the event, with the reason

Nothing here touches the database; callers apply the returned state.
"""
import enum
from dataclasses import dataclass, field, replace
from typing import Generic, TypeVar, Union

from roombook.models.booking import BookingStatus, FinancialStatus
from roombook.models.credit import CreditStatus
from roombook.models.payment import PaymentStatus
from roombook.models.webhook_event import WebhookEventStatus


class BlockReason(str, enum.Enum):
    """Why a guard refused an event."""

    COURTESY_BOOKING = "COURTESY_BOOKING"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_REFUNDED = "BOOKING_REFUNDED"
    CREDIT_REFUNDED = "CREDIT_REFUNDED"
    CREDIT_EXPIRED = "CREDIT_EXPIRED"

    @property
    def ledger_status(self) -> WebhookEventStatus:
        """Terminal ledger status recorded for this block."""
        return _BLOCK_LEDGER_STATUS[self]

    @property
    def alert_action(self) -> str:
        """Audit alert raised for this block."""
        return _BLOCK_ALERTS[self]


_BLOCK_LEDGER_STATUS = {
    BlockReason.COURTESY_BOOKING: WebhookEventStatus.BLOCKED_COURTESY,
    BlockReason.BOOKING_CANCELLED: WebhookEventStatus.BLOCKED_CANCELLED,
    BlockReason.BOOKING_REFUNDED: WebhookEventStatus.BLOCKED_REFUNDED,
    BlockReason.CREDIT_REFUNDED: WebhookEventStatus.BLOCKED_REFUNDED,
    BlockReason.CREDIT_EXPIRED: WebhookEventStatus.BLOCKED_CANCELLED,
}

_BLOCK_ALERTS = {
    BlockReason.COURTESY_BOOKING: "ALERT_PAYMENT_ON_COURTESY",
    BlockReason.BOOKING_CANCELLED: "ALERT_PAYMENT_AFTER_CANCELLATION",
    BlockReason.BOOKING_REFUNDED: "ALERT_PAYMENT_AFTER_REFUND",
    BlockReason.CREDIT_REFUNDED: "ALERT_PAYMENT_AFTER_REFUND",
    BlockReason.CREDIT_EXPIRED: "ALERT_PAYMENT_AFTER_CANCELLATION",
}


class SideEffect(str, enum.Enum):
    """Work scheduled after the transaction commits."""

    SEND_BOOKING_CONFIRMATION = "send_booking_confirmation"
    TRACK_PURCHASE_CONVERSION = "track_purchase_conversion"
    TRIGGER_ACCOUNT_ACTIVATION = "trigger_account_activation"


@dataclass(frozen=True)
class BookingState:
    """The three status axes of a booking."""

    status: BookingStatus
    payment_status: PaymentStatus
    financial_status: FinancialStatus

    @property
    def is_terminal(self) -> bool:
        return self.status is BookingStatus.CANCELLED or self.financial_status is FinancialStatus.REFUNDED


@dataclass(frozen=True)
class CreditState:
    """Status and balance of a credit."""

    status: CreditStatus
    amount: int
    remaining_amount: int


S = TypeVar("S")


@dataclass(frozen=True)
class Transition(Generic[S]):
    """Accepted event: next state and post-commit side effects."""

    state: S
    effects: tuple[SideEffect, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AlreadyApplied:
    """The event's outcome is already reflected in the state."""

    detail: str = ""


@dataclass(frozen=True)
class Blocked:
    """A guard refused the event."""

    reason: BlockReason


BookingOutcome = Union[Transition[BookingState], AlreadyApplied, Blocked]
CreditOutcome = Union[Transition[CreditState], AlreadyApplied, Blocked]

_CONFIRMATION_EFFECTS = (
    SideEffect.SEND_BOOKING_CONFIRMATION,
    SideEffect.TRACK_PURCHASE_CONVERSION,
    SideEffect.TRIGGER_ACCOUNT_ACTIVATION,
)

_LATE_PAYMENT_EFFECTS = (
    SideEffect.TRACK_PURCHASE_CONVERSION,
    SideEffect.TRIGGER_ACCOUNT_ACTIVATION,
)

# Scheduling statuses a paid booking can legitimately be in
_SETTLED_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW)


def confirm_booking_payment(state: BookingState) -> BookingOutcome:
    """
    Apply a payment confirmation to a booking.

    Guards run in order: already paid, courtesy, cancelled, refunded,
    partially refunded. A partial refund means the charge was already
    settled, so a late confirmation for it is a no-op.

    Only a PENDING booking is moved to CONFIRMED. COMPLETED and NO_SHOW
    bookings keep their scheduling status and only the money axes move.

    Args:
        state: Current booking state

    Returns:
        Transition to APPROVED/PAID, AlreadyApplied or Blocked
    """
    if state.financial_status is FinancialStatus.PAID and state.status in _SETTLED_STATUSES:
        return AlreadyApplied("ALREADY_CONFIRMED")
    if state.financial_status is FinancialStatus.COURTESY:
        return Blocked(BlockReason.COURTESY_BOOKING)
    if state.status is BookingStatus.CANCELLED:
        return Blocked(BlockReason.BOOKING_CANCELLED)
    if state.financial_status is FinancialStatus.REFUNDED:
        return Blocked(BlockReason.BOOKING_REFUNDED)
    if state.financial_status is FinancialStatus.PARTIAL_REFUND or state.payment_status is PaymentStatus.REFUNDED:
        return AlreadyApplied("PAYMENT_ALREADY_REFUNDED")

    if state.status is BookingStatus.PENDING:
        return Transition(
            BookingState(
                status=BookingStatus.CONFIRMED,
                payment_status=PaymentStatus.APPROVED,
                financial_status=FinancialStatus.PAID,
            ),
            _CONFIRMATION_EFFECTS,
        )

    # COMPLETED and NO_SHOW slots are in the past, so no confirmation email
    effects = _CONFIRMATION_EFFECTS if state.status is BookingStatus.CONFIRMED else _LATE_PAYMENT_EFFECTS
    return Transition(
        replace(state, payment_status=PaymentStatus.APPROVED, financial_status=FinancialStatus.PAID),
        effects,
    )


def refuse_booking_capture(state: BookingState) -> BookingOutcome:
    """
    Record a refused card capture.

    Only the payment axis moves. Nothing was captured, so scheduling and
    financial status are left as they are.
    """
    if state.payment_status is PaymentStatus.REJECTED:
        return AlreadyApplied("ALREADY_REJECTED")
    if state.payment_status in (PaymentStatus.APPROVED, PaymentStatus.REFUNDED):
        # A settled or reversed charge cannot be refused afterwards
        return AlreadyApplied("PAYMENT_ALREADY_SETTLED")
    return Transition(replace(state, payment_status=PaymentStatus.REJECTED))


def refund_booking(state: BookingState, is_partial: bool) -> BookingOutcome:
    """
    Move a booking's money axes to a refunded state.

    Scheduling status is kept for history. A partial refund may later be
    upgraded to a full one, never the reverse.

    Args:
        state: Current booking state
        is_partial: Whether the refund is partial or of unknown amount

    Returns:
        Transition or AlreadyApplied
    """
    if state.financial_status is FinancialStatus.REFUNDED:
        return AlreadyApplied("ALREADY_REFUNDED")

    target = FinancialStatus.PARTIAL_REFUND if is_partial else FinancialStatus.REFUNDED
    if state.financial_status is target and state.payment_status is PaymentStatus.REFUNDED:
        return AlreadyApplied("ALREADY_PARTIALLY_REFUNDED")

    return Transition(replace(state, payment_status=PaymentStatus.REFUNDED, financial_status=target))


def confirm_credit_purchase(state: CreditState) -> CreditOutcome:
    """
    Apply a payment confirmation to a pending credit purchase.

    Returns:
        Transition to CONFIRMED with the full balance available
    """
    if state.status in (CreditStatus.CONFIRMED, CreditStatus.USED):
        return AlreadyApplied("ALREADY_CONFIRMED")
    if state.status is CreditStatus.REFUNDED:
        return Blocked(BlockReason.CREDIT_REFUNDED)
    if state.status is CreditStatus.EXPIRED:
        return Blocked(BlockReason.CREDIT_EXPIRED)

    return Transition(
        CreditState(status=CreditStatus.CONFIRMED, amount=state.amount, remaining_amount=state.amount),
        (SideEffect.TRACK_PURCHASE_CONVERSION, SideEffect.TRIGGER_ACCOUNT_ACTIVATION),
    )


def refund_credit_purchase(state: CreditState) -> CreditOutcome:
    """Zero out a refunded credit purchase."""
    if state.status is CreditStatus.REFUNDED:
        return AlreadyApplied("ALREADY_REFUNDED")
    return Transition(CreditState(status=CreditStatus.REFUNDED, amount=state.amount, remaining_amount=0))


def restore_credit_balance(state: CreditState, amount: int) -> CreditOutcome:
    """
    Give back part of a credit's consumed balance.

    The restored amount is capped at what the credit actually gave, so
    remaining_amount never exceeds amount.

    Args:
        state: Current credit state
        amount: Centavos to restore

    Returns:
        Transition to CONFIRMED with the increased balance, or AlreadyApplied
        when nothing can be restored
    """
    if state.status not in (CreditStatus.USED, CreditStatus.CONFIRMED):
        return AlreadyApplied(f"NOT_RESTORABLE_{state.status.name}")
    restorable = min(amount, state.amount - state.remaining_amount)
    if restorable <= 0:
        return AlreadyApplied("NOTHING_CONSUMED")
    return Transition(
        CreditState(
            status=CreditStatus.CONFIRMED,
            amount=state.amount,
            remaining_amount=min(state.amount, state.remaining_amount + restorable),
        )
    )
