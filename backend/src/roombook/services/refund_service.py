"""Refund reconciliation for bookings paid with money and credits."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.config import settings
from roombook.metrics import refund_amount_total, refunds_recorded_total
from roombook.models.booking import Booking, FinancialStatus
from roombook.models.payment import Payment, PaymentStatus
from roombook.models.refund import Refund, RefundGateway, RefundStatus
from roombook.schemas.webhook import GatewayEvent
from roombook.services.credit_service import CreditService
from roombook.services.state_machine import BookingState, Transition, refund_booking
from roombook.utils import audit

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RefundAmounts:
    """Classified refund figures, all in centavos."""

    expected_amount: int
    refunded_amount: int
    is_amount_unknown: bool
    is_partial: bool
    credits_returned: int
    money_returned: int


@dataclass
class RefundResult:
    """What the reconciler did for one event."""

    action: str
    refund: Optional[Refund] = None
    amounts: Optional[RefundAmounts] = None
    restored: dict[str, int] = field(default_factory=dict)


def expected_refund_amount(booking: Booking) -> int:
    """
    Total owed back to the customer.

    Uses the booking's net amount, which covers both the gateway leg and
    the credit leg; falls back to amount paid plus credits used.
    """
    if booking.net_amount is not None:
        return booking.net_amount
    return (booking.amount_paid or 0) + (booking.credits_used or 0)


def refund_tolerance(expected_amount: int) -> int:
    """
    Rounding tolerance for full-refund classification.

    Examples:
        >>> refund_tolerance(10000)
        100
        >>> refund_tolerance(50000)
        500
    """
    return max(int(expected_amount * settings.refund_tolerance_ratio), settings.refund_tolerance_min_cents)


def classify_refund(expected_amount: int, refunded_amount: Optional[int], credits_used: int) -> RefundAmounts:
    """
    Classify a refund as full or partial and split it into credit and money legs.

    Args:
        expected_amount: What the customer is owed back
        refunded_amount: What the gateway reported, None when unknown
        credits_used: Credit consumption of the booking

    Returns:
        RefundAmounts; an unknown amount is always partial with refunded_amount 0
    """
    is_amount_unknown = refunded_amount is None
    refunded = 0 if is_amount_unknown else max(refunded_amount, 0)
    is_partial = is_amount_unknown or refunded < expected_amount - refund_tolerance(expected_amount)
    credits_returned = min(credits_used or 0, refunded)
    return RefundAmounts(
        expected_amount=expected_amount,
        refunded_amount=refunded,
        is_amount_unknown=is_amount_unknown,
        is_partial=is_partial,
        credits_returned=credits_returned,
        money_returned=refunded - credits_returned,
    )


class RefundReconciler:
    """
    Reconciles refund and chargeback events against bookings.

    Everything runs in the caller's transaction: the Refund row, credit
    restoration, booking status and audit entries commit or fail together.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.credits = CreditService(db)

    async def get_refund(self, booking_id: str) -> Optional[Refund]:
        """Get the refund recorded for a booking."""
        result = await self.db.execute(select(Refund).where(Refund.booking_id == booking_id))
        return result.scalar_one_or_none()

    async def resolve_refunded_amount(self, event: GatewayEvent) -> Optional[int]:
        """
        Refunded amount in centavos from the payload, else from the stored payment.

        Returns:
            Amount, or None when neither source has one
        """
        amount = event.reported_refund_amount()
        if amount is not None:
            return amount

        result = await self.db.execute(select(Payment).where(Payment.external_id == event.external_payment_id))
        payment = result.scalar_one_or_none()
        if payment is not None:
            logger.info("refund_amount_from_payment_record", payment_id=payment.external_id, amount=payment.amount)
            return payment.amount
        return None

    async def reconcile_booking(self, booking: Booking, event: GatewayEvent) -> RefundResult:
        """
        Apply a refund or chargeback event to a booking.

        A COMPLETED refund makes the event a no-op. A PENDING refund is
        completed without restoring credits a second time. Otherwise a new
        Refund row is created, credits are restored and the booking's money
        axes move to REFUNDED or PARTIAL_REFUND.

        Args:
            booking: Refunded booking
            event: Parsed gateway event

        Returns:
            RefundResult
        """
        existing = await self.get_refund(booking.id)
        if existing is not None:
            if existing.status is RefundStatus.COMPLETED:
                logger.info("refund_already_completed", booking_id=booking.id, refund_id=existing.id)
                return RefundResult(action="refund_already_processed", refund=existing)
            return await self._complete_pending(booking, existing, event)

        if booking.financial_status is FinancialStatus.REFUNDED:
            # Refunded outside this pipeline; restoring credits again would double-count
            logger.warning("refund_booking_already_refunded", booking_id=booking.id)
            return RefundResult(action="refund_already_processed")

        refunded = await self.resolve_refunded_amount(event)
        amounts = classify_refund(expected_refund_amount(booking), refunded, booking.credits_used or 0)
        now = datetime.utcnow()
        original_status = booking.status

        refund = Refund(
            booking_id=booking.id,
            user_id=booking.user_id,
            expected_amount=amounts.expected_amount,
            refunded_amount=amounts.refunded_amount,
            is_partial=amounts.is_partial,
            credits_returned=amounts.credits_returned,
            money_returned=amounts.money_returned,
            total_refunded=amounts.refunded_amount,
            status=RefundStatus.PENDING if amounts.is_partial else RefundStatus.COMPLETED,
            gateway=RefundGateway.ASAAS,
            external_refund_id=event.external_payment_id,
            reason=event.event,
            processed_at=None if amounts.is_partial else now,
        )
        self.db.add(refund)

        restored: dict[str, int] = {}
        if amounts.credits_returned > 0 and booking.credit_ids:
            restored = await self.credits.restore_consumed(list(booking.credit_ids), amounts.credits_returned)

        self._apply_booking_refund(booking, amounts.is_partial, event, now)
        await self._mark_payment_refunded(event.external_payment_id)
        await self.db.flush()

        await audit.log_audit(
            self.db,
            audit.BOOKING_PARTIAL_REFUND if amounts.is_partial else audit.BOOKING_REFUNDED,
            "Booking",
            booking.id,
            {
                "eventType": event.event,
                "paymentId": event.external_payment_id,
                "originalStatus": original_status.name,
                "expectedAmount": amounts.expected_amount,
                "refundedAmount": amounts.refunded_amount,
                "creditsReturned": amounts.credits_returned,
                "moneyReturned": amounts.money_returned,
                "restoredCredits": restored,
                "refundId": refund.id,
            },
        )
        if amounts.is_amount_unknown:
            await audit.log_audit(
                self.db,
                audit.ALERT_REFUND_NEEDS_REVIEW,
                "Booking",
                booking.id,
                {"eventType": event.event, "paymentId": event.external_payment_id, "refundId": refund.id},
            )

        kind = "unknown_amount" if amounts.is_amount_unknown else ("partial" if amounts.is_partial else "full")
        refunds_recorded_total.labels(kind=kind).inc()
        refund_amount_total.labels(leg="credits").inc(amounts.credits_returned)
        refund_amount_total.labels(leg="money").inc(amounts.money_returned)
        logger.info(
            "refund_recorded",
            booking_id=booking.id,
            refund_id=refund.id,
            kind=kind,
            expected_amount=amounts.expected_amount,
            refunded_amount=amounts.refunded_amount,
            credits_returned=amounts.credits_returned,
            money_returned=amounts.money_returned,
        )

        if amounts.is_amount_unknown:
            action = "refund_needs_review"
        elif amounts.is_partial:
            action = "partial_refund_recorded"
        else:
            action = "refund_recorded"
        return RefundResult(action=action, refund=refund, amounts=amounts, restored=restored)

    async def _complete_pending(self, booking: Booking, refund: Refund, event: GatewayEvent) -> RefundResult:
        """Finish a PENDING refund; credits were already restored when it was created."""
        now = datetime.utcnow()
        reported = event.reported_refund_amount()
        if reported is not None and reported > refund.refunded_amount:
            refund.refunded_amount = reported
            refund.total_refunded = reported
            refund.money_returned = reported - refund.credits_returned

        refund.is_partial = refund.refunded_amount < refund.expected_amount - refund_tolerance(refund.expected_amount)
        refund.status = RefundStatus.COMPLETED
        refund.processed_at = now
        refund.external_refund_id = event.external_payment_id
        refund.reason = event.event

        self._apply_booking_refund(booking, refund.is_partial, event, now)
        await self._mark_payment_refunded(event.external_payment_id)
        await self.db.flush()

        await audit.log_audit(
            self.db,
            audit.BOOKING_PARTIAL_REFUND if refund.is_partial else audit.BOOKING_REFUNDED,
            "Booking",
            booking.id,
            {
                "eventType": event.event,
                "paymentId": event.external_payment_id,
                "refundId": refund.id,
                "refundedAmount": refund.refunded_amount,
                "completedPending": True,
            },
        )
        logger.info("pending_refund_completed", booking_id=booking.id, refund_id=refund.id)
        return RefundResult(action="refund_completed", refund=refund)

    def _apply_booking_refund(self, booking: Booking, is_partial: bool, event: GatewayEvent, now: datetime) -> None:
        outcome = refund_booking(
            BookingState(booking.status, booking.payment_status, booking.financial_status),
            is_partial,
        )
        if isinstance(outcome, Transition):
            booking.payment_status = outcome.state.payment_status
            booking.financial_status = outcome.state.financial_status
        note = f"[{now.isoformat()}] {event.event} via gateway ({'partial' if is_partial else 'full'} refund)"
        booking.notes = f"{booking.notes}\n{note}" if booking.notes else note

    async def _mark_payment_refunded(self, external_payment_id: str) -> None:
        result = await self.db.execute(select(Payment).where(Payment.external_id == external_payment_id))
        payment = result.scalar_one_or_none()
        if payment is not None:
            payment.status = PaymentStatus.REFUNDED
