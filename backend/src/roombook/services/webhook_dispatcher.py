"""Routes parsed gateway events to booking and credit transitions."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.integrations.side_effects import SideEffectJob
from roombook.metrics import webhook_duplicates_total, webhook_events_total
from roombook.models.booking import Booking
from roombook.models.credit import Credit
from roombook.models.payment import Payment, PaymentStatus
from roombook.models.product import Product
from roombook.models.room import Room
from roombook.models.webhook_event import WebhookEvent, WebhookEventStatus
from roombook.schemas.webhook import EventSemantics, GatewayEvent, WebhookResponse
from roombook.services.credit_service import CreditService
from roombook.services.ledger_service import IdempotencyLedger
from roombook.services.reference_resolver import ResourceKind, ResourceRef, resolve_reference
from roombook.services.refund_service import RefundReconciler
from roombook.services.state_machine import (
    AlreadyApplied,
    Blocked,
    BookingState,
    SideEffect,
    Transition,
    confirm_booking_payment,
    refuse_booking_capture,
)
from roombook.utils import audit

logger = structlog.get_logger(__name__)

# Error tag returned to the gateway when processing fails
PROCESSING_FAILED = "processing_failed"


@dataclass
class DispatchResult:
    """Response for the gateway plus the side effects to run after commit."""

    response: WebhookResponse
    jobs: list[SideEffectJob] = field(default_factory=list)
    ledger_status: Optional[WebhookEventStatus] = None


@dataclass
class _Routed:
    """Outcome of routing inside the processing transaction."""

    status: WebhookEventStatus
    response: WebhookResponse
    jobs: list[SideEffectJob] = field(default_factory=list)
    outcome: str = "processed"


Resource = Union[Booking, Credit]


class WebhookDispatcher:
    """
    Applies one gateway event exactly once.

    Order of work: claim the event in the ledger (committed), classify it,
    resolve its reference, run the transition, then commit the state change
    together with the terminal ledger status. Side effects are only
    returned, never run here.
    """

    def __init__(self, db: AsyncSession, ledger: Optional[IdempotencyLedger] = None):
        self.db = db
        self.ledger = ledger or IdempotencyLedger(db)
        self.credits = CreditService(db)
        self.refunds = RefundReconciler(db)

    async def dispatch(self, event: GatewayEvent, raw_payload: dict[str, Any]) -> DispatchResult:
        """
        Handle an inbound event end to end.

        Args:
            event: Parsed gateway event
            raw_payload: Original JSON body, stored for replay

        Returns:
            DispatchResult with the acknowledgement and post-commit jobs
        """
        claim = await self.ledger.record_if_new(
            event_id=event.id,
            event_type=event.event,
            payload=raw_payload,
            external_payment_id=event.external_payment_id,
            resource_reference=event.external_reference,
        )

        if claim.is_duplicate:
            webhook_duplicates_total.labels(reason="terminal").inc()
            webhook_events_total.labels(
                family=event.family.value, semantics=event.semantics.value, outcome="duplicate"
            ).inc()
            return DispatchResult(WebhookResponse(skipped=True, event=event.event), ledger_status=claim.prior_status)

        if claim.in_progress:
            webhook_duplicates_total.labels(reason="in_progress").inc()
            return DispatchResult(
                WebhookResponse(skipped=True, reason="in_progress", event=event.event),
                ledger_status=WebhookEventStatus.PROCESSING,
            )

        return await self.process(claim.event, event)

    async def process(self, ledger_row: WebhookEvent, event: GatewayEvent) -> DispatchResult:
        """
        Run a claimed event inside one transaction.

        Any exception rolls the transaction back and marks the ledger row
        FAILED; the gateway still gets an acknowledgement.

        Args:
            ledger_row: Ledger row owned by this caller, in PROCESSING
            event: Parsed gateway event

        Returns:
            DispatchResult
        """
        log = logger.bind(event_id=event.id, event_type=event.event, family=event.family.value)
        try:
            routed = await self._route(ledger_row, event)
            self.ledger.finalize(ledger_row, routed.status)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            log.exception("webhook_processing_failed", error=str(e))
            try:
                await self.ledger.mark_failed(event.id, f"{type(e).__name__}: {e}")
            except Exception as mark_error:
                await self.db.rollback()
                log.error("ledger_mark_failed_error", error=str(mark_error))
            webhook_events_total.labels(
                family=event.family.value, semantics=event.semantics.value, outcome="failed"
            ).inc()
            # Detail stays in the log and the ledger row
            return DispatchResult(
                WebhookResponse(error=PROCESSING_FAILED, event=event.event),
                ledger_status=WebhookEventStatus.FAILED,
            )

        webhook_events_total.labels(
            family=event.family.value, semantics=event.semantics.value, outcome=routed.outcome
        ).inc()
        log.info(
            "webhook_processed",
            ledger_status=routed.status.value,
            action=routed.response.action,
            side_effects=[job.effect.value for job in routed.jobs],
        )
        return DispatchResult(routed.response, routed.jobs, routed.status)

    async def _route(self, ledger_row: WebhookEvent, event: GatewayEvent) -> _Routed:
        semantics = event.semantics
        if semantics is EventSemantics.IGNORED:
            logger.info("webhook_event_ignored", event_id=event.id, event_type=event.event)
            return _Routed(
                WebhookEventStatus.PROCESSED,
                WebhookResponse(action="ignored", event=event.event),
                outcome="ignored",
            )

        ref = resolve_reference(event.external_reference)
        if ref is None:
            logger.warning("webhook_no_reference", event_id=event.id, event_type=event.event)
            return _Routed(
                WebhookEventStatus.IGNORED_NO_REFERENCE,
                WebhookResponse(action="ignored_no_reference", event=event.event),
                outcome="ignored",
            )

        resource = await self._load(ref)
        if resource is None:
            logger.warning("webhook_entity_not_found", event_id=event.id, kind=ref.kind.value, resource_id=ref.id)
            return _Routed(
                WebhookEventStatus.IGNORED_NOT_FOUND,
                WebhookResponse(action="entity_not_found", event=event.event),
                outcome="ignored",
            )

        if isinstance(resource, Booking):
            if semantics is EventSemantics.CONFIRMATION:
                return await self._confirm_booking(resource, event)
            if semantics is EventSemantics.REFUND:
                return await self._refund_booking(resource, event)
            return await self._refuse_booking_capture(resource, event)

        if semantics is EventSemantics.CONFIRMATION:
            return await self._confirm_purchase(resource, event)
        if semantics is EventSemantics.REFUND:
            return await self._refund_purchase(resource, event)
        return await self._refuse_purchase_capture(resource, event)

    async def _load(self, ref: ResourceRef) -> Optional[Resource]:
        """Load the referenced entity; a bare id falls back from booking to credit."""
        if ref.kind is ResourceKind.PURCHASE:
            return await self.db.get(Credit, ref.id)
        booking = await self.db.get(Booking, ref.id)
        if booking is None and ref.bare:
            credit = await self.db.get(Credit, ref.id)
            if credit is not None:
                logger.info("webhook_bare_reference_matched_credit", credit_id=ref.id)
            return credit
        return booking

    async def _confirm_booking(self, booking: Booking, event: GatewayEvent) -> _Routed:
        outcome = confirm_booking_payment(_booking_state(booking))

        if isinstance(outcome, AlreadyApplied):
            logger.info("booking_already_confirmed", booking_id=booking.id, detail=outcome.detail)
            return _Routed(
                WebhookEventStatus.PROCESSED,
                WebhookResponse(already_confirmed=True, event=event.event),
                outcome="duplicate",
            )

        if isinstance(outcome, Blocked):
            return await self._blocked(outcome, "Booking", booking.id, event, booking_status=booking.status.name)

        now = datetime.utcnow()
        product = await self.db.get(Product, booking.product_id) if booking.product_id else None
        action = "booking_confirmed"
        credit_id = None
        if product is not None and product.is_package:
            room = await self.db.get(Room, booking.room_id)
            credit = await self.credits.mint_package_credit(booking, product, room, event.external_payment_id, now)
            credit_id = credit.id
            action = "package_credit_created"

        paid_amount = event.paid_amount
        booking.status = outcome.state.status
        booking.payment_status = outcome.state.payment_status
        booking.financial_status = outcome.state.financial_status
        booking.payment_id = event.external_payment_id
        if paid_amount is not None:
            booking.amount_paid = paid_amount
        booking.paid_at = now

        await self._record_payment(
            event,
            PaymentStatus.APPROVED,
            amount=paid_amount if paid_amount is not None else booking.amount_paid,
            booking_id=booking.id,
            user_id=booking.user_id,
            paid_at=now,
        )
        await self.db.flush()

        await audit.log_audit(
            self.db,
            audit.PAYMENT_RECEIVED,
            "Booking",
            booking.id,
            {"eventType": event.event, "paymentId": event.external_payment_id, "amount": booking.amount_paid},
        )
        await audit.log_audit(
            self.db,
            audit.BOOKING_CONFIRMED,
            "Booking",
            booking.id,
            {"paymentId": event.external_payment_id, "billingType": event.billing_type, "creditId": credit_id},
        )

        jobs = _jobs(outcome.effects, ResourceKind.BOOKING, booking.id, event.id)
        return _Routed(WebhookEventStatus.PROCESSED, WebhookResponse(action=action, event=event.event), jobs)

    async def _confirm_purchase(self, credit: Credit, event: GatewayEvent) -> _Routed:
        outcome = await self.credits.confirm_purchase(credit, event.external_payment_id)

        if isinstance(outcome, AlreadyApplied):
            logger.info("credit_already_confirmed", credit_id=credit.id)
            return _Routed(
                WebhookEventStatus.PROCESSED,
                WebhookResponse(already_confirmed=True, event=event.event),
                outcome="duplicate",
            )

        if isinstance(outcome, Blocked):
            return await self._blocked(outcome, "Credit", credit.id, event, credit_status=credit.status.name)

        paid_amount = event.paid_amount
        await self._record_payment(
            event,
            PaymentStatus.APPROVED,
            amount=paid_amount if paid_amount is not None else credit.amount,
            credit_id=credit.id,
            user_id=credit.user_id,
            paid_at=datetime.utcnow(),
        )
        await audit.log_audit(
            self.db,
            audit.PAYMENT_RECEIVED,
            "Credit",
            credit.id,
            {"eventType": event.event, "paymentId": event.external_payment_id, "amount": paid_amount},
        )

        jobs = _jobs(outcome.effects, ResourceKind.PURCHASE, credit.id, event.id)
        return _Routed(WebhookEventStatus.PROCESSED, WebhookResponse(action="credit_confirmed", event=event.event), jobs)

    async def _refund_booking(self, booking: Booking, event: GatewayEvent) -> _Routed:
        result = await self.refunds.reconcile_booking(booking, event)
        return _Routed(WebhookEventStatus.PROCESSED, WebhookResponse(action=result.action, event=event.event))

    async def _refund_purchase(self, credit: Credit, event: GatewayEvent) -> _Routed:
        outcome = await self.credits.refund_purchase(credit, event.event)
        if isinstance(outcome, Transition):
            await self._set_payment_status(event.external_payment_id, PaymentStatus.REFUNDED)
            action = "credit_refunded"
        else:
            action = "refund_already_processed"
        return _Routed(WebhookEventStatus.PROCESSED, WebhookResponse(action=action, event=event.event))

    async def _refuse_booking_capture(self, booking: Booking, event: GatewayEvent) -> _Routed:
        outcome = refuse_booking_capture(_booking_state(booking))
        if not isinstance(outcome, Transition):
            logger.info("capture_refusal_not_applied", booking_id=booking.id, detail=outcome.detail)
            return _Routed(WebhookEventStatus.PROCESSED, WebhookResponse(action="capture_refusal_ignored", event=event.event))

        booking.payment_status = outcome.state.payment_status
        await self._record_payment(
            event,
            PaymentStatus.REJECTED,
            amount=event.paid_amount or booking.amount_paid or 0,
            booking_id=booking.id,
            user_id=booking.user_id,
        )
        await self.db.flush()
        await audit.log_audit(
            self.db,
            audit.PAYMENT_CAPTURE_REFUSED,
            "Booking",
            booking.id,
            {"paymentId": event.external_payment_id, "bookingStatus": booking.status.name},
        )
        logger.warning("booking_capture_refused", booking_id=booking.id, payment_id=event.external_payment_id)
        return _Routed(WebhookEventStatus.PROCESSED, WebhookResponse(action="payment_rejected", event=event.event))

    async def _refuse_purchase_capture(self, credit: Credit, event: GatewayEvent) -> _Routed:
        await self._record_payment(
            event,
            PaymentStatus.REJECTED,
            amount=event.paid_amount or credit.amount,
            credit_id=credit.id,
            user_id=credit.user_id,
        )
        await audit.log_audit(
            self.db,
            audit.PAYMENT_CAPTURE_REFUSED,
            "Credit",
            credit.id,
            {"paymentId": event.external_payment_id, "creditStatus": credit.status.name},
        )
        logger.warning("credit_capture_refused", credit_id=credit.id, payment_id=event.external_payment_id)
        return _Routed(WebhookEventStatus.PROCESSED, WebhookResponse(action="payment_rejected", event=event.event))

    async def _blocked(
        self,
        blocked: Blocked,
        target_type: str,
        target_id: str,
        event: GatewayEvent,
        **details: Any,
    ) -> _Routed:
        """Raise the review alert for a guard rejection."""
        await audit.log_audit(
            self.db,
            blocked.reason.alert_action,
            target_type,
            target_id,
            {
                "eventId": event.id,
                "eventType": event.event,
                "paymentId": event.external_payment_id,
                "amount": event.paid_amount,
                "reason": blocked.reason.value,
                **details,
            },
        )
        logger.warning(
            "webhook_transition_blocked",
            event_id=event.id,
            target_type=target_type,
            target_id=target_id,
            reason=blocked.reason.value,
        )
        return _Routed(
            blocked.reason.ledger_status,
            WebhookResponse(blocked=True, reason=blocked.reason.value, event=event.event),
            outcome="blocked",
        )

    async def _record_payment(
        self,
        event: GatewayEvent,
        status: PaymentStatus,
        amount: int,
        booking_id: Optional[str] = None,
        credit_id: Optional[str] = None,
        user_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
    ) -> Payment:
        """Create or update the Payment row for the gateway payment id."""
        result = await self.db.execute(select(Payment).where(Payment.external_id == event.external_payment_id))
        payment = result.scalar_one_or_none()
        if payment is None:
            payment = Payment(external_id=event.external_payment_id, extra_data={})
            self.db.add(payment)
        payment.booking_id = booking_id or payment.booking_id
        payment.credit_id = credit_id or payment.credit_id
        payment.user_id = user_id or payment.user_id
        payment.amount = amount
        payment.status = status
        payment.billing_type = event.billing_type
        if paid_at is not None:
            payment.paid_at = paid_at
        payment.extra_data = {**(payment.extra_data or {}), "lastEvent": event.event, "lastEventId": event.id}
        return payment

    async def _set_payment_status(self, external_payment_id: str, status: PaymentStatus) -> None:
        result = await self.db.execute(select(Payment).where(Payment.external_id == external_payment_id))
        payment = result.scalar_one_or_none()
        if payment is not None:
            payment.status = status


def _booking_state(booking: Booking) -> BookingState:
    return BookingState(booking.status, booking.payment_status, booking.financial_status)


def _jobs(effects: tuple[SideEffect, ...], kind: ResourceKind, resource_id: str, event_id: str) -> list[SideEffectJob]:
    return [SideEffectJob(effect=effect, kind=kind, resource_id=resource_id, event_id=event_id) for effect in effects]
