"""Integration tests for refund and chargeback reconciliation."""
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.models import (
    Booking,
    BookingStatus,
    Credit,
    CreditStatus,
    FinancialStatus,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
)
from tests.utils.helpers import audit_actions, dispatch, payment_payload, reload


@pytest_asyncio.fixture
async def credits_pair(make_credit):
    """Two credits that paid R$18,00 and R$12,00 of a booking."""
    first = await make_credit(amount=5000, remaining_amount=3200, status=CreditStatus.CONFIRMED)
    second = await make_credit(amount=1200, remaining_amount=0, status=CreditStatus.USED)
    return first, second


@pytest_asyncio.fixture
async def mixed_booking(make_booking, credits_pair):
    """Confirmed booking of R$90,00: R$30,00 in credits plus R$60,00 paid."""
    first, second = credits_pair
    return await make_booking(
        status=BookingStatus.CONFIRMED,
        payment_status=PaymentStatus.APPROVED,
        financial_status=FinancialStatus.PAID,
        net_amount=9000,
        amount_paid=6000,
        credits_used=3000,
        credit_ids=[first.id, second.id],
        payment_id="pay_000000000001",
    )


async def _refund(db: AsyncSession, booking_id: str) -> Refund:
    result = await db.execute(select(Refund).where(Refund.booking_id == booking_id))
    return result.scalar_one()


class TestFullRefund:
    """Tests for refunds covering the whole booking."""

    @pytest.mark.asyncio
    async def test_mixed_payment_full_refund(self, db_session: AsyncSession, mixed_booking, credits_pair):
        """Credits are given back to the credits that paid, the rest is money."""
        body = payment_payload(
            "PAYMENT_REFUNDED", f"booking:{mixed_booking.id}", value=60.0, refundedValue=90.0, event_id="evt_refund"
        )

        result = await dispatch(db_session, body)

        assert result.response.action == "refund_recorded"
        refund = await _refund(db_session, mixed_booking.id)
        assert refund.expected_amount == 9000
        assert refund.refunded_amount == 9000
        assert refund.is_partial is False
        assert refund.credits_returned == 3000
        assert refund.money_returned == 6000
        assert refund.total_refunded == 9000
        assert refund.status is RefundStatus.COMPLETED
        assert refund.processed_at is not None
        assert refund.reason == "PAYMENT_REFUNDED"

        booking = await reload(db_session, Booking, mixed_booking.id)
        assert booking.status is BookingStatus.CONFIRMED
        assert booking.payment_status is PaymentStatus.REFUNDED
        assert booking.financial_status is FinancialStatus.REFUNDED
        assert "PAYMENT_REFUNDED" in booking.notes

        first, second = credits_pair
        first = await reload(db_session, Credit, first.id)
        second = await reload(db_session, Credit, second.id)
        assert first.remaining_amount == 5000
        assert second.remaining_amount == 1200
        assert second.status is CreditStatus.CONFIRMED

        assert "BOOKING_REFUNDED" in await audit_actions(db_session, mixed_booking.id)

    @pytest.mark.asyncio
    async def test_rounding_difference_is_full(self, db_session: AsyncSession, mixed_booking):
        body = payment_payload("PAYMENT_REFUNDED", f"booking:{mixed_booking.id}", refundedValue=89.5)

        result = await dispatch(db_session, body)

        assert result.response.action == "refund_recorded"
        assert (await _refund(db_session, mixed_booking.id)).is_partial is False

    @pytest.mark.asyncio
    async def test_marks_payment_refunded(self, db_session: AsyncSession, mixed_booking):
        db_session.add(
            Payment(
                external_id="pay_000000000001",
                booking_id=mixed_booking.id,
                amount=6000,
                status=PaymentStatus.APPROVED,
                extra_data={},
            )
        )
        await db_session.commit()

        await dispatch(db_session, payment_payload("PAYMENT_REFUNDED", f"booking:{mixed_booking.id}", refundedValue=90))

        payment = (await db_session.execute(select(Payment))).scalar_one()
        await db_session.refresh(payment)
        assert payment.status is PaymentStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_money_only_booking(self, db_session: AsyncSession, make_booking):
        booking = await make_booking(
            status=BookingStatus.CONFIRMED,
            payment_status=PaymentStatus.APPROVED,
            financial_status=FinancialStatus.PAID,
            net_amount=5000,
            amount_paid=5000,
        )

        await dispatch(db_session, payment_payload("PAYMENT_REFUNDED", f"booking:{booking.id}", value=50))

        refund = await _refund(db_session, booking.id)
        assert refund.credits_returned == 0
        assert refund.money_returned == 5000


class TestPartialRefund:
    """Tests for refunds below the expected amount."""

    @pytest.mark.asyncio
    async def test_partial_refund_then_completion(self, db_session: AsyncSession, mixed_booking, credits_pair):
        """A partial refund stays PENDING until a later event completes it."""
        partial = payment_payload(
            "PAYMENT_PARTIALLY_REFUNDED", f"booking:{mixed_booking.id}", refundedValue=40.0, event_id="evt_partial"
        )

        result = await dispatch(db_session, partial)

        assert result.response.action == "partial_refund_recorded"
        refund = await _refund(db_session, mixed_booking.id)
        assert refund.status is RefundStatus.PENDING
        assert refund.is_partial is True
        assert refund.refunded_amount == 4000
        assert refund.credits_returned == 3000
        assert refund.money_returned == 1000
        booking = await reload(db_session, Booking, mixed_booking.id)
        assert booking.financial_status is FinancialStatus.PARTIAL_REFUND
        assert "BOOKING_PARTIAL_REFUND" in await audit_actions(db_session, mixed_booking.id)

        first, second = credits_pair
        assert (await reload(db_session, Credit, first.id)).remaining_amount == 5000
        assert (await reload(db_session, Credit, second.id)).remaining_amount == 1200

        full = payment_payload(
            "PAYMENT_REFUNDED", f"booking:{mixed_booking.id}", refundedValue=90.0, event_id="evt_full"
        )
        completed = await dispatch(db_session, full)

        assert completed.response.action == "refund_completed"
        refund = await reload(db_session, Refund, refund.id)
        assert refund.status is RefundStatus.COMPLETED
        assert refund.refunded_amount == 9000
        assert refund.money_returned == 6000
        assert refund.is_partial is False
        booking = await reload(db_session, Booking, mixed_booking.id)
        assert booking.financial_status is FinancialStatus.REFUNDED
        # Credits are not restored a second time
        assert (await reload(db_session, Credit, first.id)).remaining_amount == 5000


class TestUnknownAmount:
    """Tests for refund events without an amount."""

    @pytest.mark.asyncio
    async def test_amount_from_payment_record(self, db_session: AsyncSession, mixed_booking):
        db_session.add(
            Payment(
                external_id="pay_000000000001",
                booking_id=mixed_booking.id,
                amount=9000,
                status=PaymentStatus.APPROVED,
                extra_data={},
            )
        )
        await db_session.commit()

        result = await dispatch(db_session, payment_payload("PAYMENT_REFUNDED", f"booking:{mixed_booking.id}"))

        assert result.response.action == "refund_recorded"
        refund = await _refund(db_session, mixed_booking.id)
        assert refund.refunded_amount == 9000
        assert refund.status is RefundStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_no_amount_anywhere_needs_review(self, db_session: AsyncSession, mixed_booking, credits_pair):
        """Nothing is assumed: PENDING refund, no credit restored, alert raised."""
        result = await dispatch(
            db_session, payment_payload("PAYMENT_CHARGEBACK_REQUESTED", f"booking:{mixed_booking.id}")
        )

        assert result.response.action == "refund_needs_review"
        refund = await _refund(db_session, mixed_booking.id)
        assert refund.status is RefundStatus.PENDING
        assert refund.is_partial is True
        assert refund.refunded_amount == 0
        assert refund.credits_returned == 0
        first, _ = credits_pair
        assert (await reload(db_session, Credit, first.id)).remaining_amount == 3200
        booking = await reload(db_session, Booking, mixed_booking.id)
        assert booking.financial_status is FinancialStatus.PARTIAL_REFUND
        assert "ALERT_REFUND_NEEDS_REVIEW" in await audit_actions(db_session, mixed_booking.id)


class TestRefundIdempotency:
    """Tests for repeated refund notifications."""

    @pytest.mark.asyncio
    async def test_many_deliveries_restore_once(self, db_session: AsyncSession, mixed_booking, credits_pair):
        """Redeliveries and follow-up refund events never restore credits twice."""
        first, second = credits_pair
        body = payment_payload(
            "PAYMENT_REFUNDED", f"booking:{mixed_booking.id}", refundedValue=90.0, event_id="evt_refund"
        )
        await dispatch(db_session, body)

        for _ in range(3):
            again = await dispatch(db_session, body)
            assert again.response.skipped is True

        chargeback = payment_payload(
            "PAYMENT_CHARGEBACK_DISPUTE", f"booking:{mixed_booking.id}", refundedValue=90.0, event_id="evt_dispute"
        )
        follow_up = await dispatch(db_session, chargeback)

        assert follow_up.response.action == "refund_already_processed"
        assert (await reload(db_session, Credit, first.id)).remaining_amount == 5000
        assert (await reload(db_session, Credit, second.id)).remaining_amount == 1200
        refunds = (await db_session.execute(select(Refund))).scalars().all()
        assert len(refunds) == 1

    @pytest.mark.asyncio
    async def test_refunded_booking_without_record(self, db_session: AsyncSession, make_booking):
        """A booking refunded elsewhere is not refunded again."""
        booking = await make_booking(
            status=BookingStatus.CANCELLED,
            payment_status=PaymentStatus.REFUNDED,
            financial_status=FinancialStatus.REFUNDED,
        )

        result = await dispatch(db_session, payment_payload("PAYMENT_REFUNDED", f"booking:{booking.id}", value=50))

        assert result.response.action == "refund_already_processed"
        assert (await db_session.execute(select(Refund))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_refund_keeps_cancelled_status(self, db_session: AsyncSession, make_booking):
        """Scheduling status is history and survives the refund."""
        booking = await make_booking(
            status=BookingStatus.CANCELLED,
            payment_status=PaymentStatus.APPROVED,
            financial_status=FinancialStatus.PAID,
            net_amount=5000,
            amount_paid=5000,
        )

        await dispatch(db_session, payment_payload("PAYMENT_REFUNDED", f"booking:{booking.id}", value=50))

        booking = await reload(db_session, Booking, booking.id)
        assert booking.status is BookingStatus.CANCELLED
        assert booking.financial_status is FinancialStatus.REFUNDED
