"""Integration tests for standalone credit purchases."""
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.models import (
    Coupon,
    CouponUsage,
    CouponUsageContext,
    CouponUsageStatus,
    Credit,
    CreditStatus,
    Payment,
    PaymentStatus,
    WebhookEventStatus,
)
from roombook.services.ledger_service import IdempotencyLedger
from roombook.services.reference_resolver import ResourceKind
from roombook.services.state_machine import SideEffect
from tests.utils.helpers import audit_actions, checkout_payload, dispatch, payment_payload, reload


class TestPurchaseConfirmation:
    """Tests for confirmations on pending credit purchases."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prefix", ["purchase:", "booking:purchase:", "credit_"])
    async def test_confirms_pending_credit(self, db_session: AsyncSession, make_credit, prefix):
        credit = await make_credit(amount=10000, remaining_amount=0, status=CreditStatus.PENDING)

        result = await dispatch(db_session, payment_payload("PAYMENT_CONFIRMED", f"{prefix}{credit.id}", value=100))

        assert result.response.action == "credit_confirmed"
        credit = await reload(db_session, Credit, credit.id)
        assert credit.status is CreditStatus.CONFIRMED
        assert credit.remaining_amount == 10000
        assert credit.payment_id == "pay_000000000001"
        assert {job.effect for job in result.jobs} == {
            SideEffect.TRACK_PURCHASE_CONVERSION,
            SideEffect.TRIGGER_ACCOUNT_ACTIVATION,
        }
        assert all(job.kind is ResourceKind.PURCHASE for job in result.jobs)

        payment = (await db_session.execute(select(Payment))).scalar_one()
        assert payment.credit_id == credit.id
        assert payment.status is PaymentStatus.APPROVED
        actions = await audit_actions(db_session, credit.id)
        assert "CREDIT_CONFIRMED" in actions
        assert "PAYMENT_RECEIVED" in actions

    @pytest.mark.asyncio
    async def test_checkout_paid_confirms_credit(self, db_session: AsyncSession, make_credit):
        credit = await make_credit(amount=10000, remaining_amount=0, status=CreditStatus.PENDING)

        result = await dispatch(db_session, checkout_payload("CHECKOUT_PAID", f"purchase:{credit.id}", value=100))

        assert result.response.action == "credit_confirmed"
        assert (await reload(db_session, Credit, credit.id)).status is CreditStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_bare_reference_falls_back_to_credit(self, db_session: AsyncSession, make_credit):
        """An unprefixed id that is not a booking is tried as a credit."""
        credit = await make_credit(amount=10000, remaining_amount=0, status=CreditStatus.PENDING)

        result = await dispatch(db_session, payment_payload("PAYMENT_CONFIRMED", credit.id, value=100))

        assert result.response.action == "credit_confirmed"

    @pytest.mark.asyncio
    async def test_confirmed_credit_is_already_confirmed(self, db_session: AsyncSession, make_credit):
        credit = await make_credit(amount=10000, remaining_amount=6000, status=CreditStatus.CONFIRMED)

        result = await dispatch(db_session, payment_payload("PAYMENT_RECEIVED", f"purchase:{credit.id}", value=100))

        assert result.response.already_confirmed is True
        assert (await reload(db_session, Credit, credit.id)).remaining_amount == 6000

    @pytest.mark.asyncio
    async def test_refunded_credit_blocked(self, db_session: AsyncSession, make_credit):
        credit = await make_credit(amount=10000, remaining_amount=0, status=CreditStatus.REFUNDED)
        body = payment_payload("PAYMENT_CONFIRMED", f"purchase:{credit.id}", value=100, event_id="evt_late")

        result = await dispatch(db_session, body)

        assert result.response.blocked is True
        assert result.response.reason == "CREDIT_REFUNDED"
        assert (await IdempotencyLedger(db_session).get("evt_late")).status is WebhookEventStatus.BLOCKED_REFUNDED
        assert "ALERT_PAYMENT_AFTER_REFUND" in await audit_actions(db_session, credit.id)
        assert (await reload(db_session, Credit, credit.id)).remaining_amount == 0


class TestPurchaseRefund:
    """Tests for refunds of credit purchases."""

    @pytest.mark.asyncio
    async def test_refund_zeroes_credit_and_restores_coupon(self, db_session: AsyncSession, make_credit, test_user):
        coupon = Coupon(code="BEMVINDO10", discount_percent=10, current_uses=3, max_uses=100)
        db_session.add(coupon)
        await db_session.commit()
        credit = await make_credit(amount=10000, remaining_amount=7000, coupon_code="BEMVINDO10")
        usage = CouponUsage(
            coupon_id=coupon.id,
            user_id=test_user.id,
            context=CouponUsageContext.CREDIT_PURCHASE,
            credit_id=credit.id,
        )
        db_session.add(usage)
        await db_session.commit()

        result = await dispatch(db_session, payment_payload("PAYMENT_REFUNDED", f"purchase:{credit.id}", value=100))

        assert result.response.action == "credit_refunded"
        credit = await reload(db_session, Credit, credit.id)
        assert credit.status is CreditStatus.REFUNDED
        assert credit.remaining_amount == 0
        usage = await reload(db_session, CouponUsage, usage.id)
        assert usage.status is CouponUsageStatus.RESTORED
        assert usage.restored_at is not None
        assert (await reload(db_session, Coupon, coupon.id)).current_uses == 2
        assert "CREDIT_REFUNDED" in await audit_actions(db_session, credit.id)
        assert "COUPON_RESTORED" in await audit_actions(db_session, coupon.id)

    @pytest.mark.asyncio
    async def test_coupon_restored_by_code(self, db_session: AsyncSession, make_credit):
        """Without a usage row the coupon is found by the credit's code."""
        coupon = Coupon(code="PROMO", discount_amount=1000, current_uses=1)
        db_session.add(coupon)
        await db_session.commit()
        credit = await make_credit(amount=10000, coupon_code="PROMO")

        await dispatch(db_session, payment_payload("PAYMENT_REFUNDED", f"purchase:{credit.id}", value=100))

        assert (await reload(db_session, Coupon, coupon.id)).current_uses == 0

    @pytest.mark.asyncio
    async def test_second_refund_is_noop(self, db_session: AsyncSession, make_credit):
        credit = await make_credit(amount=10000)
        await dispatch(
            db_session, payment_payload("PAYMENT_REFUNDED", f"purchase:{credit.id}", value=100, event_id="evt_a")
        )

        result = await dispatch(
            db_session,
            payment_payload("PAYMENT_CHARGEBACK_REQUESTED", f"purchase:{credit.id}", value=100, event_id="evt_b"),
        )

        assert result.response.action == "refund_already_processed"
        assert await audit_actions(db_session, credit.id) == ["CREDIT_REFUNDED"]


class TestPurchaseCaptureRefused:
    """Tests for refused card captures on purchases."""

    @pytest.mark.asyncio
    async def test_records_rejected_payment(self, db_session: AsyncSession, make_credit):
        credit = await make_credit(amount=10000, remaining_amount=0, status=CreditStatus.PENDING)

        result = await dispatch(
            db_session,
            payment_payload("PAYMENT_CREDIT_CARD_CAPTURE_REFUSED", f"purchase:{credit.id}", value=100),
        )

        assert result.response.action == "payment_rejected"
        assert (await reload(db_session, Credit, credit.id)).status is CreditStatus.PENDING
        payment = (await db_session.execute(select(Payment))).scalar_one()
        assert payment.status is PaymentStatus.REJECTED
