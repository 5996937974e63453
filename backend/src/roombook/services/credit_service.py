"""Credit service: package minting, purchase lifecycle and balance restoration."""
from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.config import settings
from roombook.metrics import credits_minted_total, credits_restored_amount_total
from roombook.models.booking import Booking
from roombook.models.coupon import Coupon, CouponUsage, CouponUsageStatus
from roombook.models.credit import Credit, CreditStatus, CreditUsageType
from roombook.models.product import DEFAULT_PACKAGE_HOURS, Product, ProductType
from roombook.models.room import Room
from roombook.services.state_machine import (
    CreditOutcome,
    CreditState,
    Transition,
    confirm_credit_purchase,
    refund_credit_purchase,
    restore_credit_balance,
)
from roombook.utils import audit

logger = structlog.get_logger(__name__)

# Statuses whose consumed balance may be given back
RESTORABLE_STATUSES = (CreditStatus.USED, CreditStatus.CONFIRMED)


def usage_type_for_product(product_type: Optional[ProductType]) -> CreditUsageType:
    """
    Credit usage restriction derived from the purchased product.

    Shift products only pay for shift bookings, Saturday products only for
    Saturday bookings; everything else is general hourly credit.
    """
    if product_type is ProductType.SHIFT_FIXED:
        return CreditUsageType.SHIFT
    if product_type is ProductType.SATURDAY_SHIFT:
        return CreditUsageType.SATURDAY_SHIFT
    if product_type in (ProductType.SATURDAY_HOUR, ProductType.SATURDAY_5H):
        return CreditUsageType.SATURDAY_HOURLY
    return CreditUsageType.HOURLY


def package_credit_amount(hours: int, hourly_rate: Optional[int], price: int) -> int:
    """
    Credit granted for a package.

    Args:
        hours: Hours included in the package
        hourly_rate: Room hourly rate in centavos, if configured
        price: Package price in centavos

    Returns:
        hours x effective hourly rate

    Raises:
        ValueError: If the package includes no hours
    """
    if hours <= 0:
        raise ValueError("Package must include at least one hour")
    effective_rate = hourly_rate if hourly_rate else price // hours
    return hours * effective_rate


def allocate_restoration(total: int, consumed: Sequence[int]) -> list[int]:
    """
    Split a restored amount across credits.

    The amount is divided evenly (floor), the remainder goes one unit at a
    time to the earliest credits, and no credit receives more than it
    contributed. Whatever a credit cannot absorb is carried to the
    earliest credits that still have room.

    Args:
        total: Centavos to restore
        consumed: Per-credit consumed amount, in booking order

    Returns:
        Per-credit restoration, same order as ``consumed``

    Examples:
        >>> allocate_restoration(3000, [1800, 1200])
        [1800, 1200]
        >>> allocate_restoration(5000, [5000, 5000, 5000])
        [1667, 1667, 1666]
    """
    if not consumed or total <= 0:
        return [0] * len(consumed)

    base, remainder = divmod(total, len(consumed))
    shares = [base + (1 if index < remainder else 0) for index in range(len(consumed))]
    allocation = [min(share, max(cap, 0)) for share, cap in zip(shares, consumed)]

    leftover = total - sum(allocation)
    for index, cap in enumerate(consumed):
        if leftover <= 0:
            break
        extra = min(leftover, max(cap, 0) - allocation[index])
        if extra > 0:
            allocation[index] += extra
            leftover -= extra
    return allocation


def _apply_credit_state(credit: Credit, state: CreditState) -> None:
    credit.status = state.status
    credit.remaining_amount = state.remaining_amount


def _credit_state(credit: Credit) -> CreditState:
    return CreditState(status=credit.status, amount=credit.amount, remaining_amount=credit.remaining_amount)


class CreditService:
    """Service for credit balances touched by payment events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def mint_package_credit(
        self,
        booking: Booking,
        product: Product,
        room: Optional[Room],
        external_payment_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Credit:
        """
        Mint the credit bought through a package booking.

        The credit is usable immediately: the package payment is the
        activation. Minting twice for the same booking returns the existing
        credit.

        Args:
            booking: Booking acting as the purchase record
            product: Package product that was bought
            room: Booked room (its hourly rate prices the hours)
            external_payment_id: Gateway payment id
            now: Confirmation time, defaults to utcnow

        Returns:
            The CONFIRMED credit
        """
        result = await self.db.execute(select(Credit).where(Credit.source_booking_id == booking.id))
        existing = result.scalar_one_or_none()
        if existing is not None:
            logger.info("package_credit_already_minted", booking_id=booking.id, credit_id=existing.id)
            return existing

        now = now or datetime.utcnow()
        hours = product.hours_included or DEFAULT_PACKAGE_HOURS.get(product.type, 0)
        amount = package_credit_amount(hours, room.hourly_rate if room else None, product.price)
        validity_days = product.validity_days or settings.default_package_validity_days
        usage_type = usage_type_for_product(product.type)

        credit = Credit(
            user_id=booking.user_id,
            room_id=booking.room_id,
            product_id=product.id,
            source_booking_id=booking.id,
            amount=amount,
            remaining_amount=amount,
            hours=hours,
            status=CreditStatus.CONFIRMED,
            usage_type=usage_type,
            coupon_code=booking.coupon_code,
            payment_id=external_payment_id,
            expires_at=now + timedelta(days=validity_days),
        )
        self.db.add(credit)
        await self.db.flush()

        await audit.log_audit(
            self.db,
            audit.CREDIT_CREATED,
            "Credit",
            credit.id,
            {
                "bookingId": booking.id,
                "productType": product.type.name,
                "hours": hours,
                "amount": amount,
                "usageType": usage_type.name,
                "expiresAt": credit.expires_at.isoformat(),
            },
        )
        credits_minted_total.labels(usage_type=usage_type.name).inc()
        logger.info(
            "package_credit_minted",
            credit_id=credit.id,
            booking_id=booking.id,
            hours=hours,
            amount=amount,
            usage_type=usage_type.name,
        )
        return credit

    async def confirm_purchase(
        self,
        credit: Credit,
        external_payment_id: Optional[str] = None,
    ) -> CreditOutcome:
        """
        Activate a pending credit purchase after payment.

        Args:
            credit: Credit referenced by the payment
            external_payment_id: Gateway payment id

        Returns:
            Outcome of the credit state machine
        """
        outcome = confirm_credit_purchase(_credit_state(credit))
        if isinstance(outcome, Transition):
            _apply_credit_state(credit, outcome.state)
            if external_payment_id:
                credit.payment_id = external_payment_id
            await self.db.flush()
            await audit.log_audit(
                self.db,
                audit.CREDIT_CONFIRMED,
                "Credit",
                credit.id,
                {"amount": credit.amount, "paymentId": external_payment_id},
            )
            logger.info("credit_purchase_confirmed", credit_id=credit.id, amount=credit.amount)
        return outcome

    async def refund_purchase(self, credit: Credit, event_type: str) -> CreditOutcome:
        """
        Refund a credit purchase and give its coupon back.

        Args:
            credit: Refunded credit
            event_type: Gateway event name, for the audit trail

        Returns:
            Outcome of the credit state machine
        """
        previous = _credit_state(credit)
        outcome = refund_credit_purchase(previous)
        if not isinstance(outcome, Transition):
            return outcome

        _apply_credit_state(credit, outcome.state)
        await self.db.flush()
        await audit.log_audit(
            self.db,
            audit.CREDIT_REFUNDED,
            "Credit",
            credit.id,
            {
                "eventType": event_type,
                "previousStatus": previous.status.name,
                "previousRemaining": previous.remaining_amount,
                "amount": credit.amount,
            },
        )
        await self.restore_coupon(credit)
        logger.info("credit_purchase_refunded", credit_id=credit.id, amount=credit.amount)
        return outcome

    async def restore_coupon(self, credit: Credit) -> bool:
        """
        Reverse the coupon redemption attached to a credit purchase.

        Returns:
            True if a coupon usage was restored
        """
        result = await self.db.execute(
            select(CouponUsage).where(
                CouponUsage.credit_id == credit.id,
                CouponUsage.status == CouponUsageStatus.USED,
            )
        )
        usages = list(result.scalars().all())

        coupons: list[Coupon] = []
        now = datetime.utcnow()
        for usage in usages:
            usage.status = CouponUsageStatus.RESTORED
            usage.restored_at = now
            coupon = await self.db.get(Coupon, usage.coupon_id)
            if coupon is not None:
                coupons.append(coupon)

        if not usages and credit.coupon_code:
            result = await self.db.execute(select(Coupon).where(Coupon.code == credit.coupon_code))
            coupon = result.scalar_one_or_none()
            if coupon is not None:
                coupons.append(coupon)

        for coupon in coupons:
            coupon.current_uses = max(0, (coupon.current_uses or 0) - 1)
            await audit.log_audit(
                self.db,
                audit.COUPON_RESTORED,
                "Coupon",
                coupon.id,
                {"code": coupon.code, "creditId": credit.id, "currentUses": coupon.current_uses},
            )

        if coupons:
            await self.db.flush()
            logger.info("coupon_usage_restored", credit_id=credit.id, coupons=[c.code for c in coupons])
        return bool(coupons)

    async def restore_consumed(self, credit_ids: Sequence[str], total: int) -> dict[str, int]:
        """
        Give a refunded credit consumption back to the credits that paid it.

        Args:
            credit_ids: Credits consumed by the booking, in booking order
            total: Centavos of credit consumption being refunded

        Returns:
            Mapping of credit id to restored centavos (only credits that received something)
        """
        if not credit_ids or total <= 0:
            return {}

        result = await self.db.execute(select(Credit).where(Credit.id.in_(list(credit_ids))))
        by_id = {credit.id: credit for credit in result.scalars().all()}
        credits = [by_id[credit_id] for credit_id in credit_ids if credit_id in by_id]
        if len(credits) != len(credit_ids):
            logger.warning(
                "refund_credits_missing",
                expected=len(credit_ids),
                found=len(credits),
            )

        capacities = [
            credit.consumed_amount if credit.status in RESTORABLE_STATUSES else 0 for credit in credits
        ]
        allocation = allocate_restoration(total, capacities)

        restored: dict[str, int] = {}
        for credit, amount in zip(credits, allocation):
            if amount <= 0:
                continue
            before = credit.remaining_amount
            outcome = restore_credit_balance(_credit_state(credit), amount)
            if isinstance(outcome, Transition):
                _apply_credit_state(credit, outcome.state)
                restored[credit.id] = credit.remaining_amount - before

        restored_total = sum(restored.values())
        if restored_total < total:
            logger.warning(
                "refund_credit_restoration_short",
                requested=total,
                restored=restored_total,
            )
        if restored:
            await self.db.flush()
            credits_restored_amount_total.inc(restored_total)
            logger.info("credits_restored", restored=restored, total=restored_total)
        return restored
