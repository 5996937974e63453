"""Coupon and coupon usage models."""
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String

from roombook.models.base import Base


class CouponUsageContext(enum.Enum):
    """What the coupon was redeemed on."""

    BOOKING = "booking"
    CREDIT_PURCHASE = "credit_purchase"


class CouponUsageStatus(enum.Enum):
    """Redemption status."""

    USED = "used"
    RESTORED = "restored"


class Coupon(Base):
    """Discount coupon with a usage counter."""

    __tablename__ = "coupons"

    code = Column(String, nullable=False, unique=True, index=True)
    discount_percent = Column(Integer, nullable=True)
    discount_amount = Column(Integer, nullable=True)  # Centavos
    current_uses = Column(Integer, nullable=False, default=0)
    max_uses = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Coupon(code={self.code}, uses={self.current_uses}/{self.max_uses})>"


class CouponUsage(Base):
    """Single redemption of a coupon by a user."""

    __tablename__ = "coupon_usages"

    coupon_id = Column(String(36), ForeignKey("coupons.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    context = Column(SQLEnum(CouponUsageContext), nullable=False)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=True, index=True)
    credit_id = Column(String(36), ForeignKey("credits.id"), nullable=True, index=True)
    status = Column(SQLEnum(CouponUsageStatus), nullable=False, default=CouponUsageStatus.USED)
    restored_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<CouponUsage(coupon_id={self.coupon_id}, context={self.context.value}, status={self.status.value})>"
