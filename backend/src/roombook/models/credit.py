"""Prepaid credit balance model."""
import enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String

from roombook.models.base import Base


class CreditStatus(enum.Enum):
    """Credit lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    USED = "used"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class CreditUsageType(enum.Enum):
    """Which kind of booking may consume a credit."""

    HOURLY = "hourly"
    SHIFT = "shift"
    SATURDAY_HOURLY = "saturday_hourly"
    SATURDAY_SHIFT = "saturday_shift"


class Credit(Base):
    """
    Prepaid balance usable against future bookings.

    remaining_amount never exceeds amount. CONFIRMED with remaining_amount
    equal to amount is the fully available state.
    """

    __tablename__ = "credits"

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    room_id = Column(String(36), ForeignKey("rooms.id"), nullable=True, index=True)  # Restrict to one room
    product_id = Column(String(36), ForeignKey("products.id"), nullable=True)
    source_booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=True, index=True)  # Package purchase
    amount = Column(Integer, nullable=False)  # Original grant in centavos
    remaining_amount = Column(Integer, nullable=False)
    hours = Column(Integer, nullable=True)
    status = Column(SQLEnum(CreditStatus), nullable=False, default=CreditStatus.PENDING, index=True)
    usage_type = Column(SQLEnum(CreditUsageType), nullable=False, default=CreditUsageType.HOURLY)
    coupon_code = Column(String, nullable=True)
    payment_id = Column(String, nullable=True, index=True)  # Gateway payment id
    expires_at = Column(DateTime, nullable=True)

    @property
    def consumed_amount(self) -> int:
        """Centavos already spent from this credit."""
        return self.amount - self.remaining_amount

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Credit(id={self.id}, amount={self.amount}, remaining={self.remaining_amount}, "
            f"status={self.status.value})>"
        )
