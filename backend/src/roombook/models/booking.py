"""Booking model with its scheduling and money lifecycles."""
import enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, JSON, String, Text

from roombook.models.base import Base
from roombook.models.payment import PaymentStatus


class BookingStatus(enum.Enum):
    """Scheduling status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class FinancialStatus(enum.Enum):
    """Money flow status, independent of scheduling."""

    UNPAID = "unpaid"
    PAID = "paid"
    COURTESY = "courtesy"
    PARTIAL_REFUND = "partial_refund"
    REFUNDED = "refunded"


class Booking(Base):
    """
    Reservation of a room for a time interval.

    Also acts as the purchase record when the booked product is an hour
    package. status=CANCELLED and financial_status=REFUNDED are terminal
    for the webhook pipeline.
    """

    __tablename__ = "bookings"

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    room_id = Column(String(36), ForeignKey("rooms.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=True, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    financial_status = Column(SQLEnum(FinancialStatus), nullable=False, default=FinancialStatus.UNPAID, index=True)

    amount_paid = Column(Integer, nullable=False, default=0)  # Centavos received through the gateway
    net_amount = Column(Integer, nullable=True)  # Total owed after discounts
    credits_used = Column(Integer, nullable=False, default=0)  # Centavos covered by credits
    credit_ids = Column(JSON, nullable=False, default=list)  # Ordered ids of consumed credits
    coupon_code = Column(String, nullable=True)

    payment_id = Column(String, nullable=True, index=True)  # Gateway payment id
    paid_at = Column(DateTime, nullable=True)
    email_sent_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Booking(id={self.id}, status={self.status.value}, "
            f"financial_status={self.financial_status.value})>"
        )
