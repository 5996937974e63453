"""Payment model mirroring gateway charges for bookings and credit purchases."""
import enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, JSON, String

from roombook.models.base import Base


class PaymentStatus(enum.Enum):
    """Gateway payment status, shared by Payment rows and Booking.payment_status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REFUNDED = "refunded"


class Payment(Base):
    """
    Gateway charge linked to a booking or a credit purchase.

    Used as the last-resort source of the charged amount when a refund
    notification omits every value field.
    """

    __tablename__ = "payments"

    external_id = Column(String, nullable=False, unique=True, index=True)  # Gateway payment id
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=True, index=True)
    credit_id = Column(String(36), ForeignKey("credits.id"), nullable=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    amount = Column(Integer, nullable=False)  # Centavos
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    billing_type = Column(String, nullable=True)  # PIX, CREDIT_CARD, BOLETO
    paid_at = Column(DateTime, nullable=True)
    extra_data = Column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Payment(id={self.id}, external_id={self.external_id}, amount={self.amount}, status={self.status.value})>"
