"""Refund model, one row per refunded booking."""
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String

from roombook.models.base import Base


class RefundStatus(enum.Enum):
    """Refund resolution status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundGateway(enum.Enum):
    """Where the refund was executed."""

    MANUAL = "manual"
    ASAAS = "asaas"


class Refund(Base):
    """
    Reconciled refund of a booking.

    PENDING rows (partial or unknown amount) wait for manual review and
    carry no processed_at.
    """

    __tablename__ = "refunds"

    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, unique=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    expected_amount = Column(Integer, nullable=False)  # What the customer is owed back
    refunded_amount = Column(Integer, nullable=False)  # What the gateway reported
    is_partial = Column(Boolean, nullable=False, default=False)
    credits_returned = Column(Integer, nullable=False, default=0)
    money_returned = Column(Integer, nullable=False, default=0)
    total_refunded = Column(Integer, nullable=False, default=0)
    status = Column(SQLEnum(RefundStatus), nullable=False, default=RefundStatus.PENDING, index=True)
    gateway = Column(SQLEnum(RefundGateway), nullable=False, default=RefundGateway.ASAAS)
    external_refund_id = Column(String, nullable=True)
    reason = Column(String, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Refund(id={self.id}, booking_id={self.booking_id}, refunded={self.refunded_amount}, "
            f"partial={self.is_partial}, status={self.status.value})>"
        )
