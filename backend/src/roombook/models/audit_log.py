"""Audit log model for financial events and alerts."""
from sqlalchemy import Column, JSON, String

from roombook.models.base import Base


class AuditLog(Base):
    """
    Audit trail entry.

    Alert actions (ALERT_*) flag events that need human review.
    """

    __tablename__ = "audit_logs"

    action = Column(String, nullable=False, index=True)  # BOOKING_CONFIRMED, CREDIT_REFUNDED, ALERT_*
    source = Column(String, nullable=False, default="SYSTEM")  # SYSTEM, WEBHOOK, ADMIN
    target_type = Column(String, nullable=False, index=True)  # Booking, Credit, Coupon
    target_id = Column(String, nullable=False, index=True)
    actor_id = Column(String, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    request_id = Column(String, nullable=True)  # Correlation ID from request

    def __repr__(self) -> str:
        """String representation."""
        return f"<AuditLog(action={self.action}, target_type={self.target_type}, target_id={self.target_id})>"
