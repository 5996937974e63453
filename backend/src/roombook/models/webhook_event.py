"""Inbound webhook ledger used for idempotent event handling."""
import enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Integer, JSON, String, Text

from roombook.models.base import Base


class WebhookEventStatus(enum.Enum):
    """Processing status of an inbound gateway event."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    IGNORED_NO_REFERENCE = "ignored_no_reference"
    IGNORED_NOT_FOUND = "ignored_not_found"
    BLOCKED_CANCELLED = "blocked_cancelled"
    BLOCKED_REFUNDED = "blocked_refunded"
    BLOCKED_COURTESY = "blocked_courtesy"

    @property
    def is_terminal(self) -> bool:
        """Terminal rows short-circuit redeliveries."""
        return self not in (WebhookEventStatus.PROCESSING, WebhookEventStatus.FAILED)


class WebhookEvent(Base):
    """
    One row per gateway event id.

    Created in PROCESSING before any state change so a crash leaves a
    row that the next delivery (or the replay worker) can pick up.
    """

    __tablename__ = "webhook_events"

    event_id = Column(String, nullable=False, unique=True, index=True)  # Gateway-assigned
    event_type = Column(String, nullable=False, index=True)  # PAYMENT_CONFIRMED, CHECKOUT_PAID, etc.
    external_payment_id = Column(String, nullable=True, index=True)
    resource_reference = Column(String, nullable=True)  # Raw externalReference
    status = Column(SQLEnum(WebhookEventStatus), nullable=False, default=WebhookEventStatus.PROCESSING, index=True)
    payload = Column(JSON, nullable=False)  # Raw body kept for replay
    attempts = Column(Integer, nullable=False, default=1)
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<WebhookEvent(event_id={self.event_id}, event_type={self.event_type}, status={self.status.value})>"
