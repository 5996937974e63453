"""Conversion tracking guard model."""
import enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, String, Text, UniqueConstraint

from roombook.models.base import Base


class ConversionStatus(enum.Enum):
    """Delivery status of a conversion event."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class ConversionEvent(Base):
    """
    One row per (event name, entity type, entity id) conversion.

    The unique constraint is what keeps at-least-once webhook delivery
    from reporting the same purchase twice.
    """

    __tablename__ = "conversion_events"
    __table_args__ = (
        UniqueConstraint("event_name", "entity_type", "entity_id", name="uq_conversion_event_entity"),
    )

    event_name = Column(String, nullable=False)  # Purchase
    entity_type = Column(String, nullable=False)  # booking, credit
    entity_id = Column(String(36), nullable=False, index=True)
    status = Column(SQLEnum(ConversionStatus), nullable=False, default=ConversionStatus.PENDING)
    sent_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<ConversionEvent(event_name={self.event_name}, entity={self.entity_type}:{self.entity_id}, status={self.status.value})>"
