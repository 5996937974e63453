"""Room model."""
from sqlalchemy import Boolean, Column, Integer, String

from roombook.models.base import Base


class Room(Base):
    """Bookable room with its hourly rate."""

    __tablename__ = "rooms"

    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)
    hourly_rate = Column(Integer, nullable=True)  # Centavos per hour
    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Room(id={self.id}, slug={self.slug}, hourly_rate={self.hourly_rate})>"
