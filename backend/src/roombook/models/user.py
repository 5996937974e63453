"""User model for customers who book rooms and buy credits."""
from sqlalchemy import Boolean, Column, DateTime, String

from roombook.models.base import Base


class User(Base):
    """Customer account."""

    __tablename__ = "users"

    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    email_verified_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<User(id={self.id}, email={self.email}, verified={self.email_verified})>"
