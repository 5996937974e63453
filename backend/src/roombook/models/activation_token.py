"""Account activation token model."""
from sqlalchemy import Column, DateTime, ForeignKey, String

from roombook.models.base import Base


class ActivationToken(Base):
    """Hashed single-use token emailed to unverified users."""

    __tablename__ = "activation_tokens"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), nullable=False, unique=True)  # SHA-256 hex
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<ActivationToken(user_id={self.user_id}, expires_at={self.expires_at})>"
