"""Account activation emails for users created during checkout."""
import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.config import settings
from roombook.integrations.email_client import EmailClient
from roombook.models.activation_token import ActivationToken
from roombook.models.user import User

logger = structlog.get_logger(__name__)


def hash_activation_token(token: str) -> str:
    """SHA-256 of token plus the server-side pepper."""
    return hashlib.sha256(f"{token}{settings.activation_token_pepper}".encode("utf-8")).hexdigest()


class AccountActivationService:
    """Issues activation tokens and emails them to unverified users."""

    def __init__(self, db: AsyncSession, email_client: Optional[EmailClient] = None):
        self.db = db
        self.email = email_client or EmailClient()

    async def trigger(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> bool:
        """
        Send an activation email unless the user is verified or has a live token.

        Args:
            user_id: User id
            email: Address override, defaults to the user's email
            name: Display name override

        Returns:
            True if an email was sent
        """
        user = await self.db.get(User, user_id)
        if user is None:
            logger.warning("activation_user_not_found", user_id=user_id)
            return False
        if user.email_verified:
            logger.info("activation_skipped_verified", user_id=user_id)
            return False

        now = datetime.utcnow()
        result = await self.db.execute(
            select(ActivationToken).where(
                ActivationToken.user_id == user_id,
                ActivationToken.used_at.is_(None),
                ActivationToken.expires_at > now,
            )
        )
        if result.scalars().first() is not None:
            logger.info("activation_skipped_live_token", user_id=user_id)
            return False

        token = secrets.token_urlsafe(32)
        self.db.add(
            ActivationToken(
                user_id=user_id,
                token_hash=hash_activation_token(token),
                expires_at=now + timedelta(hours=settings.activation_token_ttl_hours),
            )
        )
        await self.db.commit()

        link = f"{settings.app_base_url.rstrip('/')}/activate-account?token={token}"
        await self.email.send(
            email or user.email,
            "Ative sua conta",
            f"<p>Olá {name or user.name or ''},</p><p>Ative sua conta: <a href=\"{link}\">{link}</a></p>",
            tags={"type": "account_activation"},
        )
        logger.info("activation_email_sent", user_id=user_id)
        return True
