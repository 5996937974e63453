"""FastAPI dependencies for database sessions, webhook auth and side effects."""
import hmac
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.config import settings
from roombook.database import AsyncSessionLocal
from roombook.exceptions import WebhookAuthenticationError
from roombook.integrations.side_effects import SideEffectRunner

logger = structlog.get_logger(__name__)

WEBHOOK_TOKEN_HEADER = "asaas-access-token"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency.

    Yields:
        AsyncSession: Database session for the request lifecycle
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_side_effect_runner() -> SideEffectRunner:
    """Runner for post-commit side effects."""
    return SideEffectRunner()


def verify_webhook_token(token: Optional[str], expected: Optional[str] = None) -> None:
    """
    Check the gateway's shared-secret header.

    An unset secret disables the check outside production and rejects
    everything in production.

    Args:
        token: Header value received
        expected: Configured secret, defaults to settings

    Raises:
        WebhookAuthenticationError: If the token is missing or wrong
    """
    expected = settings.asaas_webhook_token if expected is None else expected
    if not expected:
        if settings.app_env == "production":
            logger.error("webhook_token_not_configured")
            raise WebhookAuthenticationError("Webhook token not configured")
        logger.warning("webhook_token_check_disabled")
        return

    if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise WebhookAuthenticationError("Invalid webhook token")
