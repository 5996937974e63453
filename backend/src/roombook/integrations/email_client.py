"""Transactional email client."""
from typing import Any, Optional

import httpx
import structlog

from roombook.config import settings

logger = structlog.get_logger(__name__)


class EmailClient:
    """
    Client for the transactional email provider's HTTP API.

    Without a configured provider URL the client runs in mock mode: it
    logs the message and reports it as sent, which keeps local and test
    environments free of network calls.
    """

    SEND_TIMEOUT_SECONDS = 10

    def __init__(
        self,
        provider_url: Optional[str] = None,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider_url = provider_url if provider_url is not None else settings.email_provider_url
        self.api_key = api_key if api_key is not None else settings.email_api_key
        self.sender = sender or settings.email_from
        self._http_client = http_client

    @property
    def is_mock(self) -> bool:
        return not self.provider_url

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        tags: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """
        Send an email.

        Args:
            to: Recipient address
            subject: Subject line
            html: HTML body
            tags: Provider tags for analytics

        Returns:
            Dictionary with send status and provider message id

        Raises:
            httpx.HTTPError: If the provider rejects the request
        """
        if self.is_mock:
            logger.info("email_notification", to=to, subject=subject, provider="mock")
            return {"status": "sent", "provider": "mock", "to": to, "message_id": "mock_email"}

        body = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
            "tags": [{"name": k, "value": v} for k, v in (tags or {}).items()],
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        if self._http_client is not None:
            response = await self._http_client.post(self.provider_url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.SEND_TIMEOUT_SECONDS) as client:
                response = await client.post(self.provider_url, json=body, headers=headers)
        response.raise_for_status()

        message_id = response.json().get("id") if response.content else None
        logger.info("email_sent", to=to, subject=subject, message_id=message_id)
        return {"status": "sent", "provider": "http", "to": to, "message_id": message_id}
