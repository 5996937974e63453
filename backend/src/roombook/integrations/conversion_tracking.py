"""Meta Conversions API client with a per-entity delivery guard."""
import hashlib
from datetime import datetime
from typing import Optional, Sequence

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.config import settings
from roombook.models.conversion_event import ConversionEvent, ConversionStatus
from roombook.utils.currency import from_minor_units

logger = structlog.get_logger(__name__)

GRAPH_API_URL = "https://graph.facebook.com"


def hash_identifier(value: Optional[str]) -> Optional[str]:
    """SHA-256 of a normalized contact identifier, as the Conversions API expects."""
    if not value:
        return None
    normalized = value.strip().lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Digits only, with the Brazilian country code."""
    if not phone:
        return None
    digits = "".join(ch for ch in phone if ch.isdigit())
    if not digits:
        return None
    return digits if digits.startswith("55") else f"55{digits}"


class ConversionTracker:
    """
    Reports purchases to the Meta Conversions API.

    A ConversionEvent row keyed by (event name, entity type, entity id) is
    claimed before sending; a SENT or in-flight row makes the call a no-op.
    """

    REQUEST_TIMEOUT_SECONDS = 10

    def __init__(
        self,
        db: AsyncSession,
        pixel_id: Optional[str] = None,
        access_token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.db = db
        self.pixel_id = pixel_id if pixel_id is not None else settings.meta_pixel_id
        self.access_token = access_token if access_token is not None else settings.meta_access_token
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.pixel_id and self.access_token)

    async def track_purchase(
        self,
        entity_type: str,
        entity_id: str,
        value: int,
        content_ids: Sequence[str],
        email: Optional[str] = None,
        phone: Optional[str] = None,
        event_name: str = "Purchase",
    ) -> bool:
        """
        Send a Purchase conversion once per entity.

        Args:
            entity_type: booking or credit
            entity_id: Entity id, also used as the order id
            value: Purchase value in centavos
            content_ids: Product/room identifiers
            email: Customer email
            phone: Customer phone
            event_name: Conversions API event name

        Returns:
            True if sent now or earlier, False if disabled or already claimed
        """
        if not self.enabled:
            logger.info("conversion_tracking_disabled", entity_type=entity_type, entity_id=entity_id)
            return False

        record = await self._claim(event_name, entity_type, entity_id)
        if record is None:
            return await self._already_sent(event_name, entity_type, entity_id)

        event = {
            "event_name": event_name,
            "event_time": int(datetime.utcnow().timestamp()),
            "event_id": f"{entity_type}:{entity_id}",
            "action_source": "website",
            "user_data": {
                key: [hashed]
                for key, hashed in (
                    ("em", hash_identifier(email)),
                    ("ph", hash_identifier(normalize_phone(phone))),
                )
                if hashed
            },
            "custom_data": {
                "currency": settings.currency,
                "value": float(from_minor_units(value)),
                "order_id": entity_id,
                "content_ids": list(content_ids),
                "content_type": "product",
            },
        }
        url = f"{GRAPH_API_URL}/{settings.meta_api_version}/{self.pixel_id}/events"
        params = {"access_token": self.access_token}

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, params=params, json={"data": [event]})
            else:
                async with httpx.AsyncClient(timeout=self.REQUEST_TIMEOUT_SECONDS) as client:
                    response = await client.post(url, params=params, json={"data": [event]})
            response.raise_for_status()
        except httpx.HTTPError as e:
            record.status = ConversionStatus.FAILED
            record.last_error = str(e)[:1000]
            await self.db.commit()
            logger.warning("conversion_send_failed", entity_type=entity_type, entity_id=entity_id, error=str(e))
            return False

        record.status = ConversionStatus.SENT
        record.sent_at = datetime.utcnow()
        await self.db.commit()
        logger.info("conversion_sent", event_name=event_name, entity_type=entity_type, entity_id=entity_id)
        return True

    async def _claim(self, event_name: str, entity_type: str, entity_id: str) -> Optional[ConversionEvent]:
        """Insert the guard row, or retake a FAILED one; None if someone else owns it."""
        record = ConversionEvent(
            event_name=event_name,
            entity_type=entity_type,
            entity_id=entity_id,
            status=ConversionStatus.PENDING,
        )
        self.db.add(record)
        try:
            await self.db.commit()
            return record
        except IntegrityError:
            await self.db.rollback()

        existing = await self._get(event_name, entity_type, entity_id)
        if existing is not None and existing.status is ConversionStatus.FAILED:
            existing.status = ConversionStatus.PENDING
            existing.last_error = None
            await self.db.commit()
            return existing

        logger.info(
            "conversion_already_claimed",
            entity_type=entity_type,
            entity_id=entity_id,
            status=existing.status.value if existing else None,
        )
        return None

    async def _get(self, event_name: str, entity_type: str, entity_id: str) -> Optional[ConversionEvent]:
        result = await self.db.execute(
            select(ConversionEvent).where(
                ConversionEvent.event_name == event_name,
                ConversionEvent.entity_type == entity_type,
                ConversionEvent.entity_id == entity_id,
            )
        )
        return result.scalar_one_or_none()

    async def _already_sent(self, event_name: str, entity_type: str, entity_id: str) -> bool:
        existing = await self._get(event_name, entity_type, entity_id)
        return existing is not None and existing.status is ConversionStatus.SENT
