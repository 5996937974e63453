"""Durable idempotency ledger for inbound gateway events."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.config import settings
from roombook.models.webhook_event import WebhookEvent, WebhookEventStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LedgerClaim:
    """Result of trying to claim an event for processing."""

    is_new: bool
    event: Optional[WebhookEvent] = None
    prior_status: Optional[WebhookEventStatus] = None
    in_progress: bool = False

    @property
    def should_process(self) -> bool:
        """True when this caller owns the event and must run it."""
        return self.event is not None and not self.in_progress and not self.is_duplicate

    @property
    def is_duplicate(self) -> bool:
        """True when the event already reached a terminal status."""
        return self.prior_status is not None and self.prior_status.is_terminal


class IdempotencyLedger:
    """
    Ledger of every inbound event, one row per gateway event id.

    The unique constraint on event_id is the only mutual exclusion point:
    two concurrent deliveries cannot both insert, and re-claiming a failed
    or abandoned row is a conditional UPDATE that only one caller wins.
    """

    def __init__(self, db: AsyncSession, stuck_after_seconds: Optional[int] = None):
        self.db = db
        self.stuck_after = timedelta(
            seconds=stuck_after_seconds if stuck_after_seconds is not None else settings.stuck_event_timeout_seconds
        )

    async def record_if_new(
        self,
        event_id: str,
        event_type: str,
        payload: dict[str, Any],
        external_payment_id: Optional[str] = None,
        resource_reference: Optional[str] = None,
    ) -> LedgerClaim:
        """
        Insert the event in PROCESSING, or report what is already there.

        The claim is committed before returning so that a crash during
        processing leaves a PROCESSING row behind.

        Args:
            event_id: Gateway-assigned event id
            event_type: Gateway event name
            payload: Raw body, kept for replay
            external_payment_id: Gateway payment/checkout id
            resource_reference: Raw external reference

        Returns:
            LedgerClaim describing whether the caller should process the event
        """
        row = WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            external_payment_id=external_payment_id,
            resource_reference=resource_reference,
            status=WebhookEventStatus.PROCESSING,
            attempts=1,
        )
        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
        else:
            logger.info("ledger_event_recorded", event_id=event_id, event_type=event_type)
            return LedgerClaim(is_new=True, event=row)

        existing = await self.get(event_id)
        if existing is None:
            # Unique violation on a row that is gone again; let the gateway retry
            raise RuntimeError(f"Ledger row for {event_id} vanished after conflict")

        if existing.status.is_terminal:
            logger.info("ledger_duplicate_event", event_id=event_id, prior_status=existing.status.value)
            return LedgerClaim(is_new=False, event=existing, prior_status=existing.status)

        if existing.status is WebhookEventStatus.PROCESSING and not self.is_stale(existing):
            logger.info("ledger_event_in_progress", event_id=event_id)
            return LedgerClaim(is_new=False, prior_status=existing.status, in_progress=True)

        return await self.reclaim(existing)

    async def reclaim(self, existing: WebhookEvent) -> LedgerClaim:
        """
        Move a FAILED or abandoned PROCESSING row back to PROCESSING.

        Uses updated_at as an optimistic version so only one concurrent
        caller wins the row.

        Args:
            existing: Row previously loaded from the ledger

        Returns:
            LedgerClaim owned by this caller, or an in-progress claim if another caller won
        """
        prior_status = existing.status
        result = await self.db.execute(
            update(WebhookEvent)
            .where(
                WebhookEvent.id == existing.id,
                WebhookEvent.status == prior_status,
                WebhookEvent.updated_at == existing.updated_at,
            )
            .values(
                status=WebhookEventStatus.PROCESSING,
                attempts=WebhookEvent.attempts + 1,
                error_message=None,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount != 1:
            logger.info("ledger_reclaim_lost", event_id=existing.event_id)
            return LedgerClaim(is_new=False, prior_status=prior_status, in_progress=True)

        event = await self.get(existing.event_id)
        logger.warning(
            "ledger_event_reclaimed",
            event_id=existing.event_id,
            prior_status=prior_status.value,
            attempts=event.attempts if event else None,
        )
        return LedgerClaim(is_new=False, event=event, prior_status=prior_status)

    async def get(self, event_id: str) -> Optional[WebhookEvent]:
        """Load a ledger row by gateway event id, bypassing the identity map."""
        result = await self.db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def is_stale(self, event: WebhookEvent) -> bool:
        """Whether a PROCESSING row has been held longer than the stuck timeout."""
        return event.updated_at is not None and datetime.utcnow() - event.updated_at >= self.stuck_after

    def finalize(self, event: WebhookEvent, status: WebhookEventStatus) -> None:
        """
        Set the terminal status in the caller's transaction.

        Committed together with the state change it records.
        """
        event.status = status
        event.processed_at = datetime.utcnow()
        event.error_message = None

    async def mark_failed(self, event_id: str, error: str) -> None:
        """
        Mark an event FAILED in its own transaction.

        Called after the processing transaction was rolled back.
        """
        await self.db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.event_id == event_id)
            .values(
                status=WebhookEventStatus.FAILED,
                error_message=error[:2000],
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.error("ledger_event_failed", event_id=event_id, error=error)

    async def list_replayable(self, limit: int = 100) -> list[WebhookEvent]:
        """
        Rows eligible for replay: FAILED, or PROCESSING past the stuck timeout.

        Args:
            limit: Maximum rows to return, oldest first

        Returns:
            List of ledger rows
        """
        cutoff = datetime.utcnow() - self.stuck_after
        result = await self.db.execute(
            select(WebhookEvent)
            .where(
                or_(
                    WebhookEvent.status == WebhookEventStatus.FAILED,
                    (WebhookEvent.status == WebhookEventStatus.PROCESSING) & (WebhookEvent.updated_at <= cutoff),
                )
            )
            .order_by(WebhookEvent.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())
