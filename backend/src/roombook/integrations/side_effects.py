"""Post-commit side effects: notifications, conversion tracking, activation.

These run after the webhook transaction has committed, each in its own
database session and bounded by a timeout. A failure is logged and
counted, never propagated: the financial state is already durable.
"""
import asyncio
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.config import settings
from roombook.database import AsyncSessionLocal
from roombook.integrations.account_activation import AccountActivationService
from roombook.integrations.conversion_tracking import ConversionTracker
from roombook.integrations.email_client import EmailClient
from roombook.integrations.notification_service import NotificationService
from roombook.metrics import side_effects_total
from roombook.models.booking import Booking
from roombook.models.credit import Credit
from roombook.models.product import Product
from roombook.models.user import User
from roombook.services.reference_resolver import ResourceKind
from roombook.services.state_machine import SideEffect

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SideEffectJob:
    """One side effect to run for one resource."""

    effect: SideEffect
    kind: ResourceKind
    resource_id: str
    event_id: Optional[str] = None


class SideEffectRunner:
    """Runs side-effect jobs with per-call timeouts and isolated failures."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        timeout_seconds: Optional[float] = None,
        email_client: Optional[EmailClient] = None,
        conversion_tracker_factory: Optional[Callable[[AsyncSession], ConversionTracker]] = None,
    ):
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.side_effect_timeout_seconds
        self.email_client = email_client or EmailClient()
        self.conversion_tracker_factory = conversion_tracker_factory or ConversionTracker

    async def run(self, jobs: Sequence[SideEffectJob]) -> dict[str, str]:
        """
        Run jobs one after another.

        Args:
            jobs: Side effects scheduled by the dispatcher

        Returns:
            Mapping of effect name to status (success, skipped, failed, timeout)
        """
        statuses: dict[str, str] = {}
        for job in jobs:
            statuses[job.effect.value] = await self.run_one(job)
        return statuses

    async def run_one(self, job: SideEffectJob) -> str:
        """Run a single job, swallowing and logging its failure."""
        log = logger.bind(effect=job.effect.value, kind=job.kind.value, resource_id=job.resource_id, event_id=job.event_id)
        try:
            done = await asyncio.wait_for(self._execute(job), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            status = "timeout"
            log.warning("side_effect_timeout", timeout_seconds=self.timeout_seconds)
        except Exception as e:
            status = "failed"
            log.warning("side_effect_failed", error=str(e), error_type=type(e).__name__)
        else:
            status = "success" if done else "skipped"
            log.info("side_effect_completed", status=status)
        side_effects_total.labels(effect=job.effect.value, status=status).inc()
        return status

    async def _execute(self, job: SideEffectJob) -> bool:
        async with self.session_factory() as db:
            if job.effect is SideEffect.SEND_BOOKING_CONFIRMATION:
                if job.kind is not ResourceKind.BOOKING:
                    return False
                return await NotificationService(db, self.email_client).send_booking_confirmation(job.resource_id)

            if job.effect is SideEffect.TRACK_PURCHASE_CONVERSION:
                return await self._track_conversion(db, job)

            if job.effect is SideEffect.TRIGGER_ACCOUNT_ACTIVATION:
                user = await self._owner(db, job)
                if user is None:
                    return False
                return await AccountActivationService(db, self.email_client).trigger(user.id, user.email, user.name)

        raise ValueError(f"Unknown side effect {job.effect}")

    async def _owner(self, db: AsyncSession, job: SideEffectJob) -> Optional[User]:
        model = Booking if job.kind is ResourceKind.BOOKING else Credit
        resource = await db.get(model, job.resource_id)
        if resource is None:
            return None
        return await db.get(User, resource.user_id)

    async def _track_conversion(self, db: AsyncSession, job: SideEffectJob) -> bool:
        tracker = self.conversion_tracker_factory(db)
        if job.kind is ResourceKind.BOOKING:
            booking = await db.get(Booking, job.resource_id)
            if booking is None:
                return False
            product = await db.get(Product, booking.product_id) if booking.product_id else None
            value = booking.amount_paid or 0
            content_ids = [product.type.name if product else "HOURLY_RATE", booking.room_id]
            user_id = booking.user_id
            entity_type = "booking"
        else:
            credit = await db.get(Credit, job.resource_id)
            if credit is None:
                return False
            value = credit.amount
            content_ids = [credit.usage_type.name]
            user_id = credit.user_id
            entity_type = "credit"

        user = await db.get(User, user_id)
        return await tracker.track_purchase(
            entity_type=entity_type,
            entity_id=job.resource_id,
            value=value,
            content_ids=content_ids,
            email=user.email if user else None,
            phone=user.phone if user else None,
        )
