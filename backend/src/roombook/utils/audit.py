"""Audit logging helpers for financial state changes and review alerts."""
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.models.audit_log import AuditLog

logger = structlog.get_logger(__name__)

# Actions recorded by the webhook pipeline
PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
CREDIT_CREATED = "CREDIT_CREATED"
CREDIT_CONFIRMED = "CREDIT_CONFIRMED"
PAYMENT_CAPTURE_REFUSED = "PAYMENT_CAPTURE_REFUSED"
BOOKING_REFUNDED = "BOOKING_REFUNDED"
BOOKING_PARTIAL_REFUND = "BOOKING_PARTIAL_REFUND"
CREDIT_REFUNDED = "CREDIT_REFUNDED"
COUPON_RESTORED = "COUPON_RESTORED"
ALERT_PAYMENT_AFTER_CANCELLATION = "ALERT_PAYMENT_AFTER_CANCELLATION"
ALERT_PAYMENT_ON_COURTESY = "ALERT_PAYMENT_ON_COURTESY"
ALERT_PAYMENT_AFTER_REFUND = "ALERT_PAYMENT_AFTER_REFUND"
ALERT_REFUND_NEEDS_REVIEW = "ALERT_REFUND_NEEDS_REVIEW"


async def log_audit(
    db: AsyncSession,
    action: str,
    target_type: str,
    target_id: str,
    details: Optional[dict[str, Any]] = None,
    source: str = "WEBHOOK",
    actor_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> AuditLog:
    """
    Record an audit entry in the caller's transaction.

    Args:
        db: Database session
        action: Action tag (BOOKING_CONFIRMED, ALERT_*, ...)
        target_type: Kind of entity affected (Booking, Credit, Coupon)
        target_id: Entity id
        details: Free-form metadata bag
        source: Origin of the change (WEBHOOK, ADMIN, SYSTEM)
        actor_id: User who performed the action, if any
        request_id: Request correlation ID, defaults to the one bound by LoggingMiddleware

    Returns:
        The flushed AuditLog row
    """
    entry = AuditLog(
        action=action,
        source=source,
        target_type=target_type,
        target_id=str(target_id),
        actor_id=actor_id,
        details=details or {},
        request_id=request_id or structlog.contextvars.get_contextvars().get("request_id"),
    )

    db.add(entry)
    await db.flush()

    log = logger.warning if action.startswith("ALERT_") else logger.info
    log(
        "audit_log_created",
        action=action,
        target_type=target_type,
        target_id=str(target_id),
    )
    return entry
