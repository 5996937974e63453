"""Liveness and readiness probes."""
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.api.deps import get_db
from roombook.config import settings
from roombook.models.webhook_event import WebhookEvent, WebhookEventStatus

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> dict[str, str]:
    """Liveness probe; touches nothing external."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "0.1.0",
    }


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """
    Readiness probe.

    Not ready when the database does not answer, or in production when
    the webhook secret is unset (every delivery would be rejected). The
    count of FAILED ledger events is reported for the replay backlog but
    does not affect readiness.
    """
    checks: dict[str, object] = {"database": "unknown"}
    ready = True

    try:
        failed = await db.scalar(
            select(func.count()).select_from(WebhookEvent).where(WebhookEvent.status == WebhookEventStatus.FAILED)
        )
        checks["database"] = "connected"
        checks["failed_webhook_events"] = failed or 0
    except SQLAlchemyError as exc:
        logger.error("database_health_check_failed", error=str(exc))
        checks["database"] = "disconnected"
        ready = False

    token_configured = bool(settings.asaas_webhook_token)
    checks["webhook_token"] = "configured" if token_configured else "missing"
    if not token_configured and settings.app_env == "production":
        ready = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "ready": ready,
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
