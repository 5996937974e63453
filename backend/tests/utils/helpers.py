"""Shared test helpers: in-memory database, recording email client, payload builders."""
import os
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from roombook.integrations.email_client import EmailClient
from roombook.models import AuditLog
from roombook.schemas.webhook import parse_gateway_event
from roombook.services.webhook_dispatcher import DispatchResult, WebhookDispatcher

WEBHOOK_TOKEN = os.environ.get("ASAAS_WEBHOOK_TOKEN", "test-webhook-token")

# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestAsyncSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class RecordingEmailClient(EmailClient):
    """Email client that records messages instead of sending them."""

    def __init__(self, fail: bool = False):
        super().__init__(provider_url="", api_key="")
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        tags: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        if self.fail:
            raise RuntimeError("email provider down")
        self.sent.append({"to": to, "subject": subject, "html": html, "tags": tags or {}})
        return {"status": "sent", "provider": "recording", "to": to, "message_id": f"msg_{len(self.sent)}"}


async def reload(db: AsyncSession, model: Any, entity_id: str) -> Any:
    """Fetch an entity bypassing the identity map."""
    return await db.get(model, entity_id, populate_existing=True)


def days_from_now(days: int) -> datetime:
    """Naive UTC timestamp offset by whole days."""
    return datetime.utcnow() + timedelta(days=days)


def payment_payload(
    event: str,
    reference: Optional[str],
    value: Any = None,
    event_id: Optional[str] = None,
    payment_id: str = "pay_000000000001",
    **payment_fields: Any,
) -> dict[str, Any]:
    """Payment-family webhook body."""
    payment: dict[str, Any] = {
        "id": payment_id,
        "customer": "cus_000000000001",
        "billingType": "PIX",
        "status": "CONFIRMED",
        "externalReference": reference,
        **payment_fields,
    }
    if value is not None:
        payment["value"] = value
    return {
        "id": event_id or f"evt_{event.lower()}_{payment_id}",
        "event": event,
        "dateCreated": "2026-01-15 10:00:00",
        "payment": payment,
    }


def checkout_payload(
    event: str,
    reference: Optional[str],
    value: Any = None,
    event_id: Optional[str] = None,
    checkout_id: str = "chk_000000000001",
) -> dict[str, Any]:
    """Checkout-family webhook body."""
    checkout: dict[str, Any] = {"id": checkout_id, "externalReference": reference, "status": "PAID"}
    if value is not None:
        checkout["value"] = value
    return {"id": event_id or f"evt_{event.lower()}_{checkout_id}", "event": event, "checkout": checkout}


async def dispatch(db: AsyncSession, body: dict[str, Any]) -> DispatchResult:
    """Parse and dispatch a webhook body like the route does."""
    return await WebhookDispatcher(db).dispatch(parse_gateway_event(body), body)


async def audit_actions(db: AsyncSession, target_id: str) -> list[str]:
    """Audit actions recorded for a target, oldest first."""
    result = await db.execute(
        select(AuditLog.action).where(AuditLog.target_id == target_id).order_by(AuditLog.created_at)
    )
    return list(result.scalars().all())
