"""Replay worker for failed and abandoned webhook events.

Gateway redeliveries are not relied on for recovery: every event is
acknowledged with 200, so a FAILED row or a PROCESSING row left by a
crashed worker is only retried here, from the payload stored in the
ledger.

Usage:
    python -m roombook.workers.webhook_replay
"""
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.database import AsyncSessionLocal
from roombook.exceptions import MalformedPayloadError
from roombook.integrations.side_effects import SideEffectRunner
from roombook.metrics import webhook_replays_total
from roombook.models.webhook_event import WebhookEventStatus
from roombook.schemas.webhook import parse_gateway_event
from roombook.services.ledger_service import IdempotencyLedger
from roombook.services.webhook_dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)


async def replay_failed_webhooks(
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
    runner: Optional[SideEffectRunner] = None,
    limit: int = 100,
) -> dict[str, int]:
    """
    Re-dispatch replayable ledger events.

    Each row is re-claimed with the same conditional update used for
    redeliveries, so a concurrent delivery and the worker never both run it.

    Args:
        session_factory: Session factory for the ledger and state changes
        runner: Side-effect runner, defaults to one on the same factory
        limit: Maximum events per run

    Returns:
        Dict with counts of replayed events
    """
    runner = runner or SideEffectRunner(session_factory=session_factory)
    counts = {"found": 0, "processed": 0, "failed": 0, "skipped": 0}

    async with session_factory() as db:
        ledger = IdempotencyLedger(db)
        rows = await ledger.list_replayable(limit=limit)
        counts["found"] = len(rows)
        logger.info("webhook_replay_started", events_count=len(rows))

        # Rows expire when a failed event rolls the session back, so reload each one
        event_ids = [row.event_id for row in rows]
        for event_id in event_ids:
            row = await ledger.get(event_id)
            if row is None or row.status.is_terminal or (
                row.status is WebhookEventStatus.PROCESSING and not ledger.is_stale(row)
            ):
                counts["skipped"] += 1
                continue
            claim = await ledger.reclaim(row)
            if not claim.should_process:
                counts["skipped"] += 1
                webhook_replays_total.labels(outcome="skipped").inc()
                continue

            try:
                event = parse_gateway_event(claim.event.payload)
            except MalformedPayloadError as e:
                await ledger.mark_failed(event_id, str(e))
                counts["failed"] += 1
                webhook_replays_total.labels(outcome="failed").inc()
                continue

            result = await WebhookDispatcher(db, ledger).process(claim.event, event)
            if result.response.error:
                counts["failed"] += 1
                webhook_replays_total.labels(outcome="failed").inc()
                continue

            counts["processed"] += 1
            webhook_replays_total.labels(outcome="processed").inc()
            if result.jobs:
                await runner.run(result.jobs)

    logger.info("webhook_replay_completed", **counts)
    return counts


if __name__ == "__main__":
    import asyncio

    from roombook.middleware.logging import setup_logging

    setup_logging()
    asyncio.run(replay_failed_webhooks())
