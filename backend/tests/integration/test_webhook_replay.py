"""Integration tests for the failed-webhook replay worker."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.models import Booking, BookingStatus, ProductType, WebhookEvent, WebhookEventStatus
from roombook.services.credit_service import CreditService
from roombook.services.ledger_service import IdempotencyLedger
from roombook.workers.webhook_replay import replay_failed_webhooks
from tests.utils.helpers import TestAsyncSessionLocal, dispatch, payment_payload, reload


@pytest.mark.asyncio
async def test_replays_failed_event(
    db_session: AsyncSession, make_booking, make_product, side_effect_runner, email_client, monkeypatch
):
    """A FAILED event is applied from its stored payload and its side effects run."""
    product = await make_product(type=ProductType.PACKAGE_10H, price=45000)
    booking = await make_booking(product=product)
    body = payment_payload("PAYMENT_CONFIRMED", f"booking:{booking.id}", value=450, event_id="evt_replay")

    async def explode(*args, **kwargs):
        raise RuntimeError("transient failure")

    monkeypatch.setattr(CreditService, "mint_package_credit", explode)
    await dispatch(db_session, body)
    monkeypatch.undo()

    counts = await replay_failed_webhooks(session_factory=TestAsyncSessionLocal, runner=side_effect_runner)

    assert counts == {"found": 1, "processed": 1, "failed": 0, "skipped": 0}
    row = await IdempotencyLedger(db_session).get("evt_replay")
    assert row.status is WebhookEventStatus.PROCESSED
    assert row.attempts == 2
    booking = await reload(db_session, Booking, booking.id)
    assert booking.status is BookingStatus.CONFIRMED
    assert email_client.sent


@pytest.mark.asyncio
async def test_replays_stuck_processing_event(db_session: AsyncSession, make_booking, side_effect_runner):
    """A PROCESSING row abandoned by a crashed worker is finished."""
    booking = await make_booking()
    body = payment_payload("PAYMENT_CONFIRMED", f"booking:{booking.id}", value=50, event_id="evt_stuck")
    await IdempotencyLedger(db_session).record_if_new("evt_stuck", "PAYMENT_CONFIRMED", body)
    await db_session.execute(
        update(WebhookEvent)
        .where(WebhookEvent.event_id == "evt_stuck")
        .values(updated_at=datetime.utcnow() - timedelta(hours=1))
    )
    await db_session.commit()

    counts = await replay_failed_webhooks(session_factory=TestAsyncSessionLocal, runner=side_effect_runner)

    assert counts["processed"] == 1
    assert (await reload(db_session, Booking, booking.id)).status is BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_fresh_processing_and_finished_events_left_alone(
    db_session: AsyncSession, make_booking, side_effect_runner
):
    booking = await make_booking()
    await dispatch(db_session, payment_payload("PAYMENT_CONFIRMED", f"booking:{booking.id}", value=50))
    await IdempotencyLedger(db_session).record_if_new("evt_running", "PAYMENT_CONFIRMED", {})

    counts = await replay_failed_webhooks(session_factory=TestAsyncSessionLocal, runner=side_effect_runner)

    assert counts == {"found": 0, "processed": 0, "failed": 0, "skipped": 0}


@pytest.mark.asyncio
async def test_malformed_stored_payload_stays_failed(db_session: AsyncSession, side_effect_runner):
    ledger = IdempotencyLedger(db_session)
    await ledger.record_if_new("evt_bad", "PAYMENT_CONFIRMED", {"id": "evt_bad", "event": "PAYMENT_CONFIRMED"})
    await ledger.mark_failed("evt_bad", "boom")

    counts = await replay_failed_webhooks(session_factory=TestAsyncSessionLocal, runner=side_effect_runner)

    assert counts["failed"] == 1
    row = await ledger.get("evt_bad")
    assert row.status is WebhookEventStatus.FAILED
    assert row.attempts == 2
