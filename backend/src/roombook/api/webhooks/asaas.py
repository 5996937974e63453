"""Asaas webhook endpoint for payment and checkout events."""
import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.api.deps import WEBHOOK_TOKEN_HEADER, get_db, get_side_effect_runner, verify_webhook_token
from roombook.exceptions import MalformedPayloadError, WebhookAuthenticationError
from roombook.integrations.side_effects import SideEffectRunner
from roombook.schemas.webhook import parse_gateway_event
from roombook.services.webhook_dispatcher import WebhookDispatcher
from roombook.tracing import webhook_span

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks/asaas", tags=["webhooks"])


@router.post("")
async def handle_asaas_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
) -> JSONResponse:
    """
    Handle an Asaas payment or checkout notification.

    Always answers 200 once the request is authenticated and parseable,
    including for ignored events and internal failures, so the gateway
    does not retry-storm. Only a bad token (401) or a malformed body (400)
    is rejected, and neither creates a ledger entry. If the ledger claim
    itself cannot be written, the app handlers answer 503/500 so the
    gateway redelivers.

    Args:
        request: Incoming request with the JSON event
        background_tasks: Runs side effects after the response
        db: Database session
        runner: Side-effect runner

    Returns:
        JSONResponse with ``received`` and the outcome classification
    """
    try:
        verify_webhook_token(request.headers.get(WEBHOOK_TOKEN_HEADER))
    except WebhookAuthenticationError as e:
        logger.warning("asaas_webhook_unauthorized", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"received": False, "error": str(e)},
        )

    try:
        body = await request.json()
        event = parse_gateway_event(body)
    except (ValueError, MalformedPayloadError) as e:
        logger.warning("asaas_webhook_malformed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"received": False, "error": f"Malformed payload: {e}"},
        )

    logger.info(
        "asaas_webhook_received",
        event_id=event.id,
        event_type=event.event,
        family=event.family.value,
        payment_id=event.external_payment_id,
        reference=event.external_reference,
    )

    structlog.contextvars.bind_contextvars(event_id=event.id)
    with webhook_span(event.id, event.event, event.family.value, event.external_reference) as span:
        result = await WebhookDispatcher(db).dispatch(event, body)
        if result.ledger_status is not None:
            span.set_attribute("webhook.ledger_status", result.ledger_status.value)
    if result.jobs:
        background_tasks.add_task(runner.run, result.jobs)

    return JSONResponse(status_code=status.HTTP_200_OK, content=result.response.to_body())
