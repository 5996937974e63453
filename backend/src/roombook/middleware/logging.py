"""Structured logging setup and request context middleware."""
import logging
import sys
import time
import uuid
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from roombook.config import settings

# Event keys whose values never reach the log output
SECRET_KEYS = frozenset({"access_token", "asaas-access-token", "token", "api_key", "authorization"})

# Probes and scrapes are too frequent to log per request
QUIET_PATHS = ("/health", "/metrics")


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask credential-like keys, including inside nested dicts such as headers."""

    def _redact(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: "***" if str(k).lower() in SECRET_KEYS else _redact(v) for k, v in value.items()}
        return value

    return _redact(event_dict)


def setup_logging() -> None:
    """
    Configure structlog for the service.

    Production renders one JSON object per line; other environments use
    the console renderer. Request-scoped context (request_id, webhook
    event id) is merged from contextvars into every entry.
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.app_env == "production":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    # SQL echo goes through the engine flag, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a request_id to every log entry of a request.

    The gateway's X-Request-ID is reused when present and echoed back, so
    a webhook delivery can be followed from the gateway dashboard into
    our logs and audit trail.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:16]}"

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        if request.url.path.startswith(QUIET_PATHS):
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        structlog.contextvars.bind_contextvars(path=request.url.path, method=request.method)
        if request.url.path.startswith("/webhooks/"):
            structlog.contextvars.bind_contextvars(gateway=request.url.path.split("/")[2])

        logger = structlog.get_logger(__name__)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception("request_failed", exc_info=exc)
            raise

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers["X-Request-ID"] = request_id
        return response
