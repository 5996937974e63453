"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from roombook.api.v1 import health
from roombook.api.webhooks import asaas
from roombook.config import settings
from roombook.middleware.logging import LoggingMiddleware, setup_logging
from roombook.middleware.metrics import MetricsMiddleware

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("application_starting", env=settings.app_env)
    if not settings.asaas_webhook_token:
        logger.warning("asaas_webhook_token_missing", env=settings.app_env)
    yield
    logger.info("application_shutting_down")


app = FastAPI(
    title="Room Booking Payments",
    description="Room booking service with payment-gateway reconciliation",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)


# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


if settings.otel_enabled:
    from roombook.tracing import setup_tracing

    setup_tracing(app)


def _error_response(request: Request, status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    """
    Error envelope shared by the handlers below.

    Webhook routes also carry ``received: false`` so the gateway log shows
    the delivery was not accepted and will be retried. The request id is
    the one the logging middleware bound for this request.
    """
    content: dict[str, Any] = {
        "error": error,
        "message": message,
        "request_id": structlog.contextvars.get_contextvars().get("request_id"),
        "timestamp": datetime.utcnow().isoformat() + "Z",
        **extra,
    }
    if request.url.path.startswith("/webhooks/"):
        content["received"] = False
    headers = {"Retry-After": "30"} if status_code == status.HTTP_503_SERVICE_UNAVAILABLE else None
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with field-level validation errors."""
    details = [
        {"field": ".".join(str(loc) for loc in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    logger.warning("validation_error", path=request.url.path, error_count=len(details))
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ValidationError",
        "Request validation failed",
        details=details,
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Return 503 for database errors that escape a route.

    On the webhook route this only happens before the ledger claim is
    committed, so no event is lost: the gateway retries the delivery.
    """
    logger.error(
        "database_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        error_message=str(exc),
    )
    message = "Database temporarily unavailable" if settings.app_env == "production" else str(exc)
    return _error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "DatabaseError", message)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return 500 for anything else, logging the stack trace."""
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        exception_type=type(exc).__name__,
    )
    message = str(exc) if settings.debug else "An unexpected error occurred"
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "InternalServerError", message)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "Room Booking Payments",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
    }


app.include_router(health.router, tags=["Health"])
app.include_router(asaas.router)
