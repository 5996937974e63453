"""Per-route request metrics."""
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

LABELS = ["method", "path", "status_code"]

# Webhook handling is mostly database work; buckets stop at the side-effect timeout
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "Request duration in seconds by route template",
    labelnames=LABELS,
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 10.0],
)
http_requests_total = Counter("http_requests_total", "Requests by route template and status", labelnames=LABELS)
http_unhandled_errors_total = Counter(
    "http_unhandled_errors_total",
    "Exceptions that escaped every handler",
    labelnames=["method", "path", "error_type"],
)


def _path_label(request: Request) -> str:
    """Route template when matched, so ids do not explode label cardinality."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records duration, count and unhandled errors per route; the scrape endpoint is skipped."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            http_unhandled_errors_total.labels(request.method, _path_label(request), type(exc).__name__).inc()
            raise

        labels = (request.method, _path_label(request), str(response.status_code))
        http_request_duration_seconds.labels(*labels).observe(time.perf_counter() - started)
        http_requests_total.labels(*labels).inc()
        return response
