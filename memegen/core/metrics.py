"""Prometheus metrics for the application."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from memegen.core.config import APP_VERSION

# --- Metrics ---

APP_INFO = Info("memegen", "Meme generator application info")
APP_INFO.info({"version": APP_VERSION, "name": "memegen"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

MEME_REQUESTS = Counter(
    "meme_requests_total",
    "Meme generation pipeline outcomes",
    ["backend", "outcome"],  # outcome: template | cache_hit | generated | rejected | timeout | failed
)

GENERATION_DURATION = Histogram(
    "meme_generation_duration_seconds",
    "Provider generation call duration in seconds",
    ["backend"],
    buckets=[0.5, 1, 2.5, 5, 10, 20, 30, 60],
)

ADMISSION_WAIT = Histogram(
    "meme_admission_wait_seconds",
    "Time spent queued before a backend slot was granted",
    ["backend"],
    buckets=[0.01, 0.1, 0.5, 1, 2.5, 5, 10, 20, 30],
)

ADMISSION_TIMEOUTS = Counter(
    "meme_admission_timeouts_total",
    "Queued admissions that expired before a slot freed up",
    ["backend"],
)

QUEUE_LENGTH = Gauge(
    "meme_queue_length",
    "Pending admissions per backend",
    ["backend"],
)


# --- Middleware ---


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = request.url.path

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
