"""
Prometheus metrics setup and utilities.
"""

import time

import structlog
from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

# ============================================
# Metric Definitions
# ============================================

# Request metrics
REQUEST_COUNT = Counter(
    "settlesmart_requests_total",
    "Total number of requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "settlesmart_request_duration_seconds",
    "Request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Webhook metrics
WEBHOOK_EVENTS = Counter(
    "settlesmart_webhook_events_total",
    "Webhook deliveries by provider and outcome",
    ["provider", "outcome"],  # provider: paystack/twilio
)

# Background task metrics
TASK_EVENTS = Counter(
    "settlesmart_tasks_total",
    "Background task lifecycle events",
    ["task", "status"],  # status: submitted/succeeded/retried/dead_lettered
)

TASK_DURATION = Histogram(
    "settlesmart_task_duration_seconds",
    "Background task duration",
    ["task"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Duplicate detection metrics
DUPLICATE_CHECKS = Counter(
    "settlesmart_duplicate_checks_total",
    "Duplicate image checks",
    ["result"],  # unique/duplicate/error
)

# External service metrics
EXTERNAL_SERVICE_CALLS = Counter(
    "settlesmart_external_service_calls_total",
    "External service API calls",
    ["service", "status"],  # service: supabase/twilio/deepgram/resend
)

EXTERNAL_SERVICE_LATENCY = Histogram(
    "settlesmart_external_service_latency_seconds",
    "External service latency",
    ["service"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)


# ============================================
# Metrics Middleware
# ============================================

class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track request metrics."""

    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        method = request.method
        endpoint = self._get_endpoint(request.url.path)

        start_time = time.time()
        status_code = "500"

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response

        finally:
            track_request(method, endpoint, status_code, time.time() - start_time)

    def _get_endpoint(self, path: str) -> str:
        """Normalize endpoint path for metrics."""
        # Remove specific IDs to avoid cardinality explosion
        parts = path.strip("/").split("/")

        if len(parts) > 2:
            return "/" + "/".join(parts[:2])

        return path


# ============================================
# Tracking Utilities
# ============================================

def track_request(method: str, endpoint: str, status_code: str, duration: float) -> None:
    """Track a request metric."""
    REQUEST_COUNT.labels(
        method=method,
        endpoint=endpoint,
        status_code=status_code,
    ).inc()

    REQUEST_DURATION.labels(
        method=method,
        endpoint=endpoint,
    ).observe(duration)


def track_webhook(provider: str, outcome: str) -> None:
    """Track a webhook delivery outcome."""
    WEBHOOK_EVENTS.labels(provider=provider, outcome=outcome).inc()


def track_task(task: str, status: str, duration: float | None = None) -> None:
    """Track a background task event."""
    TASK_EVENTS.labels(task=task, status=status).inc()
    if duration is not None:
        TASK_DURATION.labels(task=task).observe(duration)


def track_duplicate_check(result: str) -> None:
    """Track a duplicate image check."""
    DUPLICATE_CHECKS.labels(result=result).inc()


def track_external_service(service: str, status: str, duration: float) -> None:
    """Track an external service call."""
    EXTERNAL_SERVICE_CALLS.labels(
        service=service,
        status=status,
    ).inc()

    EXTERNAL_SERVICE_LATENCY.labels(
        service=service,
    ).observe(duration)
