"""
Request logging middleware and structlog configuration.
Every request gets a request id bound to the log context; webhook requests
are also tagged with the provider that sent them.
"""

import logging
import time
import uuid
from typing import Any, Callable, Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from config import settings

logger = structlog.get_logger(__name__)

WEBHOOK_PROVIDERS = {
    "/webhooks/paystack": "paystack",
    "/webhooks/whatsapp": "twilio",
}

# Log keys whose values must never reach the log sink
REDACTED_KEYS = {"signature", "x_paystack_signature", "authorization", "invitation_token", "token", "api_key"}


def webhook_provider(path: str) -> Optional[str]:
    """Provider name for a webhook path, or None for other routes."""
    for prefix, provider in WEBHOOK_PROVIDERS.items():
        if path.startswith(prefix):
            return provider
    return None


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """
    Request/response logging middleware.

    Adds X-Request-ID and X-Response-Time headers. Request bodies and
    query strings are never logged: webhook bodies carry payment and
    contact data, and invitation links carry tokens.
    """

    def __init__(
        self,
        app,
        skip_paths: Optional[list[str]] = None,
    ):
        super().__init__(app)
        self.skip_paths = skip_paths or [
            "/health",
            "/metrics",
            "/docs",
            "/openapi.json",
            "/favicon.ico",
        ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        if any(path.startswith(skip) for skip in self.skip_paths):
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        context = {"request_id": request_id, "path": path, "method": request.method}
        provider = webhook_provider(path)
        if provider:
            context["provider"] = provider
        structlog.contextvars.bind_contextvars(**context)

        start_time = time.time()
        logger.info(
            "webhook_received" if provider else "request_started",
            client_ip=self._get_client_ip(request),
            content_length=request.headers.get("Content-Length"),
            user_agent=request.headers.get("User-Agent", "unknown")[:100],
        )

        try:
            response = await call_next(request)

            duration_ms = (time.time() - start_time) * 1000
            log = logger.warning if response.status_code >= 400 else logger.info
            log(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
            return response

        except Exception as exc:
            logger.error(
                "request_failed",
                duration_ms=round((time.time() - start_time) * 1000, 2),
                error=str(exc),
            )
            raise

        finally:
            structlog.contextvars.unbind_contextvars(*context)

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP from request."""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    """structlog processor that masks secret-bearing keys."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def configure_structlog() -> None:
    """Configure structlog: JSON in production, console output elsewhere."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
