"""
Error handling for FastAPI.
Provides consistent JSON error responses and logging.
"""

import traceback
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config import settings

logger = structlog.get_logger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID", "unknown")


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    Catches unhandled exceptions and returns consistent JSON responses.
    Also logs errors with full context for debugging.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except Exception as exc:
            request_id = _request_id(request)

            logger.error(
                "unhandled_exception",
                request_id=request_id,
                path=request.url.path,
                method=request.method,
                error=str(exc),
                error_type=type(exc).__name__,
                traceback=traceback.format_exc() if settings.debug_mode else None,
            )

            error_detail = {
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "request_id": request_id,
            }

            # In debug mode, include more details
            if settings.debug_mode:
                error_detail["debug"] = {
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }

            return JSONResponse(status_code=500, content=error_detail)


class APIError(Exception):
    """Base class for API errors with status codes."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "api_error",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(APIError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="validation_error",
            details=details,
        )


class AuthenticationError(APIError):
    """Authentication error (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="authentication_error",
        )


class NotFoundError(APIError):
    """Not found error (404)."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found",
        )


class PayloadTooLargeError(APIError):
    """Payload too large (413)."""

    def __init__(self, message: str = "Payload too large", limit: Optional[int] = None):
        super().__init__(
            message=message,
            status_code=413,
            error_code="payload_too_large",
            details={"limit_bytes": limit} if limit else None,
        )


class ExternalServiceError(APIError):
    """External service error (502)."""

    def __init__(self, service: str, message: str = "External service error"):
        super().__init__(
            message=message,
            status_code=502,
            error_code="external_service_error",
            details={"service": service},
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError as the standard error body."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "api_error",
        error_code=exc.error_code,
        status_code=exc.status_code,
        path=request.url.path,
        message=exc.message,
    )

    content = {
        "error": exc.error_code,
        "message": exc.message,
        "request_id": _request_id(request),
    }
    if exc.details:
        content["details"] = exc.details

    return JSONResponse(status_code=exc.status_code, content=content)
