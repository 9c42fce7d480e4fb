"""
Middleware package initialization.
"""

from .error_handler import (
    APIError,
    AuthenticationError,
    ErrorHandlerMiddleware,
    ExternalServiceError,
    NotFoundError,
    PayloadTooLargeError,
    ValidationError,
    api_error_handler,
)
from .request_logger import RequestLoggerMiddleware, configure_structlog

__all__ = [
    "APIError",
    "AuthenticationError",
    "ErrorHandlerMiddleware",
    "ExternalServiceError",
    "NotFoundError",
    "PayloadTooLargeError",
    "ValidationError",
    "api_error_handler",
    "RequestLoggerMiddleware",
    "configure_structlog",
]
