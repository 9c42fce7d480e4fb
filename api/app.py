"""
SettleSmart AI Webhooks API
FastAPI application receiving Paystack and Twilio webhooks and serving the
property image and invitation endpoints.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from config import settings
from middleware.error_handler import APIError, ErrorHandlerMiddleware, api_error_handler
from middleware.request_logger import RequestLoggerMiddleware, configure_structlog
from routes import health, invitations, payments, properties, whatsapp
from services.backend import BackendError, get_backend
from services.cache_service import cache_service
from services.change_feed import ALL_TABLES
from services.storage_service import storage_service
from services.task_queue import task_queue
from services.voice_message_service import register_voice_tasks
from utils.metrics import MetricsMiddleware

configure_structlog()

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events - startup and shutdown."""
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        backend_mode=settings.backend_mode,
    )

    try:
        backend = get_backend()
        unsubscribe = backend.subscribe(ALL_TABLES, cache_service.handle_change)

        register_voice_tasks(task_queue)
        await task_queue.start()

        logger.info("application_started_successfully")

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    logger.info("shutting_down_application")
    await task_queue.stop()
    unsubscribe()
    await cache_service.close()
    await storage_service.close()


app = FastAPI(
    title=settings.app_name,
    description="Payment, WhatsApp voice and property image webhooks for SettleSmart AI",
    version=settings.app_version,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

# Add middleware (order matters - last added is outermost)
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestLoggerMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [settings.app_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(APIError, api_error_handler)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(payments.router, prefix="/webhooks", tags=["Payments"])
app.include_router(whatsapp.router, prefix="/webhooks/whatsapp", tags=["WhatsApp"])
app.include_router(whatsapp.dashboard_router, prefix="/whatsapp", tags=["WhatsApp"])
app.include_router(properties.router, prefix="/properties", tags=["Properties"])
app.include_router(invitations.router, prefix="/invitations", tags=["Invitations"])


@app.exception_handler(BackendError)
async def backend_exception_handler(request: Request, exc: BackendError) -> JSONResponse:
    """Backend failures are reported as 500 so webhook providers retry."""
    logger.error(
        "backend_error",
        error=exc.message,
        table=exc.table,
        upstream_status=exc.status_code,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "backend_error",
            "message": "A storage error occurred. Please try again later.",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        workers=settings.workers if not settings.reload else 1,
        log_level=settings.log_level.lower(),
    )
