"""Health check endpoints for monitoring and orchestration."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Response

from config import settings
from services.cache_service import cache_service
from services.task_queue import task_queue

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """
    Basic health check endpoint.
    Returns service status and version information.
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/health/ready")
async def readiness_check() -> dict:
    """
    Readiness probe for container orchestration.

    The task queue must be running. Redis is reported but does not gate
    readiness because the cache fails open.
    """
    checks = {
        "task_queue": task_queue.is_running,
        "redis": await cache_service.ping(),
    }

    ready = checks["task_queue"]
    if not ready:
        logger.warning("readiness_check_failed", **checks)

    return {
        "status": "ready" if ready else "not_ready",
        "checks": checks,
        "pending_tasks": task_queue.pending_count,
        "dead_letters": len(task_queue.dead_letters),
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/health/live")
async def liveness_check() -> dict:
    """
    Liveness probe for container orchestration.
    Checks if the service is alive and should not be restarted.
    """
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.head("/health")
async def health_head() -> Response:
    """HEAD request for health check (for load balancers)."""
    return Response(status_code=200)
