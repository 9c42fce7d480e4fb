"""
Services layer for the SettleSmart AI webhook service.
Backend access, provider integrations and the voice pipeline.
"""

from services.backend import get_backend
from services.cache_service import cache_service
from services.claude_service import claude_service
from services.deepgram_service import deepgram_service
from services.email_service import email_service
from services.notification_service import notification_service
from services.storage_service import storage_service
from services.task_queue import task_queue
from services.twilio_service import twilio_service

__all__ = [
    "get_backend",
    "cache_service",
    "claude_service",
    "deepgram_service",
    "email_service",
    "notification_service",
    "storage_service",
    "task_queue",
    "twilio_service",
]
